import threading
import time
import uuid

import pytest

from sherpa.cluster_consul import ConsulClusterBackend
from sherpa.cluster_memory import MemoryClusterBackend
from sherpa.member import ClusterNameMismatchError, Member, MembershipUpdate
from sherpa.scale_consul import KeyValueStore
from sherpa.state import ClusterInfo, ClusterMember


def _member(store, addr="127.0.0.1:8000", adv="http://10.0.0.1:8000", name=""):
    return Member(
        store,
        addr,
        adv,
        name,
        leader_check_interval=0.05,
        lock_retry_interval=0.05,
    )


def _run(member):
    thread = threading.Thread(target=member.run_leadership_loop, daemon=True)
    thread.start()
    return thread


@pytest.mark.parametrize(
    "operator_name, state_name, expect_error",
    [
        ("sherpa-test-cluster", "sherpa-test-cluster", False),
        ("sherpa-test-cluster", "sherpa-prod-cluster", True),
        ("", "sherpa-test-cluster", False),
    ],
)
def test_verify_cluster_name(operator_name, state_name, expect_error):
    member = _member(MemoryClusterBackend())
    member.cluster_name = operator_name
    if expect_error:
        with pytest.raises(ClusterNameMismatchError):
            member.verify_cluster_name(state_name)
    else:
        member.verify_cluster_name(state_name)
        assert member.cluster_name == state_name


def test_new_member_generates_cluster_name_and_info():
    store = MemoryClusterBackend()
    member = _member(store)
    assert member.cluster_name.startswith("sherpa-")
    info = store.get_cluster_info()
    assert info.name == member.cluster_name
    assert info.id != uuid.UUID(int=0)
    assert member.standby is True


def test_new_member_keeps_operator_name():
    store = MemoryClusterBackend()
    member = _member(store, name="sherpa-test-cluster")
    assert member.cluster_name == "sherpa-test-cluster"
    assert store.get_cluster_info().name == "sherpa-test-cluster"


def test_new_member_rejects_mismatched_stored_name():
    store = MemoryClusterBackend()
    store.put_cluster_info(ClusterInfo(id=uuid.uuid4(), name="sherpa-prod-cluster"))
    with pytest.raises(ClusterNameMismatchError):
        _member(store, name="sherpa-test-cluster")


def test_new_member_joins_existing_cluster_name():
    store = MemoryClusterBackend()
    store.put_cluster_info(ClusterInfo(id=uuid.uuid4(), name="sherpa-test-cluster"))
    member = _member(store)
    assert member.cluster_name == "sherpa-test-cluster"


def test_is_ha_follows_backend():
    assert _member(MemoryClusterBackend()).is_ha() is False
    assert _member(ConsulClusterBackend(KeyValueStore())).is_ha() is True


def test_standby_without_lock_holder_has_no_leader():
    member = _member(ConsulClusterBackend(KeyValueStore()))
    assert member.leader() == (False, "", "")


def test_memory_member_becomes_leader_and_clears():
    store = MemoryClusterBackend()
    member = _member(store)
    thread = _run(member)

    update = member.updates.get(timeout=5)
    assert update == MembershipUpdate(is_leader=True, msg="obtained leadership")
    assert member.standby is False
    assert member.leader() == (True, "127.0.0.1:8000", "http://10.0.0.1:8000")
    assert store.get_cluster_leader(str(member.id)) == ClusterMember(
        id=member.id, addr="127.0.0.1:8000", advertise_addr="http://10.0.0.1:8000"
    )

    member.clear_leadership()
    thread.join(5)
    assert not thread.is_alive()
    assert store.get_cluster_leader(str(member.id)) is None


def test_consul_standby_finds_leader_and_takes_over():
    kv = KeyValueStore()
    first = _member(
        ConsulClusterBackend(kv, retry_interval=0.05, monitor_interval=0.05),
        addr="127.0.0.1:8000",
        adv="http://10.0.0.1:8000",
    )
    second = _member(
        ConsulClusterBackend(kv, retry_interval=0.05, monitor_interval=0.05),
        addr="127.0.0.1:9000",
        adv="http://10.0.0.2:9000",
    )
    assert second.cluster_name == first.cluster_name

    first_thread = _run(first)
    assert first.updates.get(timeout=5).is_leader is True
    second_thread = _run(second)
    time.sleep(0.2)

    assert second.updates.empty()
    assert second.leader() == (False, "127.0.0.1:8000", "http://10.0.0.1:8000")

    first.clear_leadership()
    first_thread.join(5)
    assert not first_thread.is_alive()

    update = second.updates.get(timeout=5)
    assert update.is_leader is True
    assert second.leader() == (True, "127.0.0.1:9000", "http://10.0.0.2:9000")

    second.clear_leadership()
    second_thread.join(5)
    assert not second_thread.is_alive()