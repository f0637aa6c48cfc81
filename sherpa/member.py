"""Cluster membership: cluster identity, leader election and leader discovery."""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from dataclasses import dataclass
from typing import Callable

from sherpa.state import NIL_UUID, BackendLock, ClusterBackend, ClusterInfo, ClusterMember

# Seconds between a standby server's checks for a new leader.
LEADER_CHECK_INTERVAL = 2.5

# Seconds to wait before retrying to take the leadership lock after an error.
LOCK_RETRY_INTERVAL = 10.0

UPDATE_MSG_OBTAINED_LEADERSHIP = "obtained leadership"
UPDATE_MSG_LOST_LEADERSHIP = "lost leadership"

_POLL = 0.02


@dataclass
class MembershipUpdate:
    """A change in this server's leadership status."""

    is_leader: bool
    msg: str = ""


class ClusterNameMismatchError(ValueError):
    """The configured cluster name differs from the one found in the stored state."""


class Member:
    """A server taking part in leader election for a cluster."""

    def __init__(
        self,
        store: ClusterBackend,
        addr: str,
        adv_addr: str = "",
        name: str = "",
        logger: logging.Logger | None = None,
        *,
        leader_check_interval: float = LEADER_CHECK_INTERVAL,
        lock_retry_interval: float = LOCK_RETRY_INTERVAL,
    ) -> None:
        self.id = uuid.uuid4()
        self.addr = addr
        self.adv_addr = adv_addr
        self.cluster_storage = store
        self.cluster_name = name
        self.standby = True
        self.leader_check_interval = leader_check_interval
        self.lock_retry_interval = lock_retry_interval
        self.updates: queue.Queue[MembershipUpdate] = queue.Queue()

        self._ha = store.supports_ha()
        self._state_lock = threading.RLock()
        self._leader_lock = threading.Lock()
        self._leader_id = NIL_UUID
        self._leader_addr = ""
        self._leader_adv_addr = ""
        self._cluster_lock: BackendLock | None = None
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._refresh_guard = threading.Lock()

        base = logger or logging.getLogger(__name__)
        self.logger: logging.Logger | logging.LoggerAdapter = base
        self._setup_cluster()
        self.logger = logging.LoggerAdapter(
            base, {"cluster_member_id": str(self.id), "cluster_name": self.cluster_name}
        )

    # Cluster identity.

    def _setup_cluster(self) -> None:
        info = self.cluster_storage.get_cluster_info() or ClusterInfo()
        if info.name and info.id != NIL_UUID:
            self.verify_cluster_name(info.name)
        self._generate_cluster_name()
        cluster_id = uuid.uuid4()
        self.logger.debug("successfully generated new cluster ID: %s", cluster_id)
        self.cluster_storage.put_cluster_info(ClusterInfo(id=cluster_id, name=self.cluster_name))

    def verify_cluster_name(self, name: str) -> None:
        """Adopt the stored cluster name, failing if the configured one differs."""
        if self.cluster_name and self.cluster_name != name:
            raise ClusterNameMismatchError(
                "operator configured cluster name does not match discover state cluster name"
            )
        self.logger.info("successfully found cluster state of existing cluster to join")
        self.cluster_name = name

    def _generate_cluster_name(self) -> None:
        if not self.cluster_name:
            self.cluster_name = f"sherpa-{uuid.uuid4()}"
            self.logger.debug("successfully generated new cluster name: %s", self.cluster_name)

    def is_ha(self) -> bool:
        """Whether the cluster storage supports high availability."""
        return self._ha

    # Leadership.

    def run_leadership_loop(self) -> None:
        """Take part in leader election until clear_leadership() is called."""
        refresh_stop = threading.Event()
        leader_stop = threading.Event()

        def actor(target: Callable[[threading.Event], None], stop: threading.Event) -> None:
            try:
                target(stop)
            finally:
                self._wake.set()

        threads = [
            threading.Thread(target=actor, args=(self._leader_refresh, refresh_stop), daemon=True),
            threading.Thread(
                target=actor, args=(self._wait_for_leadership, leader_stop), daemon=True
            ),
        ]
        for thread in threads:
            thread.start()

        self._wake.wait()
        refresh_stop.set()
        self.logger.debug("shutting down periodic leader refresh")
        leader_stop.set()
        self.logger.debug("shutting down leader elections")
        for thread in threads:
            thread.join()

    def leader(self) -> tuple[bool, str, str]:
        """Return whether this server leads, and the leader's address and advertise address."""
        with self._state_lock:
            if not self.standby:
                return True, self.addr, self.adv_addr

            held, leader_id = self.cluster_storage.lock("read").value()
            if not held:
                return False, "", ""

            with self._leader_lock:
                if (
                    leader_id == str(self._leader_id)
                    and self._leader_addr
                    and self._leader_adv_addr
                ):
                    return False, self._leader_addr, self._leader_adv_addr

                self.logger.debug("found new leadership information, updating internal references")
                leader = self.cluster_storage.get_cluster_leader(leader_id)
                if leader is None:
                    return False, "", ""
                self._leader_id = leader.id
                self._leader_addr = leader.addr
                self._leader_adv_addr = leader.advertise_addr
                return False, leader.addr, leader.advertise_addr

    def clear_leadership(self) -> None:
        """Stop the leadership processes and give up any held leadership."""
        self.logger.info("shutting down leadership handler")
        self._stop.set()
        self._wake.set()

        lock = self._cluster_lock
        if lock is not None:
            try:
                lock.release()
            except Exception:
                self.logger.exception("failed to gracefully release leadership lock")
            self._cluster_lock = None

        try:
            self._remove_as_leader(self.id)
        except Exception:
            self.logger.exception("failed to gracefully remove leadership state entry")

    def _stopped(self, stop: threading.Event) -> bool:
        return stop.is_set() or self._stop.is_set()

    def _acquire_lock(self, lock: BackendLock, stop: threading.Event) -> threading.Event | None:
        while True:
            try:
                return lock.acquire(stop)
            except Exception:
                self.logger.exception("failed to acquire lock")
                if stop.wait(self.lock_retry_interval):
                    return None

    def _grab_state_lock(self, stop: threading.Event) -> bool:
        """Take the state lock; return False, not holding it, if stopped first."""
        while not self._stopped(stop):
            if self._state_lock.acquire(timeout=_POLL):
                if self._stopped(stop):
                    self._state_lock.release()
                    return False
                return True
        return False

    def _release_lock(self, lock: BackendLock) -> None:
        try:
            lock.release()
        except Exception:
            self.logger.exception("failed to release the held leadership lock")

    def _wait_for_leadership(self, stop: threading.Event) -> None:
        while not self._stopped(stop):
            try:
                lock = self.cluster_storage.lock(str(self.id))
            except Exception:
                self.logger.exception("failed to get lock on storage backend")
                return

            lost = self._acquire_lock(lock, stop)
            if lost is None:
                self.logger.debug("failed to acquire leadership lock")
                return

            if not self._grab_state_lock(stop):
                self._release_lock(lock)
                return

            self._cluster_lock = lock
            try:
                self._set_as_leader()
            except Exception:
                self._cluster_lock = None
                self._release_lock(lock)
                self._state_lock.release()
                self.logger.exception("failed to set server as leader")
                continue
            self.logger.info("server is now acting as Sherpa cluster leader")

            self.standby = False
            self.updates.put(MembershipUpdate(True, UPDATE_MSG_OBTAINED_LEADERSHIP))
            self._state_lock.release()

            while not (lost.is_set() or self._stopped(stop)):
                lost.wait(_POLL)
            if self._stopped(stop):
                return

            self.logger.warning("cluster leadership has been lost")
            self.updates.put(MembershipUpdate(False, UPDATE_MSG_LOST_LEADERSHIP))

            grabbed = self._grab_state_lock(stop)
            self.standby = True
            try:
                self._remove_as_leader(self.id)
            except Exception:
                self.logger.exception("clearing leader advertisement failed")
            if self._cluster_lock is not None:
                try:
                    self._cluster_lock.release()
                except Exception:
                    self.logger.exception("failed to release cluster lock")
            self._cluster_lock = None
            if not grabbed:
                return
            self._state_lock.release()

    def _leader_refresh(self, stop: threading.Event) -> None:
        while not stop.wait(self.leader_check_interval):
            if not self._refresh_guard.acquire(blocking=False):
                continue
            threading.Thread(target=self._refresh_once, daemon=True).start()

    def _refresh_once(self) -> None:
        try:
            self.leader()
        except Exception:
            self.logger.debug("periodic leader refresh failed", exc_info=True)
        finally:
            self._refresh_guard.release()

    def _set_as_leader(self) -> None:
        self.cluster_storage.delete_leader_entries(self.id)
        self.cluster_storage.put_cluster_leader(
            ClusterMember(id=self.id, addr=self.addr, advertise_addr=self.adv_addr)
        )

    def _remove_as_leader(self, member_id: uuid.UUID) -> None:
        self.cluster_storage.delete_leader_entry(member_id)