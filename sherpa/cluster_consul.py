"""Cluster state backend and leadership lock on a Consul-style key/value store."""

from __future__ import annotations

import json
import logging
import threading
import uuid

from sherpa.scale_consul import KeyValueStore, KVPair
from sherpa.state import BackendLock, ClusterBackend, ClusterInfo, ClusterMember

CLUSTER_INFO_PATH = "cluster/info"
CLUSTER_LOCK_PATH = "cluster/lock"
CLUSTER_LEADER_PATH = "cluster/leader/"

# Serialises lock take-over across all locks so check-and-set on the lock key is atomic.
_ACQUIRE_GUARD = threading.Lock()


def _encode(data: dict) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode()


class ConsulClusterLock(BackendLock):
    """A leadership lock held by writing a session onto a single key."""

    def __init__(
        self,
        kv: KeyValueStore,
        key: str,
        value: str,
        retry_interval: float = 0.1,
        monitor_interval: float = 0.5,
    ) -> None:
        self.kv = kv
        self.key = key
        self._value = value
        self.retry_interval = retry_interval
        self.monitor_interval = monitor_interval
        self._session = ""
        self._lost: threading.Event | None = None
        self._mutex = threading.Lock()

    def acquire(self, stop: threading.Event) -> threading.Event | None:
        """Block until the lock is taken; return None if stop is set first."""
        with self._mutex:
            if self._session:
                raise RuntimeError("lock already held")
        session = str(uuid.uuid4())
        while True:
            with _ACQUIRE_GUARD:
                pair = self.kv.get(self.key)
                if pair is None or not pair.session:
                    self.kv.put(KVPair(key=self.key, value=self._value.encode(), session=session))
                    break
            if stop.wait(self.retry_interval):
                return None

        lost = threading.Event()
        with self._mutex:
            self._session = session
            self._lost = lost
        threading.Thread(target=self._monitor, args=(session, lost), daemon=True).start()
        return lost

    def _monitor(self, session: str, lost: threading.Event) -> None:
        while not lost.wait(self.monitor_interval):
            pair = self.kv.get(self.key)
            if pair is None or pair.session != session:
                with self._mutex:
                    if self._session == session:
                        self._session = ""
                        self._lost = None
                lost.set()
                return

    def release(self) -> None:
        with self._mutex:
            session, lost = self._session, self._lost
            if not session:
                raise RuntimeError("lock not held")
            self._session = ""
            self._lost = None
        with _ACQUIRE_GUARD:
            pair = self.kv.get(self.key)
            if pair is not None and pair.session == session:
                self.kv.put(KVPair(key=self.key, value=pair.value, session=""))
        if lost is not None:
            lost.set()

    def value(self) -> tuple[bool, str]:
        pair = self.kv.get(self.key)
        if pair is None:
            return False, ""
        return pair.session != "", pair.value.decode()


class ConsulClusterBackend(ClusterBackend):
    """Cluster information and leader entries stored under a path prefix."""

    def __init__(
        self,
        kv: KeyValueStore,
        path: str = "",
        logger: logging.Logger | None = None,
        retry_interval: float = 0.1,
        monitor_interval: float = 0.5,
    ) -> None:
        self.kv = kv
        self.cluster_info_path = path + CLUSTER_INFO_PATH
        self.cluster_lock_path = path + CLUSTER_LOCK_PATH
        self.cluster_leader_path = path + CLUSTER_LEADER_PATH
        self.retry_interval = retry_interval
        self.monitor_interval = monitor_interval
        self.logger = logger or logging.getLogger(__name__)

    def delete_leader_entries(self, keep_id: uuid.UUID) -> None:
        try:
            keys = self.kv.keys(self.cluster_leader_path, "/")
        except Exception:
            self.logger.exception("failed to list leader entries")
            return
        for key in keys:
            member_id = key[len(self.cluster_leader_path):]
            if member_id == str(keep_id):
                continue
            try:
                self.kv.delete(key)
            except Exception:
                self.logger.exception("failed to delete leadership entry")

    def delete_leader_entry(self, member_id: uuid.UUID) -> None:
        self.kv.delete(self.cluster_leader_path + str(member_id))

    def get_cluster_info(self) -> ClusterInfo | None:
        pair = self.kv.get(self.cluster_info_path)
        if pair is None:
            return None
        return ClusterInfo.from_dict(json.loads(pair.value))

    def put_cluster_info(self, info: ClusterInfo) -> None:
        self.kv.put(KVPair(key=self.cluster_info_path, value=_encode(info.to_dict())))

    def get_cluster_leader(self, member_id: str) -> ClusterMember | None:
        pair = self.kv.get(self.cluster_leader_path + member_id)
        if pair is None:
            return None
        return ClusterMember.from_dict(json.loads(pair.value))

    def put_cluster_leader(self, leader: ClusterMember) -> None:
        self.kv.put(
            KVPair(key=self.cluster_leader_path + str(leader.id), value=_encode(leader.to_dict()))
        )

    def lock(self, value: str) -> ConsulClusterLock:
        return ConsulClusterLock(
            self.kv,
            self.cluster_lock_path,
            value,
            retry_interval=self.retry_interval,
            monitor_interval=self.monitor_interval,
        )

    def supports_ha(self) -> bool:
        return True