"""In-memory cluster state backend and leadership lock."""

from __future__ import annotations

import threading
import uuid

from sherpa.state import BackendLock, ClusterBackend, ClusterInfo, ClusterMember


class MemoryClusterLock(BackendLock):
    """A process-local leadership lock."""

    def __init__(self, value: str) -> None:
        self._value = value
        self._held = False
        self._lost: threading.Event | None = None
        self._mutex = threading.Lock()

    def acquire(self, stop: threading.Event) -> threading.Event:
        with self._mutex:
            if self._held:
                raise RuntimeError("lock already held")
            self._held = True
            self._lost = threading.Event()
            return self._lost

    def release(self) -> None:
        with self._mutex:
            if not self._held:
                return
            if self._lost is not None:
                self._lost.set()
            self._lost = None
            self._held = False

    def value(self) -> tuple[bool, str]:
        with self._mutex:
            return True, self._value


class MemoryClusterBackend(ClusterBackend):
    """Cluster information and leader entries kept in process memory."""

    def __init__(self) -> None:
        self._leaders: dict[uuid.UUID, ClusterMember] = {}
        self._leader_lock = threading.Lock()
        self._cluster_info: ClusterInfo | None = None
        self._info_lock = threading.Lock()

    def delete_leader_entries(self, keep_id: uuid.UUID) -> None:
        with self._leader_lock:
            self._leaders = {k: v for k, v in self._leaders.items() if k == keep_id}

    def delete_leader_entry(self, member_id: uuid.UUID) -> None:
        with self._leader_lock:
            self._leaders.pop(member_id, None)

    def get_cluster_info(self) -> ClusterInfo | None:
        with self._info_lock:
            return self._cluster_info

    def put_cluster_info(self, info: ClusterInfo) -> None:
        with self._info_lock:
            self._cluster_info = info

    def put_cluster_leader(self, leader: ClusterMember) -> None:
        with self._leader_lock:
            self._leaders[leader.id] = leader

    def get_cluster_leader(self, member_id: str) -> ClusterMember | None:
        uid = uuid.UUID(member_id)
        with self._leader_lock:
            return self._leaders.get(uid)

    def lock(self, value: str) -> MemoryClusterLock:
        return MemoryClusterLock(value)

    def supports_ha(self) -> bool:
        return False