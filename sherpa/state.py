"""Scaling and cluster state types, and the interfaces of their storage backends."""

from __future__ import annotations

import abc
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Age in nanoseconds after which a stored scaling event is stale (24 hours).
GARBAGE_COLLECTION_THRESHOLD = 86_400_000_000_000

NIL_UUID = uuid.UUID(int=0)


class Source(str, Enum):
    """How a scaling action was invoked."""

    API = "API"
    INTERNAL_AUTOSCALER = "InternalAutoscaler"

    def __str__(self) -> str:
        return self.value


class Status(str, Enum):
    """Whether a scaling event was registered with the scheduler successfully."""

    COMPLETED = "Completed"
    FAILED = "Failed"

    def __str__(self) -> str:
        return self.value


@dataclass
class ClusterInfo:
    """Identity of a cluster: a UUID and a human friendly name."""

    id: uuid.UUID = NIL_UUID
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"ID": str(self.id), "Name": self.name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClusterInfo:
        return cls(id=uuid.UUID(data.get("ID", str(NIL_UUID))), name=data.get("Name", ""))


@dataclass
class ClusterMember:
    """A server eligible to act as cluster leader."""

    id: uuid.UUID
    addr: str = ""
    advertise_addr: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"ID": str(self.id), "Addr": self.addr, "AdvertiseAddr": self.advertise_addr}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClusterMember:
        return cls(
            id=uuid.UUID(data.get("ID", str(NIL_UUID))),
            addr=data.get("Addr", ""),
            advertise_addr=data.get("AdvertiseAddr", ""),
        )


@dataclass
class EventDetails:
    """What was changed on a job group during a scaling action."""

    count: int = 0
    direction: str = ""


@dataclass
class ScalingEventMessage:
    """Everything needed to build a persisted scaling event entry."""

    id: uuid.UUID
    group_name: str
    eval_id: str
    source: Source
    time: int
    status: Status
    count: int
    direction: str


@dataclass
class ScalingEvent:
    """A single persisted scaling event entry."""

    eval_id: str
    source: Source
    time: int
    status: Status
    details: EventDetails = field(default_factory=EventDetails)

    @classmethod
    def from_message(cls, message: ScalingEventMessage) -> ScalingEvent:
        return cls(
            eval_id=message.eval_id,
            source=message.source,
            time=message.time,
            status=message.status,
            details=EventDetails(count=message.count, direction=message.direction),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "EvalID": self.eval_id,
            "Source": Source(self.source).value,
            "Time": self.time,
            "Status": Status(self.status).value,
            "Details": {"Count": self.details.count, "Direction": self.details.direction},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScalingEvent:
        details = data.get("Details") or {}
        return cls(
            eval_id=data.get("EvalID", ""),
            source=Source(data["Source"]),
            time=int(data.get("Time", 0)),
            status=Status(data["Status"]),
            details=EventDetails(
                count=int(details.get("Count", 0)),
                direction=details.get("Direction", ""),
            ),
        )


@dataclass
class ScalingState:
    """All scaling events by scale ID, plus the latest event per job:group key."""

    events: dict[uuid.UUID, dict[str, ScalingEvent]] = field(default_factory=dict)
    latest_events: dict[str, ScalingEvent] = field(default_factory=dict)


class ScaleBackend(abc.ABC):
    """Durable storage of scaling events."""

    @abc.abstractmethod
    def get_scaling_events(self) -> dict[uuid.UUID, dict[str, ScalingEvent]]:
        """Return every scaling event held in the state."""

    @abc.abstractmethod
    def get_scaling_event(self, scale_id: uuid.UUID) -> dict[str, ScalingEvent] | None:
        """Return the events of one scaling action, or None if unknown."""

    @abc.abstractmethod
    def put_scaling_event(self, job: str, event: ScalingEventMessage) -> None:
        """Store a scaling event and record it as the latest for its job group."""

    @abc.abstractmethod
    def run_garbage_collection(self) -> None:
        """Remove stale events from the state."""


class BackendLock(abc.ABC):
    """The leadership lock."""

    @abc.abstractmethod
    def acquire(self, stop: threading.Event) -> threading.Event:
        """Take the lock; the returned event is set when leadership is lost."""

    @abc.abstractmethod
    def release(self) -> None:
        """Release the lock."""

    @abc.abstractmethod
    def value(self) -> tuple[bool, str]:
        """Return whether the lock is held and the value stored with it."""


class ClusterBackend(abc.ABC):
    """Storage of cluster information and leadership state."""

    @abc.abstractmethod
    def delete_leader_entries(self, keep_id: uuid.UUID) -> None:
        """Delete every leader entry except the one of keep_id."""

    @abc.abstractmethod
    def delete_leader_entry(self, member_id: uuid.UUID) -> None:
        """Delete the leader entry of member_id if present."""

    @abc.abstractmethod
    def get_cluster_info(self) -> ClusterInfo | None:
        """Return stored cluster information, or None for a new cluster."""

    @abc.abstractmethod
    def put_cluster_info(self, info: ClusterInfo) -> None:
        """Store cluster information."""

    @abc.abstractmethod
    def put_cluster_leader(self, leader: ClusterMember) -> None:
        """Store the current leader entry."""

    @abc.abstractmethod
    def get_cluster_leader(self, member_id: str) -> ClusterMember | None:
        """Return the leader entry for a member ID, or None."""

    @abc.abstractmethod
    def lock(self, value: str) -> BackendLock:
        """Return a leadership lock carrying the given value."""

    @abc.abstractmethod
    def supports_ha(self) -> bool:
        """Whether the backend supports high availability."""