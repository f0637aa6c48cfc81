"""In-memory scaling state backend."""

from __future__ import annotations

import threading
import time
import uuid

from sherpa.state import (
    GARBAGE_COLLECTION_THRESHOLD,
    ScaleBackend,
    ScalingEvent,
    ScalingEventMessage,
    ScalingState,
)


class MemoryScaleBackend(ScaleBackend):
    """Scaling state kept in process memory."""

    def __init__(self, gc_threshold: int = GARBAGE_COLLECTION_THRESHOLD) -> None:
        self.gc_threshold = gc_threshold
        self._state = ScalingState()
        self._lock = threading.RLock()

    def get_scaling_events(self) -> dict[uuid.UUID, dict[str, ScalingEvent]]:
        with self._lock:
            return {scale_id: dict(group) for scale_id, group in self._state.events.items()}

    def get_scaling_event(self, scale_id: uuid.UUID) -> dict[str, ScalingEvent] | None:
        with self._lock:
            group = self._state.events.get(scale_id)
            return None if group is None else dict(group)

    def put_scaling_event(self, job: str, event: ScalingEventMessage) -> None:
        key = f"{job}:{event.group_name}"
        entry = ScalingEvent.from_message(event)
        with self._lock:
            self._state.events[event.id] = {key: entry}
            self._state.latest_events[key] = entry

    @property
    def latest_events(self) -> dict[str, ScalingEvent]:
        """The latest event per job:group key; never garbage collected."""
        with self._lock:
            return dict(self._state.latest_events)

    def run_garbage_collection(self) -> None:
        cutoff = time.time_ns() - self.gc_threshold
        with self._lock:
            kept: dict[uuid.UUID, dict[str, ScalingEvent]] = {}
            for scale_id, group in self._state.events.items():
                fresh = {name: ev for name, ev in group.items() if ev.time > cutoff}
                if fresh:
                    kept[scale_id] = fresh
            self._state.events = kept