"""Scaling state backend stored in a Consul-style key/value store."""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass

from sherpa.state import (
    GARBAGE_COLLECTION_THRESHOLD,
    ScaleBackend,
    ScalingEvent,
    ScalingEventMessage,
)

BASE_KV_PATH = "state/"
EVENTS_KV_PATH = "state/events/"
LATEST_EVENTS_KV_PATH = "state/latest-events/"


@dataclass
class KVPair:
    """A key, its raw value and the session holding it, if any."""

    key: str
    value: bytes = b""
    session: str = ""


class KeyValueStore:
    """Thread-safe key/value store with Consul KV semantics."""

    def __init__(self) -> None:
        self._data: dict[str, KVPair] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> KVPair | None:
        with self._lock:
            pair = self._data.get(key)
            return None if pair is None else KVPair(pair.key, pair.value, pair.session)

    def list(self, prefix: str) -> list[KVPair]:
        with self._lock:
            return [
                KVPair(p.key, p.value, p.session)
                for key, p in sorted(self._data.items())
                if key.startswith(prefix)
            ]

    def keys(self, prefix: str, separator: str = "") -> list[str]:
        """Keys under prefix, folded at the first separator after the prefix."""
        found: set[str] = set()
        with self._lock:
            for key in self._data:
                if not key.startswith(prefix):
                    continue
                rest = key[len(prefix):]
                if separator and separator in rest:
                    cut = rest.index(separator) + len(separator)
                    found.add(prefix + rest[:cut])
                else:
                    found.add(key)
        return sorted(found)

    def put(self, pair: KVPair) -> None:
        with self._lock:
            self._data[pair.key] = KVPair(pair.key, bytes(pair.value), pair.session)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


def _decode_event(raw: bytes) -> ScalingEvent:
    try:
        return ScalingEvent.from_dict(json.loads(raw))
    except (ValueError, KeyError, TypeError) as exc:
        raise ValueError(f"failed to unmarshal Consul KV value: {exc}") from exc


class ConsulScaleBackend(ScaleBackend):
    """Scaling state persisted under a path prefix of a key/value store."""

    def __init__(
        self,
        kv: KeyValueStore,
        path: str = "",
        logger: logging.Logger | None = None,
        gc_threshold: int = GARBAGE_COLLECTION_THRESHOLD,
    ) -> None:
        self.kv = kv
        self.base_path = path + BASE_KV_PATH
        self.events_path = path + EVENTS_KV_PATH
        self.latest_events_path = path + LATEST_EVENTS_KV_PATH
        self.gc_threshold = gc_threshold
        self.logger = logger or logging.getLogger(__name__)

    def get_scaling_events(self) -> dict[uuid.UUID, dict[str, ScalingEvent]]:
        out: dict[uuid.UUID, dict[str, ScalingEvent]] = {}
        for pair in self.kv.list(self.events_path):
            event = _decode_event(pair.value)
            parts = pair.key.split("/")
            try:
                scale_id = uuid.UUID(parts[-2])
            except (ValueError, IndexError) as exc:
                raise ValueError(f"failed to get UUID from string: {exc}") from exc
            out.setdefault(scale_id, {})[parts[-1]] = event
        return out

    def get_scaling_event(self, scale_id: uuid.UUID) -> dict[str, ScalingEvent] | None:
        pairs = self.kv.list(self.events_path + str(scale_id))
        if not pairs:
            return None
        return {pair.key.split("/")[-1]: _decode_event(pair.value) for pair in pairs}

    def put_scaling_event(self, job: str, event: ScalingEventMessage) -> None:
        entry = ScalingEvent.from_message(event)
        raw = json.dumps(entry.to_dict(), separators=(",", ":")).encode()
        name = f"{job}:{event.group_name}"
        self.kv.put(KVPair(key=f"{self.events_path}{event.id}/{name}", value=raw))
        self.kv.put(KVPair(key=f"{self.latest_events_path}{name}", value=raw))

    def run_garbage_collection(self) -> None:
        pairs = self.kv.list(self.events_path)
        if not pairs:
            return
        cutoff = time.time_ns() - self.gc_threshold
        for pair in pairs:
            try:
                event = _decode_event(pair.value)
            except ValueError:
                self.logger.exception("GC failed to unmarshal event for inspection")
                break
            if event.time < cutoff:
                try:
                    self.kv.delete(pair.key)
                except Exception:
                    self.logger.exception(
                        "GC failed to delete stale event in backend store: %s", pair.key
                    )