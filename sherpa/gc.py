"""Periodic garbage collection of the scaling state."""

from __future__ import annotations

import logging
import threading

from sherpa.state import ScaleBackend

DEFAULT_INTERVAL = 600.0


class GarbageCollector:
    """Runs state garbage collection at a fixed interval until stopped."""

    def __init__(
        self,
        state: ScaleBackend,
        interval: float = DEFAULT_INTERVAL,
        logger: logging.Logger | None = None,
    ) -> None:
        self.state = state
        self.interval = interval
        self.logger = logger or logging.getLogger(__name__)
        self._stop = threading.Event()
        self._running = False

    def run(self) -> None:
        """Block, collecting garbage every interval, until stop() is called."""
        self.logger.info("started scaling state garbage collector handler")
        self._running = True
        try:
            while not self._stop.wait(self.interval):
                self.logger.debug("triggering internal run of state garbage collection")
                self.state.run_garbage_collection()
        finally:
            self.logger.info("shutting down state garbage collection handler")
            self._running = False
            self._stop.clear()

    def stop(self) -> None:
        """Ask the running loop to finish."""
        self._stop.set()

    def is_running(self) -> bool:
        return self._running