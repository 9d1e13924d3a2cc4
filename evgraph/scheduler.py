"""
Periodic background tasks (clock monitoring, anchoring).

Each task runs on its own daemon thread. `stop()` prevents further runs
and waits for a run already in progress to finish; it never interrupts
one mid-flight.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(self, name: str, interval_s: float, func: Callable[[], Any], *, run_immediately: bool = True):
        if not callable(func):
            raise ValueError(f"Task function must be callable: {func!r}")
        if interval_s <= 0:
            raise ValueError(f"Interval must be positive: {interval_s}")
        self.name = name
        self.interval_s = interval_s
        self.func = func
        self.run_immediately = run_immediately
        self.runs = 0
        self.failures = 0
        self.last_run: float | None = None
        self._shutdown = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            raise RuntimeError(f"Task {self.name} already running")
        self._shutdown.clear()
        self._thread = threading.Thread(target=self._loop, name=f"evgraph-{self.name}", daemon=True)
        self._thread.start()
        logger.info("Started periodic task %s (every %.1fs)", self.name, self.interval_s)

    def _loop(self) -> None:
        if not self.run_immediately and self._shutdown.wait(self.interval_s):
            return
        while not self._shutdown.is_set():
            self.run_once()
            if self._shutdown.wait(self.interval_s):
                break

    def run_once(self) -> None:
        started = time.monotonic()
        try:
            self.func()
        except Exception:
            self.failures += 1
            logger.exception("Periodic task %s failed", self.name)
        finally:
            self.runs += 1
            self.last_run = time.monotonic()
            logger.debug("Task %s took %.3fs", self.name, self.last_run - started)

    def stop(self, timeout: float | None = None) -> None:
        self._shutdown.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.info("Stopped periodic task %s", self.name)
