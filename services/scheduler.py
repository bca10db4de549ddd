"""Fixed-interval background worker used by the ingestion and control loops."""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable, Optional

from models.errors import FatalLoopError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def next_boundary(started_at: float, interval: float, now: float) -> float:
    """Return the first tick boundary strictly after ``now``.

    Boundaries sit at ``started_at + n * interval``. Boundaries missed while
    a cycle overran are skipped rather than replayed.
    """
    if now < started_at:
        return started_at
    elapsed_ticks = math.floor((now - started_at) / interval) + 1
    return started_at + elapsed_ticks * interval


class PeriodicWorker:
    """Run ``cycle`` on a dedicated thread at fixed interval boundaries.

    The first tick fires immediately. ``stop()`` only interrupts the sleep
    between cycles; a cycle in progress always runs to completion. Any
    ``Exception`` raised by a cycle is logged and the schedule continues.
    ``FatalLoopError`` (or an error escaping the loop itself) ends the
    worker and is reported through ``on_failure``.
    """

    def __init__(
        self,
        name: str,
        cycle: Callable[[], object],
        interval: float,
        on_failure: Optional[Callable[["PeriodicWorker", Exception], None]] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive.")
        self.name = name
        self.interval = interval
        self._cycle = cycle
        self._on_failure = on_failure
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.cycles_completed = 0
        self.cycles_failed = 0
        self.failure: Optional[Exception] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self.failure = None
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info("%s started with interval=%.1fs", self.name, self.interval, extra={"loop": self.name})

    def request_stop(self) -> None:
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker thread; returns True once it has exited."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout=timeout)
        return not thread.is_alive()

    def stop(self, timeout: Optional[float] = None) -> bool:
        self.request_stop()
        return self.join(timeout)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def _run(self) -> None:
        started_at = self._clock()
        try:
            while not self._stop_event.is_set():
                self._run_cycle()
                if self._stop_event.is_set():
                    break
                now = self._clock()
                delay = next_boundary(started_at, self.interval, now) - now
                self._stop_event.wait(delay)
        except Exception as exc:  # noqa: BLE001 - reported to the supervisor
            self.failure = exc
            logger.critical(
                "%s terminated unexpectedly: %s",
                self.name,
                exc,
                exc_info=exc,
                extra={"loop": self.name},
            )
            if self._on_failure is not None:
                self._on_failure(self, exc)
            return
        logger.info(
            "%s stopped after %d cycles",
            self.name,
            self.cycles_completed,
            extra={"loop": self.name},
        )

    def _run_cycle(self) -> None:
        cycle_number = self.cycles_completed + self.cycles_failed + 1
        start = time.perf_counter()
        try:
            self._cycle()
        except FatalLoopError:
            raise
        except Exception as exc:  # noqa: BLE001 - next tick retries
            self.cycles_failed += 1
            logger.error(
                "%s cycle failed: %s",
                self.name,
                exc,
                exc_info=exc,
                extra={"loop": self.name, "cycle": cycle_number},
            )
            return
        self.cycles_completed += 1
        logger.debug(
            "%s cycle finished",
            self.name,
            extra={
                "loop": self.name,
                "cycle": cycle_number,
                "elapsed_ms": int((time.perf_counter() - start) * 1000),
            },
        )
