"""Lifecycle owner for the ingestion and control loops."""

from __future__ import annotations

import logging
import os
import signal
import threading
from functools import lru_cache
from typing import Callable, Optional

from datastore.reading_store import ReadingStore, build_default_store
from gateway.base import VendorGateway
from gateway.mock_vendor import DemoVendorGateway
from gateway.tuya import TuyaGateway
from services.control import ControlLoop, ControlPolicy, ThermostatPolicy
from services.ingestion import IngestionLoop
from services.reading_cache import ReadingCache
from services.scheduler import PeriodicWorker
from settings import Settings, get_settings

logger = logging.getLogger(__name__)


def _terminate_process() -> None:
    os.kill(os.getpid(), signal.SIGTERM)


class Supervisor:
    """Starts both loops, stops them together and reacts to a dead loop.

    The supervisor owns the ``ReadingCache`` and hands it to both loops. When
    a worker terminates unexpectedly and ``fatal_on_failure`` is set, the
    other worker is stopped and ``on_fatal`` is invoked; otherwise only the
    failure is logged and the surviving loop keeps running.
    """

    def __init__(
        self,
        ingestion: IngestionLoop,
        control: ControlLoop,
        cache: ReadingCache,
        poll_interval: float = 60.0,
        control_interval: float = 30.0,
        fatal_on_failure: bool = True,
        on_fatal: Optional[Callable[[], None]] = None,
    ) -> None:
        self.cache = cache
        self.ingestion = ingestion
        self.control = control
        self.fatal_on_failure = fatal_on_failure
        self._on_fatal = on_fatal or _terminate_process
        self._failed = threading.Event()
        self._shutdown = threading.Event()
        self.ingestion_worker = PeriodicWorker(
            "ingestion-loop", ingestion.run_cycle, poll_interval, on_failure=self._worker_failed
        )
        self.control_worker = PeriodicWorker(
            "control-loop", control.run_cycle, control_interval, on_failure=self._worker_failed
        )

    @property
    def workers(self) -> tuple[PeriodicWorker, PeriodicWorker]:
        return (self.ingestion_worker, self.control_worker)

    @property
    def failed(self) -> bool:
        return self._failed.is_set()

    def start(self) -> None:
        self._shutdown.clear()
        for worker in self.workers:
            worker.start()
        logger.info(
            "Supervisor started; polling %d device(s)",
            len(self.ingestion.device_ids),
        )

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Ask both loops to stop after their current cycle and wait for them.

        Returns True when both workers have exited within ``timeout``.
        """
        self._shutdown.set()
        for worker in self.workers:
            worker.request_stop()
        stopped = all([worker.join(timeout) for worker in self.workers])
        if stopped:
            logger.info("Supervisor stopped both loops")
        else:
            logger.warning("Supervisor timed out waiting for loops to stop")
        return stopped

    def close(self) -> None:
        """Release gateway resources; call after ``stop``."""
        gateways = {id(loop.gateway): loop.gateway for loop in (self.ingestion, self.control)}
        for gateway in gateways.values():
            gateway.close()

    def run_forever(self, install_signal_handlers: bool = True) -> int:
        """Block until SIGINT/SIGTERM or a fatal loop failure; returns an exit code."""
        if install_signal_handlers:
            for signum in (signal.SIGINT, signal.SIGTERM):
                signal.signal(signum, self._handle_signal)
        self.start()
        while not self._shutdown.wait(timeout=1.0):
            pass
        self.stop()
        self.close()
        return 1 if self.failed else 0

    def request_shutdown(self) -> None:
        self._shutdown.set()

    def _handle_signal(self, signum: int, _frame: object) -> None:
        logger.info("Shutdown signal received", extra={"reason": signal.Signals(signum).name})
        self._shutdown.set()

    def _worker_failed(self, worker: PeriodicWorker, exc: Exception) -> None:
        self._failed.set()
        if not self.fatal_on_failure:
            logger.error(
                "%s died; continuing with the remaining loop",
                worker.name,
                extra={"loop": worker.name, "reason": type(exc).__name__},
            )
            return

        logger.critical(
            "%s died; shutting down",
            worker.name,
            extra={"loop": worker.name, "reason": type(exc).__name__},
        )
        for other in self.workers:
            if other is not worker:
                other.request_stop()
        self._shutdown.set()
        self._on_fatal()


def build_gateway(settings: Settings) -> VendorGateway:
    if settings.vendor_backend == "mock":
        return DemoVendorGateway(settings.device_ids)
    return TuyaGateway(
        base_url=settings.tuya_base_url,
        client_id=settings.tuya_client_id,
        client_secret=settings.tuya_client_secret,
        timeout=settings.vendor_timeout,
    )


def build_supervisor(
    settings: Settings,
    gateway: VendorGateway,
    store: ReadingStore,
    policy: Optional[ControlPolicy] = None,
    on_fatal: Optional[Callable[[], None]] = None,
) -> Supervisor:
    cache = ReadingCache()
    ingestion = IngestionLoop(gateway=gateway, store=store, cache=cache, device_ids=settings.device_ids)
    control = ControlLoop(
        gateway=gateway,
        cache=cache,
        policy=policy or ThermostatPolicy(hysteresis=settings.thermostat_hysteresis),
        device_ids=settings.control_device_ids,
    )
    return Supervisor(
        ingestion=ingestion,
        control=control,
        cache=cache,
        poll_interval=settings.poll_interval,
        control_interval=settings.control_interval,
        fatal_on_failure=settings.fatal_on_loop_failure,
        on_fatal=on_fatal,
    )


@lru_cache
def build_default_supervisor() -> Supervisor:
    """Factory that wires the supervisor from environment settings."""
    settings = get_settings()
    return build_supervisor(settings, gateway=build_gateway(settings), store=build_default_store())
