"""Process-wide DSS state, owned explicitly by the host process."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from types import TracebackType
from typing import TextIO

from dss.abort import AbortCoordinator
from dss.address_resolver import AddressResolver
from dss.command_executor import CommandExecutor
from dss.config import DssConfig, WrapperConfig
from dss.constants import WorkerState
from dss.credentials import ConfigCredentialProvider, CredentialProvider
from dss.docker_driver import DockerDriver
from dss.hooks import CompletionHook, SchedulingHook, SetupHook
from dss.logging import get_logger
from dss.types import SchedulableUnit, SchedulingDecision
from dss.worker import Worker
from dss.worker_registry import WorkerRegistry

logger = get_logger("runtime")


class DssRuntime:
    """Wires the shared pool, registry, abort records and hooks together.

    One instance lives as long as the host scheduler; every component gets
    its collaborators from here rather than from module globals.
    """

    def __init__(
        self,
        config: DssConfig | None = None,
        credentials: CredentialProvider | None = None,
        executor: CommandExecutor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize runtime.

        Args:
            config: DSS configuration
            credentials: Credential provider (defaults to the config's credentials)
            executor: Command executor (defaults to one sized from the config)
            clock: Monotonic clock used by workers
        """
        self.config = config or DssConfig()
        self.executor = executor or CommandExecutor(
            max_workers=self.config.executor.max_workers,
            timeout=self.config.timeouts.command_seconds,
            thread_name_prefix=self.config.executor.thread_name_prefix,
        )
        self.credentials = credentials or ConfigCredentialProvider(self.config.credentials)
        self.clock = clock

        self.registry = WorkerRegistry()
        self.aborts = AbortCoordinator()
        self.resolver = AddressResolver(self.config.controller, self.executor)

        self.scheduling_hook = SchedulingHook(self.registry, self.aborts, self.new_worker)
        self.setup_hook = SetupHook(self.aborts)
        self.completion_hook = CompletionHook(self.registry, self.aborts)

        # Every worker built here until it reached CLOSED
        self._workers_lock = threading.Lock()
        self._workers: set[Worker] = set()

    def driver_for(self, wrapper: WrapperConfig) -> DockerDriver:
        return DockerDriver.for_wrapper(self.executor, wrapper, self.config.installations)

    def new_worker(self, unit: SchedulableUnit, wrapper: WrapperConfig) -> Worker:
        """Build (but neither register nor create) a worker for ``unit``."""
        worker = Worker(
            unit,
            wrapper,
            driver=self.driver_for(wrapper),
            resolver=self.resolver,
            credentials=self.credentials,
            registry=self.registry,
            aborts=self.aborts,
            timeouts=self.config.timeouts,
            clock=self.clock,
            on_closed=self._forget,
        )
        with self._workers_lock:
            self._workers.add(worker)
        return worker

    def _forget(self, worker: Worker) -> None:
        with self._workers_lock:
            self._workers.discard(worker)

    def tearing_down(self) -> list[Worker]:
        """Workers whose cleanup started but whose teardown commands are still running."""
        with self._workers_lock:
            workers = list(self._workers)
        return [w for w in workers if w.state is WorkerState.CLEANING]

    def wrapper_for(self, unit: SchedulableUnit) -> WrapperConfig | None:
        return self.config.get_wrapper(unit.project_name)

    def on_scheduling_attempt(self, unit: SchedulableUnit) -> SchedulingDecision:
        return self.scheduling_hook.on_scheduling_attempt(unit, self.wrapper_for(unit))

    def on_build_setup(self, unit: SchedulableUnit, build_log: TextIO) -> bool:
        return self.setup_hook.on_build_setup(unit, build_log)

    def on_unit_finished(self, unit: SchedulableUnit) -> None:
        self.completion_hook.on_unit_finished(unit)

    def shutdown(self, wait: bool = True) -> None:
        """Tear down every live worker, then stop the shared pool.

        With ``wait`` the pool stays open until every worker has closed,
        including workers already handed to the completion hook.
        """
        live = self.registry.all()
        for unit, worker in live.items():
            logger.info(f"Shutting down worker {worker.label} for {unit}")
            worker.cleanup()
        if wait:
            for worker in set(live.values()) | set(self.tearing_down()):
                if not worker.wait_closed(self.config.timeouts.command_seconds):
                    logger.warning(f"Worker {worker.label} did not finish tearing down")
        self.executor.shutdown(wait=wait)

    def __enter__(self) -> DssRuntime:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown()
