"""Scheduler-facing hooks.

The host scheduler calls ``SchedulingHook`` on every scheduling attempt for
a queued unit, ``SetupHook`` when the unit's build starts and
``CompletionHook`` once the unit has finished for any reason. None of the
hooks blocks on container commands.
"""

from __future__ import annotations

import traceback
from collections.abc import Callable
from typing import TextIO

from dss.abort import AbortCoordinator
from dss.config import WrapperConfig
from dss.exceptions import WorkerTimeoutError
from dss.logging import get_logger
from dss.types import SchedulableUnit, SchedulingDecision
from dss.worker import Worker
from dss.worker_registry import WorkerRegistry

logger = get_logger("hooks")

WorkerFactory = Callable[[SchedulableUnit, WrapperConfig], Worker]


class SchedulingHook:
    """Provisions a worker on the first attempt and routes once it is ready."""

    def __init__(self, registry: WorkerRegistry, aborts: AbortCoordinator, worker_factory: WorkerFactory) -> None:
        self.registry = registry
        self.aborts = aborts
        self.worker_factory = worker_factory

    def on_scheduling_attempt(self, unit: SchedulableUnit, wrapper: WrapperConfig | None) -> SchedulingDecision:
        """Decide whether ``unit`` can be routed now.

        Args:
            unit: Queued unit
            wrapper: Its build wrapper, or None if it does not use DSS workers

        Returns:
            READY with the worker label, PENDING while the worker starts,
            REFUSED once the unit is aborted, UNMANAGED without a wrapper
        """
        if wrapper is None:
            return SchedulingDecision.unmanaged()

        cause = self.aborts.get_cause(unit)
        if cause is not None:
            return SchedulingDecision.refused(str(cause))

        try:
            worker, created = self.registry.get_or_create(unit, lambda: self.worker_factory(unit, wrapper))
            if created:
                logger.info(f"Provisioning worker {worker.label} for {unit}")
                worker.create()

            # The scheduler keeps asking while no node with the label is online,
            # so a worker that never comes up has to be given up on here.
            if worker.should_timeout():
                window = (
                    worker.timeouts.slave_seconds
                    if worker.time_wait_for_slave is not None
                    else worker.timeouts.start_seconds
                )
                raise WorkerTimeoutError(
                    "Worker container (or docker itself) didn't respond in time, aborting",
                    worker.label,
                    window,
                )

            if worker.is_ready:
                worker.mark_assigned()
                return SchedulingDecision.ready(worker.label)

        except Exception as e:  # noqa: BLE001 - the scheduler must never see hook failures; they abort the unit
            logger.error(f"Scheduling {unit} failed: {e}", exc_info=not isinstance(e, WorkerTimeoutError))
            worker_for_unit = self.registry.get(unit)
            if worker_for_unit is not None:
                worker_for_unit.abort(e)
            else:
                self.aborts.abort(unit, e)

        cause = self.aborts.get_cause(unit)
        if cause is not None:
            return SchedulingDecision.refused(str(cause))
        return SchedulingDecision.pending()


class SetupHook:
    """Fails a build at setup when its worker was aborted, logging the cause."""

    def __init__(self, aborts: AbortCoordinator) -> None:
        self.aborts = aborts

    def on_build_setup(self, unit: SchedulableUnit, build_log: TextIO) -> bool:
        """Return False (build fails) if ``unit`` has an abort record.

        The recorded cause, with its traceback, is written to ``build_log``.
        """
        cause = self.aborts.get_cause(unit)
        if cause is None:
            return True
        traceback.print_exception(cause, file=build_log)
        return False


class CompletionHook:
    """Tears a unit's worker down when the unit has finished."""

    def __init__(self, registry: WorkerRegistry, aborts: AbortCoordinator) -> None:
        self.registry = registry
        self.aborts = aborts

    def on_unit_finished(self, unit: SchedulableUnit) -> None:
        worker = self.registry.get(unit)
        if worker is None:
            # No worker was ever registered, e.g. its construction failed;
            # only a stale abort record can be left behind.
            self.aborts.remove(unit)
            return
        worker.cleanup()
