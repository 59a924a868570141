"""Thread-safe map from schedulable unit to its live worker.

The registry is the single synchronization point that guarantees at most
one live worker per unit, even when the scheduler polls the same unit
from several threads at once.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING

from dss.exceptions import DuplicateWorkerError
from dss.types import SchedulableUnit

if TYPE_CHECKING:
    from dss.worker import Worker


class WorkerRegistry:
    """Single source of truth for live workers. Thread-safe.

    All public methods acquire the internal ``RLock`` so callers never need
    external synchronisation.
    """

    def __init__(self) -> None:
        self._workers: dict[SchedulableUnit, Worker] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def register(self, unit: SchedulableUnit, worker: Worker) -> None:
        """Add a worker to the registry.

        ``get_or_create`` registers through here; host integrations that
        build workers themselves call it directly.

        Raises:
            DuplicateWorkerError: If the unit already has a live worker
        """
        with self._lock:
            existing = self._workers.get(unit)
            if existing is not None:
                raise DuplicateWorkerError(
                    f"Worker for {unit} already created, look it up instead",
                    label=existing.label,
                )
            self._workers[unit] = worker

    def get_or_create(
        self, unit: SchedulableUnit, factory: Callable[[], Worker]
    ) -> tuple[Worker, bool]:
        """Return the unit's worker, creating it under the lock if absent.

        Args:
            unit: Schedulable unit
            factory: Builds a new worker; only called when none is registered

        Returns:
            Tuple of (worker, created)
        """
        with self._lock:
            existing = self._workers.get(unit)
            if existing is not None:
                return existing, False
            worker = factory()
            self.register(unit, worker)
            return worker, True

    def unregister(self, unit: SchedulableUnit, worker: Worker | None = None) -> Worker | None:
        """Remove a unit's worker; a no-op if it is already gone.

        Args:
            unit: Schedulable unit
            worker: Only remove the entry if it is this worker

        Returns:
            The removed worker, or None
        """
        with self._lock:
            current = self._workers.get(unit)
            if current is None or (worker is not None and current is not worker):
                return None
            return self._workers.pop(unit)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, unit: SchedulableUnit) -> Worker | None:
        """Return the unit's worker, or ``None`` if not found."""
        with self._lock:
            return self._workers.get(unit)

    def all(self) -> dict[SchedulableUnit, Worker]:
        """Return a shallow copy of every registered worker."""
        with self._lock:
            return dict(self._workers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._workers)

    def __contains__(self, unit: object) -> bool:
        with self._lock:
            return unit in self._workers

    def __iter__(self) -> Iterator[SchedulableUnit]:
        """Iterate over units (snapshot)."""
        with self._lock:
            return iter(list(self._workers.keys()))

    def __repr__(self) -> str:
        with self._lock:
            count = len(self._workers)
        return f"<WorkerRegistry workers={count}>"
