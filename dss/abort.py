"""Per-unit abort records.

Once a unit has a recorded failure, scheduling attempts for it are refused
and its completion tears the worker down forcibly. The first recorded cause
wins; the record is cleared only when the unit is cleaned up.
"""

from __future__ import annotations

import threading

from dss.logging import get_logger
from dss.types import SchedulableUnit

logger = get_logger("abort")


class AbortCoordinator:
    """Write-once map from unit to failure cause. Thread-safe."""

    def __init__(self) -> None:
        self._causes: dict[SchedulableUnit, BaseException] = {}
        self._lock = threading.Lock()

    def abort(self, unit: SchedulableUnit, cause: BaseException) -> bool:
        """Record ``cause`` for ``unit`` unless a cause is already recorded.

        Returns:
            True if this call recorded the cause
        """
        with self._lock:
            if unit in self._causes:
                return False
            self._causes[unit] = cause
        logger.error(f"Aborting {unit}: {cause}")
        return True

    def should_abort(self, unit: SchedulableUnit) -> bool:
        with self._lock:
            return unit in self._causes

    def get_cause(self, unit: SchedulableUnit) -> BaseException | None:
        with self._lock:
            return self._causes.get(unit)

    def remove(self, unit: SchedulableUnit) -> BaseException | None:
        """Clear and return the unit's record, if any."""
        with self._lock:
            return self._causes.pop(unit, None)

    def all(self) -> dict[SchedulableUnit, BaseException]:
        with self._lock:
            return dict(self._causes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._causes)

    def __contains__(self, unit: object) -> bool:
        with self._lock:
            return unit in self._causes
