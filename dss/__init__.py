"""DSS - ephemeral docker build workers.

Provisions one container per queued build, routes the build to it once it is
up and tears it down exactly once when the build is finished.
"""

__version__ = "0.1.0"

from dss.constants import DecisionKind, WorkerState
from dss.exceptions import DssError
from dss.runtime import DssRuntime
from dss.types import SchedulableUnit, SchedulingDecision
from dss.worker import Worker, worker_label

__all__ = [
    "__version__",
    "DecisionKind",
    "DssError",
    "DssRuntime",
    "SchedulableUnit",
    "SchedulingDecision",
    "Worker",
    "WorkerState",
    "worker_label",
]
