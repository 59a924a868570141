"""DSS constants and enumerations."""

from enum import Enum


class WorkerState(Enum):
    """Lifecycle state of an ephemeral worker."""

    CREATED = "created"
    PROVISIONING = "provisioning"
    READY = "ready"
    ASSIGNED = "assigned"
    ABORTED = "aborted"
    CLEANING = "cleaning"
    CLOSED = "closed"


class DecisionKind(Enum):
    """Outcome of one scheduling attempt."""

    READY = "ready"
    PENDING = "pending"
    REFUSED = "refused"
    UNMANAGED = "unmanaged"


# Allowed lifecycle transitions (source -> targets)
WORKER_TRANSITIONS: dict[WorkerState, frozenset[WorkerState]] = {
    WorkerState.CREATED: frozenset({WorkerState.PROVISIONING, WorkerState.ABORTED, WorkerState.CLEANING}),
    WorkerState.PROVISIONING: frozenset({WorkerState.READY, WorkerState.ABORTED, WorkerState.CLEANING}),
    WorkerState.READY: frozenset({WorkerState.ASSIGNED, WorkerState.ABORTED, WorkerState.CLEANING}),
    WorkerState.ASSIGNED: frozenset({WorkerState.ABORTED, WorkerState.CLEANING}),
    WorkerState.ABORTED: frozenset({WorkerState.CLEANING}),
    WorkerState.CLEANING: frozenset({WorkerState.CLOSED}),
    WorkerState.CLOSED: frozenset(),
}

# Default configuration values
DEFAULT_START_TIMEOUT_SECONDS = 10
DEFAULT_SLAVE_TIMEOUT_SECONDS = 10
DEFAULT_COMMAND_TIMEOUT_SECONDS = 300
DEFAULT_EXECUTOR_WORKERS = 32
DEFAULT_NETWORK = "bridge"
DEFAULT_DOCKER_EXECUTABLE = "docker"

# Worker naming
LABEL_PREFIX = "dss"

# Files whose presence means the controller itself runs inside a container
CONTAINER_MARKER_FILES = ("/.dockerenv", "/.dockerinit")
HOSTS_FILE = "/etc/hosts"

# Placeholder for masked command-line arguments
MASK = "******"

# State file locations
DSS_DIR = ".dss"
CONFIG_FILE = ".dss/config.yaml"
LOGS_DIR = ".dss/logs"
