"""DSS exception hierarchy."""

from typing import Any


class DssError(Exception):
    """Base exception for all DSS errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(DssError):
    """Error in DSS configuration."""

    pass


class CredentialsError(DssError):
    """Credential id could not be resolved to login material."""

    def __init__(
        self, message: str, credentials_id: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, details)
        self.credentials_id = credentials_id


class WorkerError(DssError):
    """Base error for worker-related issues."""

    def __init__(
        self, message: str, label: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, details)
        self.label = label


class DuplicateWorkerError(WorkerError):
    """A live worker is already registered for the unit."""

    pass


class ProvisioningError(WorkerError):
    """Worker container could not be provisioned."""

    pass


class AddressResolutionError(ProvisioningError):
    """Controller callback address could not be determined."""

    pass


class WorkerTimeoutError(WorkerError):
    """Worker did not become ready within the allowed window."""

    def __init__(self, message: str, label: str, timeout_seconds: float) -> None:
        super().__init__(message, label, {"timeout_seconds": timeout_seconds})
        self.timeout_seconds = timeout_seconds


class TeardownError(WorkerError):
    """Stopping or removing a worker container failed."""

    pass


class ContainerError(DssError):
    """A container engine command exited with a failure status."""

    def __init__(
        self,
        message: str,
        command: str | None = None,
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message, {"command": command, "exit_code": exit_code})
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
