"""DSS configuration management using Pydantic."""

from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from dss.constants import (
    CONFIG_FILE,
    CONTAINER_MARKER_FILES,
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    DEFAULT_EXECUTOR_WORKERS,
    DEFAULT_NETWORK,
    DEFAULT_SLAVE_TIMEOUT_SECONDS,
    DEFAULT_START_TIMEOUT_SECONDS,
    HOSTS_FILE,
    LOGS_DIR,
)


class DockerHostConfig(BaseModel):
    """Docker daemon endpoint; no URI means the local default daemon."""

    model_config = ConfigDict(frozen=True)

    uri: str | None = None
    credentials_id: str | None = None


class RegistryConfig(BaseModel):
    """Docker registry endpoint used to qualify and pull the worker image."""

    model_config = ConfigDict(frozen=True)

    url: str | None = None
    credentials_id: str | None = None


class WrapperConfig(BaseModel):
    """Per-project build wrapper: everything needed to start one worker."""

    model_config = ConfigDict(frozen=True)

    docker_image: str
    swarm_credentials: str | None = None
    docker_host: DockerHostConfig = Field(default_factory=DockerHostConfig)
    docker_installation: str | None = None
    docker_network: str = DEFAULT_NETWORK
    docker_registry: RegistryConfig = Field(default_factory=RegistryConfig)


class ControllerConfig(BaseModel):
    """How workers reach back to the controller."""

    root_url: str | None = None
    callback_url: str | None = None
    container_markers: list[str] = Field(default_factory=lambda: list(CONTAINER_MARKER_FILES))
    hosts_file: str = HOSTS_FILE


class TimeoutsConfig(BaseModel):
    """Readiness and command timeouts."""

    start_seconds: float = Field(default=DEFAULT_START_TIMEOUT_SECONDS, gt=0, le=3600)
    slave_seconds: float = Field(default=DEFAULT_SLAVE_TIMEOUT_SECONDS, gt=0, le=3600)
    command_seconds: int = Field(default=DEFAULT_COMMAND_TIMEOUT_SECONDS, ge=1, le=3600)


class ExecutorConfig(BaseModel):
    """Shared worker pool used for provisioning and teardown."""

    max_workers: int = Field(default=DEFAULT_EXECUTOR_WORKERS, ge=1, le=512)
    thread_name_prefix: str = "dss-executor"


class InstallationConfig(BaseModel):
    """A named docker CLI installation."""

    home: str


class CredentialEntry(BaseModel):
    """Login material stored under a credential id."""

    username: str | None = None
    password: SecretStr | None = None
    token: SecretStr | None = None
    server_certificate: str | None = None
    client_certificate: str | None = None
    client_key: SecretStr | None = None


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="info", pattern="^(debug|info|warn|error)$")
    directory: str = LOGS_DIR
    json_output: bool = False


class DssConfig(BaseModel):
    """Complete DSS configuration."""

    controller: ControllerConfig = Field(default_factory=ControllerConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    installations: dict[str, InstallationConfig] = Field(default_factory=dict)
    credentials: dict[str, CredentialEntry] = Field(default_factory=dict)
    jobs: dict[str, WrapperConfig] = Field(default_factory=dict)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "DssConfig":
        """Load configuration from YAML file.

        Args:
            config_path: Path to config file. Defaults to .dss/config.yaml

        Returns:
            DssConfig instance
        """
        config_path = Path(CONFIG_FILE) if config_path is None else Path(config_path)

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DssConfig":
        """Create configuration from dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            DssConfig instance
        """
        return cls(**data)

    def save(self, config_path: str | Path | None = None) -> None:
        """Save configuration to YAML file.

        Secrets are written masked; a saved file is for inspection, not reuse.

        Args:
            config_path: Path to save config. Defaults to .dss/config.yaml
        """
        config_path = Path(CONFIG_FILE) if config_path is None else Path(config_path)

        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to a JSON-compatible dictionary.

        Returns:
            Configuration as dictionary
        """
        return self.model_dump(mode="json")

    def get_wrapper(self, project_name: str) -> WrapperConfig | None:
        """Get the build wrapper configured for a project.

        Args:
            project_name: Project name

        Returns:
            WrapperConfig or None if the project does not build on DSS workers
        """
        return self.jobs.get(project_name)
