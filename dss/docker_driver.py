"""Docker command construction and invocation for worker containers.

Every command is an argument vector of the shape
``<docker> [-H <host>] <subcommand> [args...]``; nothing is passed
through a shell.
"""

from __future__ import annotations

from concurrent.futures import Future
from pathlib import Path
from urllib.parse import urlsplit

from dss.command_executor import ArgumentList, CommandExecutor, CommandResult
from dss.config import InstallationConfig, WrapperConfig
from dss.constants import DEFAULT_DOCKER_EXECUTABLE
from dss.exceptions import ConfigurationError, ContainerError
from dss.logging import get_logger
from dss.types import UsernamePassword

logger = get_logger("docker")


def resolve_executable(installation: str | None, installations: dict[str, InstallationConfig]) -> str:
    """Map an installation reference to the docker binary to invoke.

    Args:
        installation: Installation name from the wrapper, or None
        installations: Configured installations by name

    Returns:
        Path to the docker executable

    Raises:
        ConfigurationError: If the installation is not configured
    """
    if not installation:
        return DEFAULT_DOCKER_EXECUTABLE
    config = installations.get(installation)
    if config is None:
        raise ConfigurationError(f"Docker installation '{installation}' is not configured")
    return str(Path(config.home) / "bin" / "docker")


def qualify_image(image: str, registry_url: str | None) -> str:
    """Prefix an image with the registry host unless it already names one."""
    if not registry_url:
        return image
    host = urlsplit(registry_url if "://" in registry_url else f"https://{registry_url}").netloc
    if not host:
        return image
    first, sep, _ = image.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return image
    return f"{host}/{image}"


class DockerDriver:
    """Builds and runs docker commands for one worker configuration."""

    def __init__(
        self,
        executor: CommandExecutor,
        executable: str = DEFAULT_DOCKER_EXECUTABLE,
        host_uri: str | None = None,
    ) -> None:
        """Initialize docker driver.

        Args:
            executor: Command executor owning the shared pool
            executable: Docker binary
            host_uri: Daemon override passed as ``-H``
        """
        self.executor = executor
        self.executable = executable
        self.host_uri = host_uri

    @classmethod
    def for_wrapper(
        cls,
        executor: CommandExecutor,
        wrapper: WrapperConfig,
        installations: dict[str, InstallationConfig] | None = None,
    ) -> DockerDriver:
        executable = resolve_executable(wrapper.docker_installation, installations or {})
        return cls(executor, executable=executable, host_uri=wrapper.docker_host.uri)

    def command(self, *args: str) -> ArgumentList:
        """Base command with the optional host override applied."""
        cmd = ArgumentList(self.executable)
        if self.host_uri:
            cmd.add("-H", self.host_uri)
        return cmd.add(*args)

    def inspect_command(self, label: str) -> ArgumentList:
        return self.command("inspect", label)

    def remove_command(self, label: str, force: bool = False) -> ArgumentList:
        if force:
            return self.command("rm", "-f", label)
        return self.command("rm", label)

    def stop_command(self, label: str) -> ArgumentList:
        return self.command("stop", label)

    def network_inspect_command(self, network: str) -> ArgumentList:
        return self.command("network", "inspect", network)

    def run_command(
        self,
        label: str,
        image: str,
        master_uri: str,
        credentials: UsernamePassword | None = None,
    ) -> ArgumentList:
        """Build the detached ``docker run`` for a worker container.

        Credential values are added verbatim: the swarm client keeps literal
        quotes and then fails to authenticate. The password is masked.

        Args:
            label: Container name and swarm label
            image: Fully qualified worker image
            master_uri: Controller URL the worker registers with
            credentials: Optional swarm login

        Returns:
            Argument list for ``docker run``
        """
        cmd = self.command("run", "-d", "--name", label, image, "-master", master_uri, "-labels")
        cmd.add_quoted(label)
        if credentials is not None:
            cmd.add("-username", credentials.username)
            cmd.add("-password").add_masked(credentials.password)
        return cmd

    def run_and_wait(
        self,
        args: ArgumentList,
        env: dict[str, str] | None = None,
        check: bool = False,
        timeout: int | None = None,
    ) -> CommandResult:
        """Run a docker command and wait for it.

        Raises:
            ContainerError: If ``check`` is set and the command failed
        """
        result = self.executor.execute(args, env=env, timeout=timeout)
        if check and not result.success:
            raise ContainerError(
                f"Docker command failed with exit code {result.exit_code}",
                command=args.to_masked_string(),
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return result

    def run_and_forget(self, args: ArgumentList, env: dict[str, str] | None = None) -> Future[CommandResult]:
        """Start a docker command on the pool; its result is only logged."""
        logger.debug(f"Launching detached: {args.to_masked_string()}")
        return self.executor.launch(args, env=env)
