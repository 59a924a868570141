"""Resolution of the controller URL a worker calls back to.

Order of preference:

1. An explicitly configured callback URL, used verbatim.
2. Network inspection. When the controller runs inside a container its own
   hosts-file address is used; otherwise the gateway of the worker's docker
   network. Either address replaces the host of the controller root URL.

The gateway lookup is a heuristic: it yields the address the bridge uses to
reach the host, which is not guaranteed to be reachable from every network.
"""

from __future__ import annotations

import ipaddress
import json
import re
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from dss.command_executor import ArgumentList, CommandExecutor
from dss.config import ControllerConfig
from dss.docker_driver import DockerDriver
from dss.exceptions import AddressResolutionError
from dss.logging import get_logger

logger = get_logger("address")

# Matches e.g. `"Gateway": "172.17.0.1"` in `docker network inspect` output
GATEWAY_PATTERN = re.compile(r".Gateway.:\s*.(([0-9]{0,3}\.?){4}).")


def _is_ipv4(value: object) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


def _find_gateway_field(node: Any) -> str | None:
    """Depth-first search for the first IPv4 value under a ``Gateway`` key."""
    if isinstance(node, dict):
        for key, value in node.items():
            if key == "Gateway" and _is_ipv4(value):
                return str(value)
        for value in node.values():
            found = _find_gateway_field(value)
            if found:
                return found
    elif isinstance(node, list):
        for item in node:
            found = _find_gateway_field(item)
            if found:
                return found
    return None


def parse_gateway(inspect_output: str) -> str | None:
    """Extract the gateway address from ``docker network inspect`` output.

    The structured JSON descriptor is searched first; free-form text falls
    back to pattern matching.

    Args:
        inspect_output: Raw stdout of ``docker network inspect``

    Returns:
        Gateway IPv4 address or None if none is present
    """
    try:
        descriptor = json.loads(inspect_output)
    except ValueError:
        descriptor = None
    if descriptor is not None:
        found = _find_gateway_field(descriptor)
        if found:
            return found

    for match in GATEWAY_PATTERN.finditer(inspect_output):
        candidate = match.group(1)
        if _is_ipv4(candidate):
            return candidate
    return None


def replace_host(base_url: str, host: str) -> str:
    """Replace only the host of ``base_url``.

    Scheme, userinfo, port, path, query and fragment are preserved.
    """
    parts = urlsplit(base_url)
    if not parts.scheme or not parts.hostname:
        raise AddressResolutionError(f"Controller root URL '{base_url}' is not an absolute URL")

    netloc = host
    if parts.username is not None:
        userinfo = parts.netloc.rpartition("@")[0]
        netloc = f"{userinfo}@{netloc}"
    if parts.port is not None:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class AddressResolver:
    """Determines the callback URL handed to a worker as ``-master``."""

    def __init__(self, config: ControllerConfig, executor: CommandExecutor) -> None:
        """Initialize address resolver.

        Args:
            config: Controller configuration (root URL, override, probes)
            executor: Executor for environment probe commands
        """
        self.config = config
        self.executor = executor

    def resolve(self, driver: DockerDriver, network: str, env: dict[str, str] | None = None) -> str:
        """Resolve the callback URL for a worker on ``network``.

        Args:
            driver: Docker driver of the worker (host override, executable)
            network: Docker network the worker joins
            env: Environment for the commands

        Returns:
            Callback URL

        Raises:
            AddressResolutionError: If no usable address can be determined
        """
        if self.config.callback_url:
            logger.debug(f"Using configured callback URL {self.config.callback_url}")
            return self.config.callback_url

        if not self.config.root_url:
            raise AddressResolutionError(
                "Unable to get the controller URL, it needs to be set in the configuration"
            )

        if self.in_container(env):
            address = self.container_address(env)
        else:
            address = self.gateway_address(driver, network, env)

        url = replace_host(self.config.root_url, address)
        logger.info(f"Resolved controller callback URL {url}")
        return url

    def in_container(self, env: dict[str, str] | None = None) -> bool:
        """Whether the controller process itself runs inside a container."""
        for marker in self.config.container_markers:
            if self.executor.execute(ArgumentList("test", "-e", marker), env=env).success:
                logger.debug(f"Container marker {marker} present")
                return True
        return False

    def container_address(self, env: dict[str, str] | None = None) -> str:
        """Own address from the hosts file, which maps it to our hostname."""
        result = self.executor.execute(ArgumentList("hostname"), env=env)
        hostname = result.stdout.strip()
        if not result.success or not hostname:
            raise AddressResolutionError("Can't get hostname", details={"exit_code": result.exit_code})

        result = self.executor.execute(
            ArgumentList("grep", "-m1", hostname, self.config.hosts_file), env=env
        )
        if not result.success:
            raise AddressResolutionError(
                f"Couldn't find '{hostname}' in {self.config.hosts_file}",
                details={"exit_code": result.exit_code},
            )

        fields = result.stdout.split()
        if not fields or not _is_ipv4(fields[0]):
            raise AddressResolutionError(f"Couldn't get hosts-file entry for '{hostname}'")
        return fields[0]

    def gateway_address(self, driver: DockerDriver, network: str, env: dict[str, str] | None = None) -> str:
        """Gateway of the worker's docker network."""
        result = driver.run_and_wait(driver.network_inspect_command(network), env=env)
        if not result.success:
            raise AddressResolutionError(
                f"Docker network '{network}' not found",
                details={"exit_code": result.exit_code, "stderr": result.stderr.strip()},
            )

        gateway = parse_gateway(result.stdout.strip())
        if gateway is None:
            raise AddressResolutionError(f"Couldn't determine the gateway of docker network '{network}'")
        return gateway
