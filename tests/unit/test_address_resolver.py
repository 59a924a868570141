"""Tests for controller callback address resolution."""

import pytest

from dss.address_resolver import AddressResolver, parse_gateway, replace_host
from dss.config import ControllerConfig
from dss.docker_driver import DockerDriver
from dss.exceptions import AddressResolutionError
from tests.helpers.command_mocks import DOCKER_NETWORK_INSPECT, ScriptedExecutor

ROOT_URL = "https://ci.example.com:8080/jenkins"


@pytest.fixture
def driver(executor: ScriptedExecutor) -> DockerDriver:
    return DockerDriver(executor)


def _resolver(executor: ScriptedExecutor, **kwargs) -> AddressResolver:
    kwargs.setdefault("root_url", ROOT_URL)
    return AddressResolver(ControllerConfig(**kwargs), executor)


class TestParseGateway:
    """Tests for gateway extraction from network descriptors."""

    def test_json_descriptor(self) -> None:
        assert parse_gateway(DOCKER_NETWORK_INSPECT) == "172.18.0.1"

    def test_free_form_text(self) -> None:
        assert parse_gateway('IPAM: {"Gateway": "172.18.0.1", "Subnet": "172.18.0.0/16"') == "172.18.0.1"

    def test_compact_json(self) -> None:
        assert parse_gateway('[{"IPAM":{"Config":[{"Gateway":"10.1.0.1"}]}}]') == "10.1.0.1"

    def test_ipv6_gateway_skipped(self) -> None:
        output = '[{"IPAM":{"Config":[{"Gateway":"fd00::1"},{"Gateway":"172.20.0.1"}]}}]'
        assert parse_gateway(output) == "172.20.0.1"

    def test_no_gateway(self) -> None:
        assert parse_gateway('[{"Name": "none", "IPAM": {"Config": []}}]') is None

    def test_empty_output(self) -> None:
        assert parse_gateway("") is None

    def test_invalid_address_rejected(self) -> None:
        assert parse_gateway('"Gateway": "999.1.1.1"') is None


class TestReplaceHost:
    """Tests for host substitution in the controller URL."""

    def test_keeps_scheme_port_and_path(self) -> None:
        assert replace_host(ROOT_URL, "172.17.0.1") == "https://172.17.0.1:8080/jenkins"

    def test_without_port(self) -> None:
        assert replace_host("http://ci.example.com/", "10.0.0.5") == "http://10.0.0.5/"

    def test_keeps_userinfo_query_and_fragment(self) -> None:
        assert (
            replace_host("http://user:pw@ci:8080/a?b=1#c", "10.0.0.5")
            == "http://user:pw@10.0.0.5:8080/a?b=1#c"
        )

    def test_relative_url_rejected(self) -> None:
        with pytest.raises(AddressResolutionError):
            replace_host("/jenkins", "10.0.0.5")


class TestResolve:
    """Tests for the resolution order."""

    def test_configured_callback_wins(self, executor: ScriptedExecutor, driver: DockerDriver) -> None:
        resolver = _resolver(executor, callback_url="http://controller.internal:8080/")
        assert resolver.resolve(driver, "bridge") == "http://controller.internal:8080/"
        assert executor.calls == []

    def test_missing_root_url(self, executor: ScriptedExecutor, driver: DockerDriver) -> None:
        resolver = AddressResolver(ControllerConfig(), executor)
        with pytest.raises(AddressResolutionError, match="needs to be set"):
            resolver.resolve(driver, "bridge")

    def test_gateway_outside_container(self, executor: ScriptedExecutor, driver: DockerDriver) -> None:
        """Outside a container the worker network's gateway replaces the host."""
        executor.on("network", "inspect", stdout='[{"IPAM":{"Config":[{"Gateway":"172.17.0.1"}]}}]')

        url = _resolver(executor).resolve(driver, "bridge", {"DOCKER_CONFIG": "/tmp/c"})

        assert url == "https://172.17.0.1:8080/jenkins"
        assert executor.commands()[:2] == [["test", "-e", "/.dockerenv"], ["test", "-e", "/.dockerinit"]]
        assert executor.commands()[-1] == ["docker", "network", "inspect", "bridge"]
        assert executor.calls[-1].env == {"DOCKER_CONFIG": "/tmp/c"}

    def test_hosts_file_inside_container(self, executor: ScriptedExecutor, driver: DockerDriver) -> None:
        """Inside a container the hosts-file entry for our hostname is used."""
        executor.on("test", exit_code=0)
        executor.on("hostname", stdout="controller-1\n")
        executor.on("grep", stdout="172.18.0.5\tcontroller-1\n")

        url = _resolver(executor).resolve(driver, "ci-net")

        assert url == "https://172.18.0.5:8080/jenkins"
        assert ["grep", "-m1", "controller-1", "/etc/hosts"] in executor.commands()
        assert executor.find("network", "inspect") == []

    def test_second_marker_detected(self, executor: ScriptedExecutor) -> None:
        executor.on("test", "-e", "/.dockerinit", exit_code=0)
        assert _resolver(executor).in_container()

    def test_custom_markers(self, executor: ScriptedExecutor) -> None:
        resolver = _resolver(executor, container_markers=["/run/.containerenv"])
        assert not resolver.in_container()
        assert executor.commands() == [["test", "-e", "/run/.containerenv"]]

    def test_network_not_found(self, executor: ScriptedExecutor, driver: DockerDriver) -> None:
        executor.on("network", "inspect", exit_code=1, stderr="Error: No such network: ci-net")
        with pytest.raises(AddressResolutionError, match="not found"):
            _resolver(executor).resolve(driver, "ci-net")

    def test_network_without_gateway(self, executor: ScriptedExecutor, driver: DockerDriver) -> None:
        executor.on("network", "inspect", stdout='[{"Name": "ci-net", "IPAM": {"Config": []}}]')
        with pytest.raises(AddressResolutionError, match="gateway"):
            _resolver(executor).resolve(driver, "ci-net")

    def test_hostname_failure(self, executor: ScriptedExecutor) -> None:
        executor.on("hostname", exit_code=1)
        with pytest.raises(AddressResolutionError, match="hostname"):
            _resolver(executor).container_address()

    def test_hostname_missing_from_hosts_file(self, executor: ScriptedExecutor) -> None:
        executor.on("hostname", stdout="controller-1\n")
        executor.on("grep", exit_code=1)
        with pytest.raises(AddressResolutionError, match="/etc/hosts"):
            _resolver(executor).container_address()

    def test_hosts_entry_not_an_address(self, executor: ScriptedExecutor) -> None:
        executor.on("hostname", stdout="controller-1\n")
        executor.on("grep", stdout="# controller-1 comment\n")
        with pytest.raises(AddressResolutionError):
            _resolver(executor).container_address()
