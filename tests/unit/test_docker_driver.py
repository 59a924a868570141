"""Tests for docker command construction."""

import pytest

from dss.command_executor import ArgumentList
from dss.config import DockerHostConfig, InstallationConfig, WrapperConfig
from dss.docker_driver import DockerDriver, qualify_image, resolve_executable
from dss.exceptions import ConfigurationError, ContainerError
from dss.types import UsernamePassword
from tests.helpers.command_mocks import ScriptedExecutor


@pytest.fixture
def driver(executor: ScriptedExecutor) -> DockerDriver:
    return DockerDriver(executor, host_uri="tcp://d:2375")


class TestResolveExecutable:
    """Tests for installation lookup."""

    def test_default_binary(self) -> None:
        assert resolve_executable(None, {}) == "docker"

    def test_installation_home(self) -> None:
        installations = {"docker-24": InstallationConfig(home="/opt/docker-24")}
        assert resolve_executable("docker-24", installations) == "/opt/docker-24/bin/docker"

    def test_unknown_installation(self) -> None:
        with pytest.raises(ConfigurationError):
            resolve_executable("missing", {})


class TestQualifyImage:
    """Tests for registry qualification of image names."""

    def test_no_registry(self) -> None:
        assert qualify_image("ci/worker:1", None) == "ci/worker:1"

    def test_registry_host_prefixed(self) -> None:
        assert qualify_image("ci/worker:1", "https://registry.example.com:5000") == "registry.example.com:5000/ci/worker:1"

    def test_registry_without_scheme(self) -> None:
        assert qualify_image("worker", "registry.example.com") == "registry.example.com/worker"

    def test_already_qualified_image_kept(self) -> None:
        assert qualify_image("other.example.com/worker", "https://registry.example.com") == "other.example.com/worker"

    def test_localhost_image_kept(self) -> None:
        assert qualify_image("localhost/worker", "https://registry.example.com") == "localhost/worker"


class TestCommands:
    """Tests for argument vector construction."""

    def test_host_override(self, driver: DockerDriver) -> None:
        assert driver.inspect_command("dss-1-2") == ["docker", "-H", "tcp://d:2375", "inspect", "dss-1-2"]

    def test_no_host_override(self, executor: ScriptedExecutor) -> None:
        local = DockerDriver(executor)
        assert local.stop_command("dss-1-2") == ["docker", "stop", "dss-1-2"]

    def test_remove_commands(self, driver: DockerDriver) -> None:
        assert driver.remove_command("x").to_list()[-2:] == ["rm", "x"]
        assert driver.remove_command("x", force=True).to_list()[-3:] == ["rm", "-f", "x"]

    def test_network_inspect(self, driver: DockerDriver) -> None:
        assert driver.network_inspect_command("ci-net").to_list()[-3:] == ["network", "inspect", "ci-net"]

    def test_run_command_with_credentials(self, driver: DockerDriver) -> None:
        """The full run vector: label quoted, credentials verbatim, password masked."""
        args = driver.run_command(
            "dss-42-7",
            "swarm-image",
            "https://172.17.0.1:8080/jenkins",
            UsernamePassword("swarm", "s3cret"),
        )
        assert args.to_list() == [
            "docker",
            "-H",
            "tcp://d:2375",
            "run",
            "-d",
            "--name",
            "dss-42-7",
            "swarm-image",
            "-master",
            "https://172.17.0.1:8080/jenkins",
            "-labels",
            '"dss-42-7"',
            "-username",
            "swarm",
            "-password",
            "s3cret",
        ]
        assert args.to_masked_list()[-1] == "******"

    def test_run_command_without_credentials(self, driver: DockerDriver) -> None:
        args = driver.run_command("dss-42-7", "img", "http://10.0.0.1/")
        assert "-username" not in args.to_list()
        assert args.to_list()[-2:] == ["-labels", '"dss-42-7"']

    def test_for_wrapper(self, executor: ScriptedExecutor) -> None:
        wrapper = WrapperConfig(
            docker_image="img",
            docker_host=DockerHostConfig(uri="tcp://remote:2376"),
            docker_installation="custom",
        )
        driver = DockerDriver.for_wrapper(executor, wrapper, {"custom": InstallationConfig(home="/opt/d")})
        assert driver.command("ps") == ["/opt/d/bin/docker", "-H", "tcp://remote:2376", "ps"]


class TestInvocation:
    """Tests for running commands through the executor."""

    def test_run_and_wait_passes_env(self, driver: DockerDriver, executor: ScriptedExecutor) -> None:
        driver.run_and_wait(driver.inspect_command("x"), env={"DOCKER_CONFIG": "/tmp/c"})
        assert executor.calls[-1].env == {"DOCKER_CONFIG": "/tmp/c"}

    def test_run_and_wait_returns_failure(self, driver: DockerDriver) -> None:
        assert not driver.run_and_wait(driver.inspect_command("x")).success

    def test_run_and_wait_check_raises(self, driver: DockerDriver) -> None:
        with pytest.raises(ContainerError) as exc_info:
            driver.run_and_wait(driver.inspect_command("x"), check=True)
        assert exc_info.value.exit_code == 1
        assert "inspect x" in (exc_info.value.command or "")

    def test_run_and_forget_is_detached(self, driver: DockerDriver, executor: ScriptedExecutor) -> None:
        future = driver.run_and_forget(ArgumentList("docker", "rm", "x"))
        assert future.done()
        assert executor.calls[-1].detached
