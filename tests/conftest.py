"""Pytest configuration and fixtures for DSS tests."""

import logging
from collections.abc import Generator

import pytest

from dss.config import (
    ControllerConfig,
    CredentialEntry,
    DssConfig,
    TimeoutsConfig,
    WrapperConfig,
)
from dss.logging import clear_worker_context
from dss.runtime import DssRuntime
from dss.types import SchedulableUnit
from tests.helpers.command_mocks import FakeClock, ScriptedExecutor, docker_defaults

PROJECT = "my-project"
ROOT_URL = "https://ci.example.com:8080/jenkins"


@pytest.fixture(autouse=True)
def _reset_logging() -> Generator[None, None, None]:
    """Undo handler changes made by setup_logging between tests."""
    yield
    clear_worker_context()
    dss_logger = logging.getLogger("dss")
    dss_logger.handlers = []
    dss_logger.propagate = True
    dss_logger.setLevel(logging.NOTSET)


@pytest.fixture
def unit() -> SchedulableUnit:
    """The schedulable unit most tests schedule."""
    return SchedulableUnit(PROJECT, 7)


@pytest.fixture
def wrapper() -> WrapperConfig:
    """Wrapper with swarm credentials on a custom network."""
    return WrapperConfig(docker_image="ci/swarm-worker:1.4", swarm_credentials="swarm", docker_network="ci-net")


@pytest.fixture
def dss_config(wrapper: WrapperConfig) -> DssConfig:
    """Configuration with one managed project and swarm credentials."""
    return DssConfig(
        controller=ControllerConfig(root_url=ROOT_URL),
        timeouts=TimeoutsConfig(start_seconds=10, slave_seconds=10),
        credentials={"swarm": CredentialEntry(username="swarm", password="s3cret")},
        jobs={PROJECT: wrapper},
    )


@pytest.fixture
def clock() -> FakeClock:
    """Manually advanced monotonic clock."""
    return FakeClock()


@pytest.fixture
def executor() -> ScriptedExecutor:
    """Scripted executor answering like a healthy docker host."""
    return docker_defaults(ScriptedExecutor())


@pytest.fixture
def deferred_executor() -> ScriptedExecutor:
    """Scripted executor that holds pool work until run_pending()."""
    return docker_defaults(ScriptedExecutor(defer=True))


@pytest.fixture
def runtime(dss_config: DssConfig, executor: ScriptedExecutor, clock: FakeClock) -> DssRuntime:
    """Runtime wired to the scripted executor and fake clock."""
    return DssRuntime(dss_config, executor=executor, clock=clock)


@pytest.fixture
def deferred_runtime(dss_config: DssConfig, deferred_executor: ScriptedExecutor, clock: FakeClock) -> DssRuntime:
    """Runtime whose provisioning and teardown run only on demand."""
    return DssRuntime(dss_config, executor=deferred_executor, clock=clock)
