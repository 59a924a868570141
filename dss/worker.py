"""Ephemeral container-backed build worker.

A worker is created for exactly one schedulable unit and walks through

    CREATED -> PROVISIONING -> READY -> ASSIGNED -> CLEANING -> CLOSED

with ABORTED reachable from every state before CLEANING. Provisioning
runs on the shared pool; the scheduling path only ever records timestamps
and reads state.
"""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from types import TracebackType
from typing import Any

from dss.abort import AbortCoordinator
from dss.address_resolver import AddressResolver
from dss.config import TimeoutsConfig, WrapperConfig
from dss.constants import LABEL_PREFIX, WORKER_TRANSITIONS, WorkerState
from dss.credentials import CredentialProvider
from dss.docker_driver import DockerDriver, qualify_image
from dss.exceptions import ProvisioningError, TeardownError, WorkerError
from dss.logging import clear_worker_context, get_worker_logger, set_worker_context
from dss.types import SchedulableUnit, UsernamePassword
from dss.worker_registry import WorkerRegistry


def java_string_hash(value: str) -> int:
    """32-bit signed string hash, stable across processes and restarts.

    Computed over UTF-16 code units with multiplier 31, so labels match
    those produced by earlier controllers for the same project.
    """
    data = value.encode("utf-16-be")
    h = 0
    for i in range(0, len(data), 2):
        h = (31 * h + int.from_bytes(data[i : i + 2], "big")) & 0xFFFFFFFF
    return h - (1 << 32) if h >= (1 << 31) else h


def worker_label(unit: SchedulableUnit) -> str:
    """Container name and routing token for a unit's worker."""
    return f"{LABEL_PREFIX}-{java_string_hash(unit.project_name)}-{unit.build_number}"


class Worker:
    """One ephemeral worker container and its lifecycle."""

    def __init__(
        self,
        unit: SchedulableUnit,
        wrapper: WrapperConfig,
        driver: DockerDriver,
        resolver: AddressResolver,
        credentials: CredentialProvider,
        registry: WorkerRegistry,
        aborts: AbortCoordinator,
        timeouts: TimeoutsConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        base_env: dict[str, str] | None = None,
        on_closed: Callable[[Worker], None] | None = None,
    ) -> None:
        """Initialize worker and materialize its credentials.

        Args:
            unit: Owning schedulable unit
            wrapper: Build wrapper configuration snapshot
            driver: Docker driver for this wrapper
            resolver: Callback address resolver
            credentials: Credential provider
            registry: Registry the worker removes itself from on cleanup
            aborts: Abort records consulted on cleanup
            timeouts: Readiness timeouts
            clock: Monotonic clock in seconds
            base_env: Base process environment (defaults to os.environ)
            on_closed: Called once the worker reached CLOSED
        """
        self.unit = unit
        self.wrapper = wrapper
        self.label = worker_label(unit)
        self.timeouts = timeouts or TimeoutsConfig()
        self.log = get_worker_logger(self.label, unit.project_name, unit.build_number)

        self._driver = driver
        self._resolver = resolver
        self._credentials = credentials
        self._registry = registry
        self._aborts = aborts
        self._clock = clock
        self._base_env = base_env
        self._on_closed = on_closed

        self._lock = threading.RLock()
        self._closed_event = threading.Event()
        self._state = WorkerState.CREATED
        self._outstanding = 0
        self._release_requested = False
        self._env: dict[str, str] | None = None

        self.time_wait_for_start: float | None = None
        self.time_wait_for_slave: float | None = None

        self._key_material = credentials.materialize(wrapper)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkerState:
        with self._lock:
            return self._state

    @property
    def is_ready(self) -> bool:
        return self.state in (WorkerState.READY, WorkerState.ASSIGNED)

    @property
    def is_closed(self) -> bool:
        return self._closed_event.is_set()

    def _transition(self, target: WorkerState) -> bool:
        """Move to ``target`` if allowed. Caller must hold the lock."""
        if target not in WORKER_TRANSITIONS[self._state]:
            self.log.debug(f"Ignoring transition {self._state.value} -> {target.value}")
            return False
        self.log.debug(f"State {self._state.value} -> {target.value}")
        self._state = target
        return True

    def mark_assigned(self) -> None:
        """Record that the scheduler was handed this worker's token."""
        with self._lock:
            if self._state is WorkerState.READY:
                self._transition(WorkerState.ASSIGNED)

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Block until teardown finished and credentials were released."""
        return self._closed_event.wait(timeout)

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    @property
    def environment(self) -> dict[str, str]:
        """Process environment for docker commands, overridden by key material.

        Raises:
            WorkerError: If the credential material was already released
        """
        with self._lock:
            if self._key_material.closed:
                raise WorkerError(f"Credential material of {self.label} was already released", self.label)
            if self._env is None:
                base = dict(os.environ) if self._base_env is None else dict(self._base_env)
                base.update(self._key_material.env)
                self._env = base
            return dict(self._env)

    def _swarm_credentials(self) -> UsernamePassword | None:
        credentials_id = self.wrapper.swarm_credentials
        if not credentials_id:
            return None
        credentials = self._credentials.lookup_username_password(credentials_id)
        if credentials is None:
            # Configured ids come from a picker, so a miss means the credential was deleted or renamed
            raise ProvisioningError(f"Swarm credentials id '{credentials_id}' seems to be ambiguous", self.label)
        return credentials

    # ------------------------------------------------------------------
    # Outstanding work
    # ------------------------------------------------------------------

    def _track(self, future: Future[Any]) -> Future[Any]:
        with self._lock:
            self._outstanding += 1
        future.add_done_callback(self._untrack)
        return future

    def _untrack(self, _future: Future[Any]) -> None:
        with self._lock:
            self._outstanding -= 1
        self._maybe_release()

    def _maybe_release(self) -> None:
        with self._lock:
            if not self._release_requested or self._outstanding > 0 or self._closed_event.is_set():
                return
            self._key_material.close()
            self._env = None
            self._transition(WorkerState.CLOSED)
            self._closed_event.set()
        self.log.info("Worker closed")
        if self._on_closed is not None:
            self._on_closed(self)

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def create(self) -> None:
        """Start provisioning the container without blocking the caller.

        Raises:
            WorkerError: If the worker was already created
        """
        with self._lock:
            if not self._transition(WorkerState.PROVISIONING):
                raise WorkerError(f"Worker {self.label} cannot be created from state {self._state.value}", self.label)
            self.time_wait_for_start = self._clock()

        try:
            self._track(self._driver.executor.submit(self._provision))
        except RuntimeError as e:
            self.abort(ProvisioningError(f"Could not schedule provisioning: {e}", self.label))

    def _bind_log_context(self) -> None:
        set_worker_context(self.label, project=self.unit.project_name, build_number=self.unit.build_number)

    def _provision(self) -> None:
        self._bind_log_context()
        try:
            env = self.environment

            # A container with this label may be left over from a cancelled build
            if self._driver.run_and_wait(self._driver.inspect_command(self.label), env).success:
                self.log.warning(f"Removing stray container {self.label}")
                removal = self._driver.run_and_wait(self._driver.remove_command(self.label, force=True), env)
                if not removal.success:
                    raise ProvisioningError(
                        f"Couldn't remove stray container {self.label}",
                        self.label,
                        {"exit_code": removal.exit_code, "stderr": removal.stderr.strip()},
                    )

            master_uri = self._resolver.resolve(self._driver, self.wrapper.docker_network, env)
            image = qualify_image(self.wrapper.docker_image, self.wrapper.docker_registry.url)
            args = self._driver.run_command(self.label, image, master_uri, self._swarm_credentials())

            self.log.info(f"Starting worker container: {args.to_masked_string()}")
            result = self._driver.run_and_wait(args, env)
            if result.stderr.strip():
                self.log.info(result.stderr.strip())
            if not result.success:
                raise ProvisioningError(
                    "Launching the worker container failed, aborting",
                    self.label,
                    {"exit_code": result.exit_code},
                )

            with self._lock:
                self.time_wait_for_slave = self._clock()
                if not self._transition(WorkerState.READY):
                    self.log.info(f"Container started after worker left provisioning ({self._state.value})")
                    return
            self.log.info("Worker container started, waiting for it to connect")

        except Exception as e:  # noqa: BLE001 - detached provisioning has no caller; failures become abort records
            self.log.exception(f"Provisioning of {self.label} failed")
            self.abort(e)
        finally:
            clear_worker_context()

    def abort(self, cause: BaseException) -> bool:
        """Mark the worker aborted and record ``cause`` for its unit.

        Ignored once teardown has started, so a late failure cannot leave
        an abort record behind for an already finished unit.

        Returns:
            True if the cause was recorded
        """
        with self._lock:
            if self._state in (WorkerState.CLEANING, WorkerState.CLOSED):
                self.log.warning(f"Ignoring failure after teardown started: {cause}")
                return False
            self._transition(WorkerState.ABORTED)
            return self._aborts.abort(self.unit, cause)

    def should_timeout(self) -> bool:
        """Whether the worker failed to start or to connect in time."""
        with self._lock:
            slave_started = self.time_wait_for_slave
            start_requested = self.time_wait_for_start
        if slave_started is not None:
            return self._clock() - slave_started > self.timeouts.slave_seconds
        if start_requested is not None:
            return self._clock() - start_requested > self.timeouts.start_seconds
        return False

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _start_teardown(self, start: Callable[[dict[str, str]], Future[Any]]) -> Future[Any]:
        """Start a teardown command with the worker's environment.

        Raises:
            TeardownError: If the command could not be started
        """
        try:
            return self._track(start(self.environment))
        except Exception as e:  # noqa: BLE001 - re-raised as TeardownError
            raise TeardownError(f"Could not start teardown of {self.label}: {e}", self.label) from e

    def stop(self) -> Future[Any] | None:
        """Stop the container gracefully, then remove it without waiting.

        ``docker stop`` applies the engine's own grace period before killing.

        Returns:
            Future of the stop task, or None if it could not be scheduled
        """
        try:
            return self._start_teardown(lambda env: self._driver.executor.submit(self._stop_and_remove, env))
        except TeardownError as e:
            self.log.error(f"Failed to stop container: {e}")
            return None

    def _stop_and_remove(self, env: dict[str, str]) -> None:
        self._bind_log_context()
        try:
            result = self._driver.run_and_wait(self._driver.stop_command(self.label), env)
            if not result.success:
                self.log.warning(f"docker stop {self.label} exited with {result.exit_code}")
            # `docker stop` returned, so the container is no longer running
            self._track(self._driver.run_and_forget(self._driver.remove_command(self.label), env))
        except Exception:  # noqa: BLE001 - teardown failures are logged, nothing can recover them
            self.log.exception(f"Failed to stop and remove container {self.label}")
        finally:
            clear_worker_context()

    def destroy(self) -> Future[Any] | None:
        """Force-remove the container without waiting.

        Returns:
            Future of the removal, or None if it could not be started
        """
        remove = self._driver.remove_command(self.label, force=True)
        try:
            return self._start_teardown(lambda env: self._driver.run_and_forget(remove, env))
        except TeardownError as e:
            self.log.error(f"Failed to destroy container: {e}")
            return None

    def cleanup(self) -> None:
        """Tear the worker down once; later calls are no-ops.

        Aborted units are destroyed, others stopped gracefully. The abort
        record and registry entry are removed right away; credential
        material is released when the teardown commands have finished.
        """
        with self._lock:
            if self._state in (WorkerState.CLEANING, WorkerState.CLOSED):
                return
            force = self._aborts.should_abort(self.unit)
            self._transition(WorkerState.CLEANING)

        try:
            if force:
                self.log.info(f"Destroying aborted worker {self.label}")
                self.destroy()
            else:
                self.log.info(f"Stopping worker {self.label}")
                self.stop()
        finally:
            self._aborts.remove(self.unit)
            self._registry.unregister(self.unit, self)
            with self._lock:
                self._release_requested = True
            self._maybe_release()

    def close(self) -> None:
        self.cleanup()

    def __enter__(self) -> Worker:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cleanup()

    def __repr__(self) -> str:
        return f"<Worker {self.label} unit={self.unit} state={self.state.value}>"
