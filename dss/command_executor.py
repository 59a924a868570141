"""Command execution for container engine and environment probe calls.

This module provides:
1. ArgumentList, an argument vector that remembers which values are secret
2. CommandExecutor, which runs argument vectors with shell=False either
   waiting for completion or fire-and-forget on a shared worker pool
3. Audit logging of every execution with secrets masked
"""

from __future__ import annotations

import os
import subprocess
import time
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from dss.constants import DEFAULT_COMMAND_TIMEOUT_SECONDS, DEFAULT_EXECUTOR_WORKERS, MASK
from dss.logging import get_logger

logger = get_logger("executor")


class ArgumentList:
    """Argument vector with per-argument masking for log output.

    Values are never shell-quoted; ``add_quoted`` adds literal double quotes
    because the receiving program expects them, not because a shell does.
    """

    def __init__(self, *args: str) -> None:
        self._args: list[str] = []
        self._mask: list[bool] = []
        self.add(*args)

    def add(self, *args: str) -> ArgumentList:
        for arg in args:
            self._args.append(str(arg))
            self._mask.append(False)
        return self

    def add_quoted(self, arg: str) -> ArgumentList:
        self._args.append(f'"{arg}"')
        self._mask.append(False)
        return self

    def add_masked(self, arg: str) -> ArgumentList:
        self._args.append(str(arg))
        self._mask.append(True)
        return self

    def extend(self, other: ArgumentList) -> ArgumentList:
        self._args.extend(other._args)
        self._mask.extend(other._mask)
        return self

    def copy(self) -> ArgumentList:
        return ArgumentList().extend(self)

    def to_list(self) -> list[str]:
        """Return the real argument vector, secrets included."""
        return list(self._args)

    def to_masked_list(self) -> list[str]:
        return [MASK if masked else arg for arg, masked in zip(self._args, self._mask, strict=True)]

    def to_masked_string(self) -> str:
        return " ".join(self.to_masked_list())

    def __iter__(self) -> Iterator[str]:
        return iter(self.to_list())

    def __len__(self) -> int:
        return len(self._args)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ArgumentList):
            return self._args == other._args
        if isinstance(other, list):
            return self._args == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"ArgumentList({self.to_masked_list()!r})"


@dataclass
class CommandResult:
    """Result of command execution."""

    command: list[str]
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    success: bool
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "command": self.command,
            "exit_code": self.exit_code,
            "stdout": self.stdout[:2000] if len(self.stdout) > 2000 else self.stdout,
            "stderr": self.stderr[:2000] if len(self.stderr) > 2000 else self.stderr,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
        }


def _as_argument_list(command: ArgumentList | Iterable[str]) -> ArgumentList:
    if isinstance(command, ArgumentList):
        return command
    return ArgumentList(*command)


class CommandExecutor:
    """Runs argument vectors and owns the shared worker pool.

    The pool is process-wide: every worker's provisioning and teardown
    commands share it, so it must be shut down once by its owner.
    """

    def __init__(
        self,
        max_workers: int = DEFAULT_EXECUTOR_WORKERS,
        timeout: int = DEFAULT_COMMAND_TIMEOUT_SECONDS,
        thread_name_prefix: str = "dss-executor",
    ) -> None:
        """Initialize command executor.

        Args:
            max_workers: Size of the shared worker pool
            timeout: Default timeout in seconds for waited commands
            thread_name_prefix: Thread name prefix for pool threads
        """
        self.timeout = timeout
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_name_prefix)

    def execute(
        self,
        command: ArgumentList | Iterable[str],
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        """Run a command and wait for it to finish.

        Args:
            command: Argument vector; never interpreted by a shell
            env: Complete process environment (defaults to os.environ)
            timeout: Timeout in seconds (overrides default)

        Returns:
            CommandResult; launch failures are reported with exit code -1
        """
        args = _as_argument_list(command)
        cmd_args = args.to_list()
        masked = args.to_masked_list()
        exec_env = dict(os.environ) if env is None else dict(env)
        effective_timeout = timeout or self.timeout

        start_time = time.time()
        try:
            result = subprocess.run(
                cmd_args,
                env=exec_env,
                capture_output=True,
                text=True,
                timeout=effective_timeout,
                shell=False,
            )
            cmd_result = CommandResult(
                command=masked,
                exit_code=result.returncode,
                stdout=result.stdout or "",
                stderr=result.stderr or "",
                duration_ms=int((time.time() - start_time) * 1000),
                success=result.returncode == 0,
            )

        except subprocess.TimeoutExpired as e:
            raw_stdout = getattr(e, "stdout", None)
            if isinstance(raw_stdout, bytes):
                timeout_stdout = raw_stdout.decode("utf-8", errors="replace")
            else:
                timeout_stdout = raw_stdout or ""
            cmd_result = CommandResult(
                command=masked,
                exit_code=-1,
                stdout=timeout_stdout,
                stderr=f"Command timed out after {effective_timeout}s",
                duration_ms=int((time.time() - start_time) * 1000),
                success=False,
            )

        except FileNotFoundError:
            cmd_result = CommandResult(
                command=masked,
                exit_code=-1,
                stdout="",
                stderr=f"Command not found: {cmd_args[0] if cmd_args else ''}",
                duration_ms=int((time.time() - start_time) * 1000),
                success=False,
            )

        except OSError as e:
            cmd_result = CommandResult(
                command=masked,
                exit_code=-1,
                stdout="",
                stderr=str(e),
                duration_ms=int((time.time() - start_time) * 1000),
                success=False,
            )

        self._log_execution(cmd_result)
        return cmd_result

    def launch(
        self,
        command: ArgumentList | Iterable[str],
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> Future[CommandResult]:
        """Run a command on the pool without waiting for it.

        The outcome is only logged. Callers may keep the future to learn
        when the command finished, but must not block on it from the
        scheduling path.

        Args:
            command: Argument vector
            env: Complete process environment
            timeout: Timeout in seconds (overrides default)

        Returns:
            Future resolving to the CommandResult
        """
        args = _as_argument_list(command).copy()
        future = self._pool.submit(self.execute, args, env, timeout)
        future.add_done_callback(lambda f: self._log_detached(args, f))
        return future

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future[Any]:
        """Schedule an arbitrary callable on the shared pool."""
        return self._pool.submit(fn, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and optionally wait for queued work to finish."""
        self._pool.shutdown(wait=wait)

    def _log_execution(self, result: CommandResult) -> None:
        """Log command execution for audit."""
        cmd_str = " ".join(result.command)
        if result.success:
            logger.debug(f"Command succeeded ({result.duration_ms}ms): {cmd_str}")
        else:
            logger.debug(
                f"Command failed with exit code {result.exit_code} ({result.duration_ms}ms): {cmd_str}"
                + (f"\n{result.stderr.strip()}" if result.stderr.strip() else "")
            )

    @staticmethod
    def _log_detached(args: ArgumentList, future: Future[CommandResult]) -> None:
        if future.cancelled():
            logger.warning(f"Detached command cancelled: {args.to_masked_string()}")
            return
        exc = future.exception()
        if exc is not None:
            logger.warning(f"Detached command raised: {args.to_masked_string()}: {exc}")
            return
        result = future.result()
        if not result.success:
            logger.warning(f"Detached command exited with {result.exit_code}: {args.to_masked_string()}")
