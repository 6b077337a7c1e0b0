"""
Resource-bounded execution of external tools.

Two pieces:
- ExecutionLimiter: a thread-safe registry of running operations with a global
  and a per-caller ceiling. Every slot is released on every exit path.
- run_command: subprocess wrapper that waits at most the remaining deadline and
  kills the child (and its process group) on timeout or interruption.
"""

import os
import signal
import subprocess
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from dotenv import load_dotenv
from loguru import logger

from markflow.utils.exceptions import (
    ExternalToolError,
    OperationTimeoutError,
    ResourceLimitError,
    ValidationError,
)

load_dotenv()

MAX_CONCURRENT_PROCESSES = int(os.getenv("MAX_CONCURRENT_PROCESSES", "3"))
MAX_PER_CALLER = 2


@dataclass
class Deadline:
    """Wall-clock budget for one operation (timeout=None means unbounded)."""

    timeout: Optional[float] = None
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def remaining(self) -> Optional[float]:
        if self.timeout is None:
            return None
        return max(0.0, self.timeout - self.elapsed)

    def expired(self) -> bool:
        return self.timeout is not None and self.elapsed > self.timeout


@dataclass(frozen=True)
class ActiveOperation:
    """Snapshot entry for one running operation."""

    process_id: str
    caller: str
    kind: str
    started: float

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started


@dataclass
class CommandResult:
    """
    Result of an external command.

    Attributes:
        argv: Command that was run
        returncode: Exit status
        stdout: Captured standard output
        stderr: Captured standard error
        elapsed: Wall-clock seconds
    """

    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    elapsed: float = 0.0

    @property
    def success(self) -> bool:
        return self.returncode == 0


class ExecutionLimiter:
    """
    Bounds how many external operations run at once.

    Example:
        limiter = ExecutionLimiter(max_concurrent=3, max_per_caller=2)
        with limiter.slot("convert-0001", caller="cli", timeout=120) as deadline:
            run_command(["pandoc", ...], timeout=120, deadline=deadline)
    """

    def __init__(
        self, max_concurrent: int = MAX_CONCURRENT_PROCESSES, max_per_caller: int = MAX_PER_CALLER
    ):
        if max_concurrent < 1 or max_per_caller < 1:
            raise ValidationError("Execution limits must be at least 1")
        self.max_concurrent = max_concurrent
        self.max_per_caller = max_per_caller
        self._active: Dict[str, ActiveOperation] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, settings: Optional[Mapping[str, Any]]) -> "ExecutionLimiter":
        execution = ((settings or {}).get("system") or {}).get("execution") or {}
        return cls(
            max_concurrent=int(execution.get("max_concurrent") or MAX_CONCURRENT_PROCESSES),
            max_per_caller=int(execution.get("max_per_caller") or MAX_PER_CALLER),
        )

    def _register(self, process_id: str, caller: str, kind: str) -> None:
        with self._lock:
            if process_id in self._active:
                raise ValidationError(f"Operation already running: {process_id}")
            if len(self._active) >= self.max_concurrent:
                raise ResourceLimitError(
                    f"Too many concurrent operations ({self.max_concurrent} running). "
                    "Please try again shortly."
                )
            per_caller = sum(1 for op in self._active.values() if op.caller == caller)
            if per_caller >= self.max_per_caller:
                raise ResourceLimitError(
                    f"Too many operations for this caller ({self.max_per_caller} running). "
                    "Please wait for one to finish."
                )
            self._active[process_id] = ActiveOperation(
                process_id=process_id, caller=caller, kind=kind, started=time.monotonic()
            )

    def _release(self, process_id: str) -> None:
        with self._lock:
            self._active.pop(process_id, None)

    @contextmanager
    def slot(
        self,
        process_id: str,
        caller: str = "default",
        timeout: Optional[float] = None,
        kind: str = "operation",
    ) -> Iterator[Deadline]:
        """
        Reserve a slot for the duration of the with-block.

        Raises:
            ResourceLimitError: Global or per-caller ceiling reached
            OperationTimeoutError: Body completed after its deadline
        """
        self._register(process_id, caller, kind)
        deadline = Deadline(timeout)
        try:
            yield deadline
        finally:
            self._release(process_id)

        if deadline.expired():
            raise OperationTimeoutError(
                f"Operation timed out after {timeout} seconds", timeout=timeout
            )

    def active(self) -> List[ActiveOperation]:
        """Snapshot of running operations, oldest first."""
        with self._lock:
            return sorted(self._active.values(), key=lambda op: op.started)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            callers: Dict[str, int] = {}
            for op in self._active.values():
                callers[op.caller] = callers.get(op.caller, 0) + 1
            return {
                "active": len(self._active),
                "max_concurrent": self.max_concurrent,
                "max_per_caller": self.max_per_caller,
                "callers": callers,
            }


def _kill(process: subprocess.Popen) -> None:
    """Kill the child and everything in its process group, then reap it."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except (ProcessLookupError, PermissionError):
        # Already gone
        pass
    process.communicate()


def run_command(
    argv: Sequence[str],
    timeout: Optional[float] = None,
    cwd: Optional[Path] = None,
    deadline: Optional[Deadline] = None,
    env: Optional[Mapping[str, str]] = None,
) -> CommandResult:
    """
    Run an external command with a bounded wait.

    Args:
        argv: Executable and arguments (never passed through a shell)
        timeout: Maximum seconds for this call
        cwd: Working directory
        deadline: Enclosing operation deadline; the wait is capped by its remainder
        env: Replacement environment

    Returns:
        CommandResult (non-zero exit is reported, not raised)

    Raises:
        ExternalToolError: Executable missing or not runnable
        OperationTimeoutError: Wait exceeded; the child has been killed
    """
    argv = [str(arg) for arg in argv]
    if not argv:
        raise ExternalToolError("Empty command")

    wait = timeout
    if deadline is not None:
        remaining = deadline.remaining()
        if remaining is not None:
            wait = remaining if wait is None else min(wait, remaining)
    if wait is not None and wait <= 0:
        raise OperationTimeoutError(f"No time left to run {argv[0]}", timeout=timeout)

    logger.debug(f"Running: {' '.join(argv)}")
    started = time.monotonic()
    try:
        process = subprocess.Popen(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            start_new_session=True,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise ExternalToolError(f"Executable not available: {argv[0]}", tool=argv[0]) from e

    try:
        stdout, stderr = process.communicate(timeout=wait)
    except subprocess.TimeoutExpired as e:
        _kill(process)
        raise OperationTimeoutError(
            f"{Path(argv[0]).name} timed out after {wait:.0f} seconds", timeout=wait
        ) from e
    except BaseException:
        _kill(process)
        raise

    return CommandResult(
        argv=argv,
        returncode=process.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
        elapsed=time.monotonic() - started,
    )


def tool_available(argv: Sequence[str], timeout: float = 10) -> bool:
    """Probe an external tool (e.g. ['pandoc', '--version']); False if missing or failing."""
    try:
        return run_command(argv, timeout=timeout).success
    except (ExternalToolError, OperationTimeoutError):
        return False
