"""Subprocess execution with timeouts and cancellation.

Every external script (provider lifecycle, test runners, on-fail hooks)
goes through run_command so that a cancelled scope or an expired deadline
always kills the whole process group.
"""

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Optional, Union

logger = logging.getLogger(__name__)

# How often a running process is checked for cancellation / deadline
POLL_INTERVAL = 0.1

# Time allowed for the output reader to drain after the process exits
DRAIN_TIMEOUT = 5.0


class CancelledError(Exception):
    """Raised when work is abandoned because its scope was cancelled."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class CancelScope:
    """Hierarchical cancellation token.

    A child scope is cancelled when it or any of its parents is cancelled.
    The first reason given wins.
    """

    def __init__(self, parent: Optional["CancelScope"] = None):
        self._parent = parent
        self._event = threading.Event()
        self._reason: Optional[str] = None
        self._lock = threading.Lock()

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def reason(self) -> Optional[str]:
        if self._event.is_set():
            return self._reason
        if self._parent is not None:
            return self._parent.reason
        return None

    def child(self) -> "CancelScope":
        return CancelScope(parent=self)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledError(self.reason or "cancelled")


@dataclass
class CommandResult:
    """Outcome of a finished (or killed) command."""
    exit_code: Optional[int]
    output: str = ""
    timed_out: bool = False
    cancelled: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


def run_command(
    args: list[str],
    env: Optional[dict[str, str]] = None,
    cwd: Optional[Union[str, Path]] = None,
    timeout: Optional[float] = None,
    scope: Optional[CancelScope] = None,
) -> CommandResult:
    """Run a command, capturing combined stdout/stderr.

    Args:
        args: Command and arguments.
        env: Full environment for the child (None = inherit).
        cwd: Working directory.
        timeout: Seconds before the process group is killed (None = no limit).
        scope: Cancellation scope; cancelling it kills the process group.

    Returns:
        CommandResult. A command that cannot be started is reported with
        exit_code None and the OS error as output instead of raising.
    """
    start_time = time.monotonic()

    if scope is not None and scope.cancelled:
        return CommandResult(exit_code=None, cancelled=True)

    try:
        proc = subprocess.Popen(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            env=env,
            cwd=str(cwd) if cwd else None,
            text=True,
            errors="replace",
            start_new_session=True,
        )
    except OSError as e:
        return CommandResult(
            exit_code=None,
            output=f"Failed to start {args[0]}: {e}",
            duration=time.monotonic() - start_time,
        )

    chunks: list[str] = []
    reader = threading.Thread(
        target=_drain, args=(proc.stdout, chunks), daemon=True
    )
    reader.start()

    deadline = start_time + timeout if timeout else None
    timed_out = False
    cancelled = False

    while True:
        try:
            proc.wait(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            pass

        if scope is not None and scope.cancelled:
            cancelled = True
            _kill(proc)
            break
        if deadline is not None and time.monotonic() >= deadline:
            timed_out = True
            _kill(proc)
            break

    reader.join(timeout=DRAIN_TIMEOUT)

    return CommandResult(
        exit_code=proc.returncode,
        output="".join(chunks),
        timed_out=timed_out,
        cancelled=cancelled,
        duration=time.monotonic() - start_time,
    )


def run_script(
    script: str,
    env: Optional[dict[str, str]] = None,
    cwd: Optional[Union[str, Path]] = None,
    timeout: Optional[float] = None,
    scope: Optional[CancelScope] = None,
) -> CommandResult:
    """Run a (possibly multi-line) script with bash."""
    return run_command(["bash", "-c", script], env=env, cwd=cwd, timeout=timeout, scope=scope)


def describe_result(result: CommandResult, timeout: Optional[float] = None) -> str:
    """One-line description of why a command did not succeed."""
    if result.timed_out:
        return f"timeout after {timeout or result.duration:.0f}s"
    if result.cancelled:
        return "cancelled"
    if result.exit_code is None:
        return "failed to start"
    return f"exit code {result.exit_code}"


def _drain(stream: IO[str], chunks: list[str]) -> None:
    for line in iter(stream.readline, ""):
        chunks.append(line)
    stream.close()


def _kill(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        logger.warning("Cannot kill process group %d, killing process only", proc.pid)
        proc.kill()
    proc.wait()
