"""
Child process handles.

This module defines the contract the ProcessManager schedules against
(ProcessHandle) and a subprocess-backed implementation of it (Process).
A handle is started once, then polled: the manager never blocks on a
child's I/O, it only asks whether the child is still alive and whether
it has run past its timeout.

Key features:
- Argument-list or shell command lines
- Environment overrides merged over the inherited environment at start
- Per-process completion callback fired once, when the exit is observed
- Timeout enforcement on poll, stopping the child before raising
- Graceful stop (SIGTERM, then SIGKILL after a grace period)
"""

import os
import shlex
import subprocess
import time
from typing import Callable, Dict, Mapping, Optional, Protocol, Sequence, Union

from parproc.utils.logging import get_logger

log = get_logger("process")

Command = Union[str, Sequence[str]]


class ProcessError(Exception):
    """Base class for errors raised by process handles."""


class ProcessStartError(ProcessError):
    """Raised when a process cannot be spawned."""

    def __init__(self, command_line: str, reason: str):
        self.command_line = command_line
        self.reason = reason
        super().__init__(f"Failed to start '{command_line}': {reason}")


class ProcessTimeoutError(ProcessError, TimeoutError):
    """Raised when a process exceeded its timeout and was stopped."""

    def __init__(self, command_line: str, timeout: float, message: Optional[str] = None):
        self.command_line = command_line
        self.timeout = timeout
        if message:
            super().__init__(message)
        else:
            super().__init__(f"'{command_line}' timed out after {timeout:.1f}s")


class ProcessHandle(Protocol):
    """
    What the ProcessManager needs from a schedulable process.

    ``pid`` is None before start and once the process has exited; a
    process that exits between ``start`` and the first ``pid`` read is
    a normal occurrence for very short-lived commands.
    """

    def start(self,
              callback: Optional[Callable[["ProcessHandle"], None]] = None,
              env: Optional[Mapping[str, str]] = None) -> None: ...

    @property
    def pid(self) -> Optional[int]: ...

    def is_running(self) -> bool: ...

    def check_timeout(self) -> None: ...


class Process:
    """
    A child process backed by subprocess.Popen.

    Standard streams are inherited from the parent. The process is not
    started on construction; call start(), or hand it to a ProcessManager.
    """

    def __init__(self,
                 command: Command,
                 cwd: Optional[str] = None,
                 env: Optional[Mapping[str, str]] = None,
                 timeout: Optional[float] = None,
                 stop_grace: float = 10.0):
        """
        Initialize a process handle.

        :param command: Argument list, or a string to run through the shell.
        :param cwd: Working directory for the child (default: inherited).
        :param env: Environment variables set for this process on top of the
                    inherited environment. Overrides passed to start() win.
        :param timeout: Seconds the process may run before check_timeout()
                        stops it. None disables the timeout.
        :param stop_grace: Seconds stop() waits after SIGTERM before SIGKILL.
        """
        if timeout is not None and timeout <= 0:
            raise ValueError(f"timeout must be positive or None, got {timeout}")

        self._command = command if isinstance(command, str) else list(command)
        if not self._command:
            raise ValueError("command must not be empty")

        self.cwd = cwd
        self.env: Dict[str, str] = dict(env or {})
        self.timeout = timeout
        self.stop_grace = stop_grace

        self._popen: Optional[subprocess.Popen] = None
        self._started_at: Optional[float] = None
        self._exit_code: Optional[int] = None
        self._callback: Optional[Callable[["Process"], None]] = None

    @classmethod
    def from_shell_commandline(cls, command: str, **kwargs) -> "Process":
        """
        Create a process that runs a command line through the shell.

        :param command: Shell command line, e.g. "make -j1 && make test".
        :return: Unstarted Process.
        """
        return cls(command, **kwargs)

    @property
    def command_line(self) -> str:
        if isinstance(self._command, str):
            return self._command
        return shlex.join(self._command)

    def start(self,
              callback: Optional[Callable[["Process"], None]] = None,
              env: Optional[Mapping[str, str]] = None) -> None:
        """
        Spawn the child process without waiting for it.

        :param callback: Called once with this process when its exit is
                         first observed (by is_running(), wait() or stop()).
        :param env: Environment overrides for this run.
        :raises ProcessStartError: If the process was already started or
                                   the OS refused to spawn it.
        """
        if self._popen is not None:
            raise ProcessStartError(self.command_line, "process already started")

        full_env = dict(os.environ)
        full_env.update(self.env)
        full_env.update(env or {})

        try:
            self._popen = subprocess.Popen(
                self._command,
                shell=isinstance(self._command, str),
                cwd=self.cwd,
                env=full_env,
            )
        except OSError as e:
            raise ProcessStartError(self.command_line, str(e)) from e

        self._started_at = time.monotonic()
        self._callback = callback
        log.debug(f"Started pid {self._popen.pid}: {self.command_line}")

    @property
    def pid(self) -> Optional[int]:
        """OS process id, or None if not started or already exited."""
        if not self.is_running():
            return None
        return self._popen.pid

    @property
    def exit_code(self) -> Optional[int]:
        """Exit status once the process has terminated, else None."""
        if self._exit_code is None and self._popen is not None:
            self.is_running()
        return self._exit_code

    def is_started(self) -> bool:
        return self._popen is not None

    def is_running(self) -> bool:
        """
        Poll the child without blocking.

        :return: True while the child is alive.
        """
        if self._popen is None or self._exit_code is not None:
            return False

        returncode = self._popen.poll()
        if returncode is None:
            return True

        self._mark_exited(returncode)
        return False

    def is_terminated(self) -> bool:
        return self.is_started() and not self.is_running()

    def is_successful(self) -> bool:
        return self.exit_code == 0

    def elapsed(self) -> float:
        """Seconds since start (0.0 if never started)."""
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at

    def check_timeout(self) -> None:
        """
        Stop the process if it has run past its timeout.

        :raises ProcessTimeoutError: After the process has been stopped.
        """
        if self.timeout is None or not self.is_running():
            return

        if self.elapsed() > self.timeout:
            self.stop()
            log.error(f"'{self.command_line}' timed out after {self.timeout}s")
            raise ProcessTimeoutError(self.command_line, self.timeout)

    def wait(self) -> int:
        """
        Block until the process exits, enforcing its timeout.

        :return: Exit status.
        :raises ProcessError: If the process was never started.
        :raises ProcessTimeoutError: If the timeout expires first.
        """
        if self._popen is None:
            raise ProcessError("Process must be started before calling wait()")

        remaining = None
        if self.timeout is not None:
            remaining = max(self.timeout - self.elapsed(), 0)

        try:
            returncode = self._popen.wait(remaining)
        except subprocess.TimeoutExpired:
            self.stop()
            log.error(f"'{self.command_line}' timed out after {self.timeout}s")
            raise ProcessTimeoutError(self.command_line, self.timeout)

        self._mark_exited(returncode)
        return returncode

    def stop(self, grace: Optional[float] = None) -> Optional[int]:
        """
        Terminate the process, escalating to kill after the grace period.

        :param grace: Seconds to wait after SIGTERM (default: stop_grace).
        :return: Exit status, or None if the process was never started.
        """
        if not self.is_running():
            return self._exit_code

        grace = self.stop_grace if grace is None else grace
        log.debug(f"Stopping pid {self._popen.pid}: {self.command_line}")
        self._popen.terminate()
        try:
            returncode = self._popen.wait(grace)
        except subprocess.TimeoutExpired:
            log.warning(f"pid {self._popen.pid} ignored SIGTERM, killing")
            self._popen.kill()
            returncode = self._popen.wait()

        self._mark_exited(returncode)
        return returncode

    def _mark_exited(self, returncode: int) -> None:
        if self._exit_code is not None:
            return
        self._exit_code = returncode
        log.debug(f"pid {self._popen.pid} exited with {returncode}: {self.command_line}")

        callback, self._callback = self._callback, None
        if callback is not None:
            callback(self)

    def __repr__(self) -> str:
        return f"Process({self.command_line!r})"
