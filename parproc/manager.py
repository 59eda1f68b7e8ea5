"""
Bounded-parallelism process manager.

This module provides ProcessManager, which runs queued child processes
while keeping at most ``parallelism`` of them alive at once. Work is
submitted to a FIFO queue; a process is started whenever a slot is free,
and every observed exit immediately starts the next queued process.

Nothing here blocks on a child's I/O. Completion is detected by polling:
submit() and poll_all() check the running processes once, wait_all()
keeps polling every ``poll_interval`` milliseconds until all work is done.

Key features:
- Hard cap on concurrently running processes, adjustable at runtime
- Strict FIFO start order
- Optional pacing delay before every start
- Start and finish hooks invoked on the caller's thread
- Correct accounting for processes that exit before their pid is read

Example:
    manager = ProcessManager(parallelism=4)
    for cmd in commands:
        manager.submit(Process.from_shell_commandline(cmd))
    manager.wait_all()
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Mapping, Optional

from parproc.process import ProcessHandle
from parproc.utils.config import SchedulerConfig
from parproc.utils.logging import get_logger

log = get_logger("manager")

ProcessCallback = Callable[[ProcessHandle], None]


@dataclass
class PendingProcess:
    """A submitted process waiting for a free slot."""

    process: ProcessHandle
    callback: Optional[ProcessCallback] = None
    env: Dict[str, str] = field(default_factory=dict)


class ProcessManager:
    """
    Runs child processes with a bounded level of parallelism.

    Running processes are tracked by pid. A process is added to the running
    set once it has a pid and removed the first time it is observed to have
    exited; the finish hook then fires and the next pending process is
    started. The finish hook therefore sees the process already removed:
    running_count no longer includes it.

    Thread-safety: state is guarded by a re-entrant lock, so hooks may call
    back into the manager. Hooks run while the lock is held. The sleep
    between polls in wait_all() does not hold the lock.

    Errors raised by a process (ProcessStartError on start,
    ProcessTimeoutError from its timeout check) propagate to the caller of
    whichever operation triggered them. A poll pass interrupted by a timeout
    leaves the remaining processes unchecked until the next poll.
    """

    def __init__(self,
                 parallelism: int = 1,
                 poll_interval: int = 100,
                 start_delay: int = 0):
        """
        Initialize the ProcessManager.

        :param parallelism: Maximum number of processes running at once (>= 1).
        :param poll_interval: Milliseconds to sleep between polls in wait_all().
        :param start_delay: Milliseconds to sleep before each process start.
        """
        self._parallelism = _require_at_least(parallelism, 1, "parallelism")
        self._poll_interval = _require_at_least(poll_interval, 0, "poll_interval")
        self._start_delay = _require_at_least(start_delay, 0, "start_delay")

        self._pending: Deque[PendingProcess] = deque()
        self._running: Dict[int, ProcessHandle] = {}

        self._start_callback: Optional[ProcessCallback] = None
        self._finish_callback: Optional[ProcessCallback] = None

        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, cfg: SchedulerConfig) -> "ProcessManager":
        """
        Build a manager from the scheduler configuration section.

        :param cfg: SchedulerConfig with parallelism, poll_interval and start_delay.
        :return: New ProcessManager.
        """
        return cls(
            parallelism=cfg.parallelism,
            poll_interval=cfg.poll_interval,
            start_delay=cfg.start_delay,
        )

    @property
    def parallelism(self) -> int:
        return self._parallelism

    @property
    def poll_interval(self) -> int:
        return self._poll_interval

    @property
    def start_delay(self) -> int:
        return self._start_delay

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def running_count(self) -> int:
        with self._lock:
            return len(self._running)

    def set_parallelism(self, parallelism: int) -> "ProcessManager":
        """
        Change the number of processes allowed to run at once.

        Raising the limit starts pending processes right away rather than on
        the next poll. Lowering it never stops running processes; new starts
        simply wait until the running count drops below the new limit.

        :param parallelism: New limit (>= 1).
        :return: self
        """
        _require_at_least(parallelism, 1, "parallelism")
        with self._lock:
            self._parallelism = parallelism
            log.debug(f"Parallelism set to {parallelism}")
            while self._can_dispatch_next():
                self._dispatch_next()
        return self

    def set_poll_interval(self, poll_interval: int) -> "ProcessManager":
        """
        :param poll_interval: Milliseconds between polls in wait_all() (>= 0).
        :return: self
        """
        self._poll_interval = _require_at_least(poll_interval, 0, "poll_interval")
        return self

    def set_start_delay(self, start_delay: int) -> "ProcessManager":
        """
        :param start_delay: Milliseconds to wait before each start (>= 0).
        :return: self
        """
        self._start_delay = _require_at_least(start_delay, 0, "start_delay")
        return self

    def set_start_callback(self, callback: Optional[ProcessCallback]) -> "ProcessManager":
        """
        Set the hook called with each process just before it is started.

        :param callback: Callable taking the process, or None to disable.
        :return: self
        """
        with self._lock:
            self._start_callback = callback
        return self

    def set_finish_callback(self, callback: Optional[ProcessCallback]) -> "ProcessManager":
        """
        Set the hook called with each process once its exit is observed.

        :param callback: Callable taking the process, or None to disable.
        :return: self
        """
        with self._lock:
            self._finish_callback = callback
        return self

    def submit(self,
               process: ProcessHandle,
               callback: Optional[Callable] = None,
               env: Optional[Mapping[str, str]] = None) -> "ProcessManager":
        """
        Queue a process and start it if a slot is free.

        Also polls the processes already running, so callers that only ever
        submit still see completions and keep the queue moving.

        :param process: Unstarted process handle.
        :param callback: Per-process completion callback, passed to start().
        :param env: Environment overrides, passed to start().
        :return: self
        :raises ProcessStartError: If a dispatched process fails to spawn.
        :raises ProcessTimeoutError: If a running process timed out.
        """
        with self._lock:
            self._pending.append(PendingProcess(process, callback, dict(env or {})))
            self._dispatch_next()
            self.poll_all()
        return self

    def poll_all(self) -> "ProcessManager":
        """
        Check every running process once for timeout and exit.

        :return: self
        :raises ProcessTimeoutError: From the first process found timed out.
        """
        with self._lock:
            for pid, process in list(self._running.items()):
                # A hook may already have finished it through a nested poll
                if self._running.get(pid) is process:
                    self._check_one(pid, process)
        return self

    def wait_all(self) -> "ProcessManager":
        """
        Block until every submitted process has been started and has exited.

        Returns immediately when there is nothing pending or running.

        :return: self
        """
        while self.has_unfinished_processes():
            self._sleep(self._poll_interval)
            self.poll_all()
        return self

    def has_unfinished_processes(self) -> bool:
        """
        :return: True while any process is pending or running.
        """
        with self._lock:
            return len(self._pending) > 0 or len(self._running) > 0

    def _can_dispatch_next(self) -> bool:
        return len(self._running) < self._parallelism and len(self._pending) > 0

    def _dispatch_next(self) -> None:
        """
        Start the next pending process if a slot is free.

        A process that exits before its pid can be read never enters the
        running set; it is finished in place and its slot goes to the next
        pending process.
        """
        while self._can_dispatch_next():
            self._sleep(self._start_delay)

            entry = self._pending.popleft()
            process = entry.process
            self._invoke(self._start_callback, process)
            process.start(entry.callback, entry.env)

            pid = process.pid
            if pid is not None:
                self._running[pid] = process
                log.debug(f"Running {process} as pid {pid} "
                          f"({len(self._running)}/{self._parallelism})")
                return

            log.debug(f"{process} exited before its pid was read")
            if not self._finish_if_exited(None, process):
                return

    def _check_one(self, pid: Optional[int], process: ProcessHandle) -> None:
        if self._finish_if_exited(pid, process):
            self._dispatch_next()

    def _finish_if_exited(self, pid: Optional[int], process: ProcessHandle) -> bool:
        """
        :return: True if the process has exited and was finished.
        """
        process.check_timeout()
        if process.is_running():
            return False

        # Leave the running set before the hook so a re-entrant poll cannot
        # finish the same process twice.
        if pid is not None:
            self._running.pop(pid, None)
        log.debug(f"Finished {process}")
        self._invoke(self._finish_callback, process)
        return True

    @staticmethod
    def _invoke(callback: Optional[ProcessCallback], process: ProcessHandle) -> None:
        if callback is not None:
            callback(process)

    @staticmethod
    def _sleep(milliseconds: int) -> None:
        if milliseconds > 0:
            time.sleep(milliseconds / 1000)


def _require_at_least(value: int, minimum: int, name: str) -> int:
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value
