"""
parproc - run many child processes with bounded parallelism.
"""

from parproc.manager import PendingProcess, ProcessManager
from parproc.process import (
    Process,
    ProcessError,
    ProcessHandle,
    ProcessStartError,
    ProcessTimeoutError,
)

__version__ = "0.1.0"

__all__ = [
    "PendingProcess",
    "Process",
    "ProcessError",
    "ProcessHandle",
    "ProcessManager",
    "ProcessStartError",
    "ProcessTimeoutError",
]
