"""
Centralized logging configuration.

This module provides a consistent logging setup across parproc: the process
manager, the subprocess wrapper and the command line. It configures Python's
standard logging once and hands out loggers under the "parproc." namespace so
they can be filtered separately from the host application's own loggers.

Key features:
- Centralized configuration to prevent duplicate setup
- Configurable log levels (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- Optional file logging alongside console output
- Verbose mode with source location information
"""

import logging
import sys
from pathlib import Path
from typing import Optional

_CONFIGURED = False

def setup_logging(level: str = "INFO",
                  log_file: Optional[Path] = None,
                  verbose: bool = False
                  ) -> None:
    """
    Configure the global logging system for parproc.

    Should be called once at application startup, typically by the CLI
    entry point. Library users embedding a ProcessManager are free to skip
    it and configure logging themselves.

    Safe to call multiple times - subsequent calls are ignored to prevent
    duplicate handler registration.

    :param level: Logging level as string. Valid values: "DEBUG", "INFO",
                 "WARNING", "ERROR", "CRITICAL". Case-insensitive.
    :param log_file: Optional path to write logs to a file. The parent
                    directory will be created if it doesn't exist.
    :param verbose: If True, includes logger name and line number in
                   log messages.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    if verbose:
        fmt = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
    else:
        fmt = "%(asctime)s | %(levelname)-8s | %(message)s"

    datefmt = "%Y-%m-%d %H:%M:%S"

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=fmt,
        datefmt=datefmt,
        handlers=handlers,
    )

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """
    Create a namespaced logger for parproc components.

    :param name: Component name, e.g. "manager" or "process". The
                "parproc." prefix is added automatically.
    :return: logging.Logger instance in the "parproc." namespace.
    """
    return logging.getLogger(f"parproc.{name}")
