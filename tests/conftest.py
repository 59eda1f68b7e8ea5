"""
Pytest configuration and shared fixtures for parproc tests.

This module provides:
- Custom markers for test categorization
- Shared fixtures for test isolation
- A scripted fake process for driving the manager deterministically
"""

import sys
import tempfile
import shutil
from pathlib import Path
from typing import List, Optional

import pytest

from parproc.process import ProcessStartError, ProcessTimeoutError


# =============================================================================
# Pytest Hooks and Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no child processes)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (spawn real child processes)"
    )
    config.addinivalue_line(
        "markers", "slow: Slow tests"
    )


@pytest.fixture(autouse=True)
def _skip_logging_setup(monkeypatch):
    """Keep the CLI from binding log handlers to CliRunner's captured stdout."""
    import parproc.utils.logging
    monkeypatch.setattr(parproc.utils.logging, "_CONFIGURED", True)


# =============================================================================
# Directory and Path Fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files.

    Yields:
        Path: Path to temporary directory, cleaned up after test.
    """
    tmpdir = tempfile.mkdtemp(prefix="parproc_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def temp_config_dir(temp_dir, monkeypatch):
    """Point the config module at a temporary ~/.parproc directory.

    Yields:
        Path: Path to the temporary .parproc config directory
    """
    import parproc.utils.config as config_module

    config_dir = temp_dir / ".parproc"
    config_dir.mkdir(parents=True)

    monkeypatch.setattr(config_module, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_dir / "config.yaml")
    for var in list(config_module._ENV_MAPPINGS):
        monkeypatch.delenv(var, raising=False)

    yield config_dir


@pytest.fixture
def config_file(temp_config_dir):
    """Create a test config file.

    Returns:
        Path: Path to created config file
    """
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text("""
logging:
  level: DEBUG
  verbose: true

scheduler:
  parallelism: 4
  poll_interval: 25

process:
  timeout: 30
""")
    return config_path


# =============================================================================
# Fake Processes
# =============================================================================

class FakeProcess:
    """
    Scripted stand-in for a child process.

    Runs until finish() is called, or until it has been polled
    ``polls_until_exit`` times. With ``exits_before_pid`` it reports no pid
    and is already finished right after start().
    """

    _next_pid = 1000

    def __init__(self,
                 name: str,
                 events: Optional[List] = None,
                 polls_until_exit: Optional[int] = None,
                 exits_before_pid: bool = False,
                 fail_start: bool = False):
        self.name = name
        self.events = events if events is not None else []
        self.polls_until_exit = polls_until_exit
        self.exits_before_pid = exits_before_pid
        self.fail_start = fail_start

        self.started = False
        self.finished = False
        self.start_count = 0
        self.timeout_checks = 0
        self.raise_timeout = False
        self.callback = None
        self.env = None

        FakeProcess._next_pid += 1
        self._pid = FakeProcess._next_pid

    def start(self, callback=None, env=None):
        if self.fail_start:
            raise ProcessStartError(self.name, "spawn refused")
        self.start_count += 1
        self.started = True
        self.callback = callback
        self.env = env
        self.events.append(("start", self.name))
        if self.exits_before_pid:
            self.finished = True

    @property
    def pid(self):
        if not self.started or self.finished:
            return None
        return self._pid

    def is_running(self):
        if not self.started or self.finished:
            return False
        if self.polls_until_exit is not None:
            self.polls_until_exit -= 1
            if self.polls_until_exit <= 0:
                self.finished = True
                return False
        return True

    def check_timeout(self):
        self.timeout_checks += 1
        if self.raise_timeout and not self.finished:
            self.finished = True
            raise ProcessTimeoutError(self.name, 1.0)

    def finish(self):
        self.finished = True

    def __repr__(self):
        return f"FakeProcess({self.name!r})"


@pytest.fixture
def events():
    """Shared event log that fake processes and hooks append to."""
    return []


@pytest.fixture
def make_process(events):
    """Factory for FakeProcess instances sharing the ``events`` log."""
    def factory(name, **kwargs):
        return FakeProcess(name, events=events, **kwargs)
    return factory


# =============================================================================
# Real Child Process Helpers
# =============================================================================

def python_command(code: str) -> List[str]:
    """Argument list running ``code`` in a fresh interpreter."""
    return [sys.executable, "-c", code]


@pytest.fixture
def py():
    return python_command
