"""
Configuration management for parproc.

This module provides a hierarchical configuration system with support for
YAML files, environment variable overrides, and programmatic access. It
carries the defaults the command line uses when building a ProcessManager
and the Process instances it schedules.

Configuration sources (in order of precedence):
1. Environment variables (PARPROC_* prefix)
2. YAML configuration file (~/.parproc/config.yaml)
3. Default values defined in dataclasses

Configuration sections:
- logging: Log level, file output, verbosity
- scheduler: Parallelism limit, poll interval and start delay
- process: Per-process timeout and stop grace period
"""

import os
import yaml
from pathlib import Path
from typing import Optional, Dict, Any, Callable, Tuple
from dataclasses import dataclass, field, asdict

from parproc.utils.logging import get_logger

log = get_logger("config")

# Configuration directory and file paths
CONFIG_DIR = Path.home() / ".parproc"
CONFIG_FILE = CONFIG_DIR / "config.yaml"

@dataclass
class LoggingConfig:
    """
    Logging configuration section.
    """
    # Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL
    level: str = "INFO"
    # Optional path to log file (None = stdout only)
    file: Optional[str] = None
    # Include logger name and line number in records
    verbose: bool = False

@dataclass
class SchedulerConfig:
    """
    Process manager configuration section.
    """
    # Maximum number of processes running at the same time
    parallelism: int = 1
    # Milliseconds between liveness checks while waiting for processes
    poll_interval: int = 100
    # Milliseconds to wait before each process start
    start_delay: int = 0

@dataclass
class ProcessConfig:
    """
    Per-process defaults section.
    """
    # Seconds a process may run before it is stopped (None = unlimited)
    timeout: Optional[float] = None
    # Seconds between SIGTERM and SIGKILL when stopping a process
    stop_grace: float = 10.0


@dataclass
class Config:
    """
    Root configuration container for parproc.

    Uses dataclass fields with factory functions to ensure each section
    has independent default instances.
    """

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    process: ProcessConfig = field(default_factory=ProcessConfig)

    def to_dict(self) -> dict:
        """
        Convert configuration to dictionary.

        :return: Nested dictionary representation of all sections.
        """
        return asdict(self)

    def save(self, path: Path = None) -> None:
        """
        Save configuration to YAML file.

        Creates parent directories if they don't exist.

        :param path: Path to save config file (default: ~/.parproc/config.yaml).
        """
        path = path or CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(
                self.to_dict(),
                f,
                default_flow_style=False,
                sort_keys=False  # Preserve field order from dataclass definition
            )

        log.info(f"Config saved to {path}")

# Global configuration instance
config = Config()


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


# Environment variable -> (section, key, converter)
_ENV_MAPPINGS: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "PARPROC_LOG_LEVEL": ("logging", "level", str),
    "PARPROC_LOG_FILE": ("logging", "file", str),
    "PARPROC_VERBOSE": ("logging", "verbose", _parse_bool),
    "PARPROC_PARALLELISM": ("scheduler", "parallelism", int),
    "PARPROC_POLL_INTERVAL": ("scheduler", "poll_interval", int),
    "PARPROC_START_DELAY": ("scheduler", "start_delay", int),
    "PARPROC_TIMEOUT": ("process", "timeout", float),
    "PARPROC_STOP_GRACE": ("process", "stop_grace", float),
}


def _apply_env_vars(cfg: Config) -> None:
    """
    Apply environment variable overrides to configuration.

    Environment variables take precedence over file configuration. Values
    are converted with the converter registered for each variable; a value
    that fails to convert is logged and ignored.

    :param cfg: Configuration instance to update.
    """
    for env_var, (section, key, convert) in _ENV_MAPPINGS.items():
        value = os.environ.get(env_var)
        if value is None:
            continue

        try:
            parsed = convert(value)
        except ValueError:
            log.warning(f"Ignoring {env_var}={value!r}: not a valid {convert.__name__}")
            continue

        setattr(getattr(cfg, section), key, parsed)
        log.debug(f"Config override from {env_var}: {section}.{key} = {parsed}")


def _load_from_dict(cfg: Config, data: Dict) -> None:
    """
    Load configuration values from a nested dictionary.

    Only updates fields that exist in the configuration dataclasses;
    unknown sections and keys are ignored.

    :param cfg: Configuration instance to update.
    :param data: Nested dictionary with configuration values.
    """
    for section in ("logging", "scheduler", "process"):
        values = data.get(section)
        if not isinstance(values, dict):
            continue
        section_obj = getattr(cfg, section)
        for k, v in values.items():
            if hasattr(section_obj, k):
                setattr(section_obj, k, v)


def load_config(config_path: Path = None) -> Config:
    """
    Load configuration from file and environment variables.

    Loads configuration in the following order:
    1. Reset to default values
    2. Load from YAML file (if exists)
    3. Apply environment variable overrides

    Updates the global config instance and returns it.

    :param config_path: Optional path to config file (default: ~/.parproc/config.yaml).
    :return: Updated global configuration instance.
    """
    global config

    config = Config()

    path = config_path or CONFIG_FILE
    if path.exists():
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            _load_from_dict(config, data)
            log.debug(f"Loaded config from {path}")
        except (OSError, yaml.YAMLError) as e:
            # Continue with defaults + env vars
            log.warning(f"Failed to load config from {path}: {e}")

    _apply_env_vars(config)
    return config

def init_config_file(path: Path = None) -> bool:
    """
    Create default configuration file if it doesn't exist.

    :param path: Target path (default: ~/.parproc/config.yaml).
    :return: True if a file was written, False if one already existed.
    """
    path = path or CONFIG_FILE
    if path.exists():
        return False
    config.save(path)
    log.info(f"Created default config at {path}")
    return True

def get_config() -> Config:
    """
    Get the global configuration instance.

    :return: Global configuration instance.
    """
    return config
