"""
Cronstack Configuration Management.

Handles loading configuration from various sources:
- Default values
- Configuration file (cronstack.toml in the project directory)
- Environment variables
- Command-line arguments (applied by the CLI on top of the result)

The supervisor treats the loaded configuration as fixed for its lifetime.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

# Try to import tomllib (Python 3.11+) or tomli as fallback
try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from cronstack.exceptions import ConfigurationError

DEFAULT_CONFIG_FILE = "cronstack.toml"
DEFAULT_ENV_PREFIX = "CRONSTACK_"

_TRUE_VALUES = ("true", "1", "yes", "on")


@dataclass
class SupervisorConfig:
    """Configuration for the job supervisor."""

    # Time zone used to evaluate cron expressions
    time_zone: str = "UTC"

    # Run each job once, then exit when all jobs are idle
    once: bool = False

    # Seconds running workers get to stop on shutdown/reload before being killed
    drain_grace: float = 10.0

    # Seconds a timed-out worker gets to stop before being killed
    cancel_grace: float = 5.0

    # Seconds a late tick may still fire (None = no limit)
    misfire_grace_time: Optional[int] = 300

    # In-memory execution history size
    max_history: int = 1000

    # Interpreter for worker processes (defaults to the current one)
    python_executable: Optional[str] = None


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None


@dataclass
class CronstackConfig:
    """Main configuration container for Cronstack."""

    # Project directory containing services/ or src/services/
    cwd: Path = field(default_factory=Path.cwd)

    # Sub-configurations
    supervisor: SupervisorConfig = field(default_factory=SupervisorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(
    config_path: Optional[Path] = None,
    cwd: Optional[Path] = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
) -> CronstackConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: <cwd>/cronstack.toml)
        cwd: Project directory (default: current directory)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration

    Raises:
        ConfigurationError: If the config file or an environment value is invalid
    """
    config = CronstackConfig()
    if cwd is not None:
        config.cwd = Path(cwd)

    if config_path is None:
        config_path = config.cwd / DEFAULT_CONFIG_FILE

    if config_path.exists():
        config = _load_from_file(config_path, config)

    config = _load_from_env(config, env_prefix)
    validate_config(config)

    return config


def _apply_section(target: Any, values: dict[str, Any], section: str) -> None:
    for key, value in values.items():
        if not hasattr(target, key):
            raise ConfigurationError(f"Unknown configuration key: {section}.{key}")
        setattr(target, key, value)


def _load_from_file(path: Path, config: CronstackConfig) -> CronstackConfig:
    """Load configuration from a TOML file."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(
            f"Failed to load config from {path}: {e}",
            details={"path": str(path)},
        ) from e

    if "supervisor" in data:
        _apply_section(config.supervisor, data["supervisor"], "supervisor")

    if "logging" in data:
        _apply_section(config.logging, data["logging"], "logging")
        if config.logging.file is not None:
            config.logging.file = Path(config.logging.file)

    if "cwd" in data:
        config.cwd = Path(data["cwd"])

    return config


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e


def _load_from_env(config: CronstackConfig, prefix: str) -> CronstackConfig:
    """Load configuration from environment variables."""

    # Supervisor settings
    if env_val := os.environ.get(f"{prefix}TIME_ZONE"):
        config.supervisor.time_zone = env_val
    if env_val := os.environ.get(f"{prefix}ONCE"):
        config.supervisor.once = env_val.lower() in _TRUE_VALUES
    if env_val := os.environ.get(f"{prefix}DRAIN_GRACE"):
        config.supervisor.drain_grace = _parse_float(f"{prefix}DRAIN_GRACE", env_val)
    if env_val := os.environ.get(f"{prefix}CANCEL_GRACE"):
        config.supervisor.cancel_grace = _parse_float(f"{prefix}CANCEL_GRACE", env_val)
    if env_val := os.environ.get(f"{prefix}PYTHON"):
        config.supervisor.python_executable = env_val

    # Logging settings
    if env_val := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = env_val.upper()
    if env_val := os.environ.get(f"{prefix}LOG_FILE"):
        config.logging.file = Path(env_val)

    return config


def validate_config(config: CronstackConfig) -> None:
    """Check value ranges.

    Raises:
        ConfigurationError: On the first invalid value
    """
    supervisor = config.supervisor
    if supervisor.drain_grace < 0:
        raise ConfigurationError("supervisor.drain_grace must be >= 0")
    if supervisor.cancel_grace < 0:
        raise ConfigurationError("supervisor.cancel_grace must be >= 0")
    if supervisor.max_history < 1:
        raise ConfigurationError("supervisor.max_history must be >= 1")
    if not supervisor.time_zone:
        raise ConfigurationError("supervisor.time_zone must not be empty")
