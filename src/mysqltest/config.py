"""Configuration loading and resolution for mysqltest."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

VERBOSE_ENV = "MYSQLTEST_VERBOSE"
BINARY_ENV = "MYSQLTEST_MYSQLD"
BASEDIR_ENV = "MYSQLTEST_BASEDIR"


@dataclass
class MysqldConfig:
    """How to invoke mysqld and how clients reach it."""

    binary: str = "mysqld"
    basedir: str | None = None  # discovered from `mysqld --help --verbose` when unset
    host: str = "127.0.0.1"
    user: str = "root"
    verbose: bool = False


@dataclass
class StartupConfig:
    """Bounded-retry startup behaviour."""

    timeout: float = 30.0  # seconds per attempt
    max_attempts: int | None = None  # None retries forever
    stop_grace: float = 5.0  # seconds to reap a killed process


@dataclass
class MySQLTestConfig:
    """Complete mysqltest configuration."""

    mysqld: MysqldConfig = field(default_factory=MysqldConfig)
    startup: StartupConfig = field(default_factory=StartupConfig)


def load_config(
    project_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> MySQLTestConfig:
    """
    Load configuration with priority order (highest to lowest):
    1. Explicit overrides (e.g. from the CLI)
    2. MYSQLTEST_* environment variables
    3. .mysqltest.toml in the project directory
    4. ~/.config/mysqltest/config.toml (user-global)
    5. Built-in defaults

    Args:
        project_path: Directory to look in for .mysqltest.toml
        overrides: Nested dictionary of overrides (e.g., {"startup": {"timeout": 5}})
        environ: Environment mapping, defaults to os.environ

    Returns:
        Fully resolved MySQLTestConfig
    """
    config = MySQLTestConfig()
    env = os.environ if environ is None else environ

    user_config_path = Path.home() / ".config" / "mysqltest" / "config.toml"
    if user_config_path.exists():
        _merge_config_from_file(config, user_config_path)

    if project_path:
        project_config_path = project_path / ".mysqltest.toml"
        if project_config_path.exists():
            _merge_config_from_file(config, project_config_path)

    _merge_config_from_env(config, env)

    if overrides:
        _merge_config_from_dict(config, overrides)

    return config


def is_verbose(environ: Mapping[str, str] | None = None) -> bool:
    """Return True when MYSQLTEST_VERBOSE is set to exactly "1"."""
    env = os.environ if environ is None else environ
    return env.get(VERBOSE_ENV) == "1"


def _merge_config_from_file(config: MySQLTestConfig, path: Path) -> None:
    """Load TOML file and merge into existing config."""
    with path.open("rb") as f:
        data = tomllib.load(f)
    _merge_config_from_dict(config, data)


def _merge_config_from_env(config: MySQLTestConfig, env: Mapping[str, str]) -> None:
    """Apply MYSQLTEST_* environment variables."""
    if is_verbose(env):
        config.mysqld.verbose = True
    if env.get(BINARY_ENV):
        config.mysqld.binary = env[BINARY_ENV]
    if env.get(BASEDIR_ENV):
        config.mysqld.basedir = env[BASEDIR_ENV]


def _merge_config_from_dict(config: MySQLTestConfig, data: dict[str, Any]) -> None:
    """Merge dictionary data into config object."""
    if "mysqld" in data:
        mysqld_data = data["mysqld"]
        if "binary" in mysqld_data:
            config.mysqld.binary = mysqld_data["binary"]
        if "basedir" in mysqld_data:
            config.mysqld.basedir = mysqld_data["basedir"]
        if "host" in mysqld_data:
            config.mysqld.host = mysqld_data["host"]
        if "user" in mysqld_data:
            config.mysqld.user = mysqld_data["user"]
        if "verbose" in mysqld_data:
            config.mysqld.verbose = bool(mysqld_data["verbose"])

    if "startup" in data:
        startup_data = data["startup"]
        if "timeout" in startup_data:
            config.startup.timeout = float(startup_data["timeout"])
        if "max_attempts" in startup_data:
            config.startup.max_attempts = startup_data["max_attempts"]
        if "stop_grace" in startup_data:
            config.startup.stop_grace = float(startup_data["stop_grace"])
