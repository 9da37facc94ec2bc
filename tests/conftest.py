"""Shared fixtures: a fake mysqld on disk and a config pointing at it."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from mysqltest.config import MySQLTestConfig
from mysqltest.process import reset_basedir_cache

FAKE_MYSQLD = Path(__file__).parent / "helpers" / "fake_mysqld.py"


@pytest.fixture(autouse=True)
def _reset_basedir_cache():
    """Each test discovers the basedir afresh."""
    reset_basedir_cache()
    yield
    reset_basedir_cache()


@pytest.fixture
def invocation_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """File the fake mysqld appends its argv to."""
    log = tmp_path / "invocations.log"
    monkeypatch.setenv("FAKE_MYSQLD_LOG", str(log))
    return log


@pytest.fixture
def fake_mysqld(tmp_path: Path, invocation_log: Path) -> Path:
    """Executable wrapper that runs tests/helpers/fake_mysqld.py."""
    script = tmp_path / "bin" / "mysqld"
    script.parent.mkdir()
    script.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_MYSQLD}" "$@"\n')
    script.chmod(0o755)
    return script


@pytest.fixture
def fake_config(fake_mysqld: Path) -> MySQLTestConfig:
    """Config using the fake mysqld with short deadlines."""
    config = MySQLTestConfig()
    config.mysqld.binary = str(fake_mysqld)
    config.startup.timeout = 10.0
    config.startup.stop_grace = 2.0
    return config
