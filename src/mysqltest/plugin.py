"""pytest fixtures providing a shared mysqld and a fresh database per test.

Registered through the ``pytest11`` entry point, so installing mysqltest is
enough to make the fixtures available.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from mysqltest.config import MySQLTestConfig, load_config
from mysqltest.errors import MySQLTestError
from mysqltest.server import Server, new_started_server

# MySQL identifiers are limited to 64 characters
_NAME_PREFIX_MAX = 48


def database_name(test_name: str) -> str:
    """Derive a unique, valid database name from a test name."""
    prefix = re.sub(r"\W", "_", test_name)[:_NAME_PREFIX_MAX]
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


@pytest.fixture(scope="session")
def mysql_config(pytestconfig: pytest.Config) -> MySQLTestConfig:
    """Configuration resolved from the pytest rootdir."""
    return load_config(Path(pytestconfig.rootpath))


@pytest.fixture(scope="session")
def mysql_server(mysql_config: MySQLTestConfig) -> Iterator[Server]:
    """A ready mysqld shared by the whole session."""
    try:
        server = new_started_server(mysql_config)
    except MySQLTestError as exc:
        pytest.fail(f"mysqld could not be started: {exc}", pytrace=False)
    yield server
    server.stop()


@pytest.fixture
def mysql_engine(mysql_server: Server, request: pytest.FixtureRequest) -> Iterator[Engine]:
    """Engine bound to a database created for this test and dropped afterwards."""
    name = database_name(request.node.name)
    bootstrap = mysql_server.db("")
    try:
        with bootstrap.connect() as conn:
            conn.exec_driver_sql(f"CREATE DATABASE `{name}`")
    except SQLAlchemyError as exc:
        bootstrap.dispose()
        pytest.fail(f"Could not create database {name}: {exc}", pytrace=False)

    engine = mysql_server.db(name)
    try:
        yield engine
    finally:
        engine.dispose()
        with bootstrap.connect() as conn:
            conn.exec_driver_sql(f"DROP DATABASE IF EXISTS `{name}`")
        bootstrap.dispose()
