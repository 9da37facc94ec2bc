"""Disposable mysqld instances for tests."""

from mysqltest.config import MySQLTestConfig, load_config
from mysqltest.errors import LoadError, MySQLTestError
from mysqltest.loader import load, split_statements
from mysqltest.server import Server, ServerState, new_server_db, new_started_server
from mysqltest.waiter import READY_MARKER, ReadinessWatcher

__version__ = "0.1.0"

__all__ = [
    "READY_MARKER",
    "LoadError",
    "MySQLTestConfig",
    "MySQLTestError",
    "ReadinessWatcher",
    "Server",
    "ServerState",
    "__version__",
    "load",
    "load_config",
    "new_server_db",
    "new_started_server",
    "split_statements",
]
