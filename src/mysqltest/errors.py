"""Exception hierarchy for mysqltest.

Every failure while bringing up an instance is raised as a subclass of
:class:`MySQLTestError`.  The pytest plugin turns these into test failures,
so call sites never need to handle them explicitly.
"""

from __future__ import annotations


class MySQLTestError(RuntimeError):
    """Base exception for mysqltest errors."""


class PortAllocationError(MySQLTestError):
    """Raised when no free local port could be obtained."""


class BaseDirNotFoundError(MySQLTestError):
    """Raised when the mysqld installation root cannot be discovered."""


class ConfigWriteError(MySQLTestError):
    """Raised when the instance directory or my.cnf cannot be written."""


class InitializationError(MySQLTestError):
    """Raised when ``mysqld --initialize-insecure`` fails."""


class LaunchError(MySQLTestError):
    """Raised when the long-running mysqld cannot be spawned."""


class ServerExitedError(MySQLTestError):
    """Raised when mysqld closes its output before reporting readiness."""


class StartCancelledError(MySQLTestError):
    """Raised inside a start attempt that was stopped while in flight."""


class StartTimeoutError(MySQLTestError):
    """Raised when a bounded number of start attempts all timed out."""


class ServerStateError(MySQLTestError):
    """Raised when a lifecycle operation is called in the wrong state."""


class ConnectionHandleError(MySQLTestError):
    """Raised when a SQLAlchemy engine cannot be built for the server."""


class DatabaseCreateError(MySQLTestError):
    """Raised when the per-test database cannot be created."""


class LoadError(MySQLTestError):
    """Raised when a statement in a SQL batch fails.

    Attributes:
        statement: The literal statement text that failed.
    """

    def __init__(self, statement: str, error: BaseException) -> None:
        super().__init__(f'"{statement}" failed: {error}')
        self.statement = statement
        self.error = error
