"""Lifecycle of disposable mysqld instances."""

from __future__ import annotations

import enum
import logging
import shutil
import subprocess
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError

from mysqltest.config import MySQLTestConfig, load_config
from mysqltest.errors import (
    ConfigWriteError,
    ConnectionHandleError,
    DatabaseCreateError,
    ServerExitedError,
    ServerStateError,
    StartCancelledError,
    StartTimeoutError,
)
from mysqltest.ports import get_free_port
from mysqltest.process import ProcessSupervisor, get_basedir
from mysqltest.template import write_config
from mysqltest.waiter import READY_MARKER, ReadinessWatcher

logger = logging.getLogger(__name__)


class ServerState(enum.Enum):
    UNSTARTED = "unstarted"
    INITIALIZING = "initializing"
    STARTING = "starting"
    READY = "ready"
    STOPPED = "stopped"


class Server:
    """
    A single disposable mysqld with its own port, data directory and socket.

    ``start()`` blocks until mysqld reports it is ready for connections and
    has no deadline of its own; use :func:`new_started_server` for a bounded,
    retrying start.  ``stop()`` may be called from any thread at any time and
    also cancels a start that is still in flight.
    """

    def __init__(self, config: MySQLTestConfig | None = None) -> None:
        self.config = config or load_config()
        self.state = ServerState.UNSTARTED
        self.port: int | None = None
        self.root_dir: Path | None = None
        self.data_dir: Path | None = None
        self.socket: Path | None = None
        self.config_path: Path | None = None
        self._supervisor: ProcessSupervisor | None = None
        self._engines: list[Engine] = []
        self._stopped = False
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<Server port={self.port} state={self.state.value} dir={self.root_dir}>"

    def __enter__(self) -> Server:
        if self.state is ServerState.UNSTARTED:
            self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    @property
    def process(self) -> subprocess.Popen[bytes] | None:
        """The mysqld process handle, or None before launch."""
        if self._supervisor is None:
            return None
        return self._supervisor.process

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Initialise and launch mysqld, returning once it is ready.

        Raises:
            ServerStateError: If the server was already started.
            MySQLTestError: Any failure while starting; the instance
                directory is left in place for inspection.
        """
        with self._lock:
            if self.state is not ServerState.UNSTARTED:
                raise ServerStateError(f"Cannot start a server in state {self.state.value}")
            self._checkpoint()
            self.state = ServerState.INITIALIZING

        try:
            self._start()
        except StartCancelledError:
            # stop() ran concurrently and may have missed a directory made after it
            if self.root_dir is not None:
                shutil.rmtree(self.root_dir, ignore_errors=True)
            raise

    def _start(self) -> None:
        mysqld = self.config.mysqld
        basedir = get_basedir(mysqld)

        self.port = get_free_port(mysqld.host)
        try:
            self.root_dir = Path(tempfile.mkdtemp(prefix="mysql-datadir-"))
        except OSError as exc:
            raise ConfigWriteError(f"Could not create instance directory: {exc}") from exc
        self.data_dir = self.root_dir / "data"
        self.socket = self.root_dir / "socket"
        self.config_path = write_config(
            self.root_dir / "my.cnf",
            self.data_dir,
            self.socket,
            self.port,
            bind_address=mysqld.host,
            user=mysqld.user,
        )

        with self._lock:
            self._checkpoint()
            self._supervisor = ProcessSupervisor(mysqld.binary, basedir, verbose=mysqld.verbose)
        supervisor = self._supervisor

        logger.info("Initialising mysqld data directory %s", self.data_dir)
        supervisor.run_init_once(self.config_path)

        watcher = ReadinessWatcher(READY_MARKER)
        process = supervisor.launch(self.config_path)
        # Attached before the checkpoint so a killed process still has its pipe closed
        supervisor.attach(process, watcher)
        with self._lock:
            self._checkpoint()
            self.state = ServerState.STARTING

        if not watcher.wait():
            with self._lock:
                self._checkpoint()
            try:
                status = process.wait(timeout=self.config.startup.stop_grace)
            except subprocess.TimeoutExpired:
                status = None
            raise ServerExitedError(
                f"mysqld (PID {process.pid}) closed its output before becoming ready"
                f" (exit status {status})"
            )

        with self._lock:
            self._checkpoint()
            self.state = ServerState.READY
        logger.info("mysqld ready on %s:%d (PID %d)", mysqld.host, self.port, process.pid)

    def _checkpoint(self) -> None:
        """Raise if stop() has been called. Caller holds the lock."""
        if self._stopped:
            raise StartCancelledError("Server was stopped while starting")

    def stop(self) -> None:
        """
        Kill mysqld and remove the instance directory.

        Best effort: errors are not raised.  Safe on a server that was never
        started or is already stopped.
        """
        with self._lock:
            self._stopped = True
            previous = self.state
            self.state = ServerState.STOPPED
            supervisor = self._supervisor
            engines, self._engines = self._engines, []

        for engine in engines:
            engine.dispose()
        if supervisor is not None:
            supervisor.terminate(self.config.startup.stop_grace)
        if self.root_dir is not None:
            shutil.rmtree(self.root_dir, ignore_errors=True)

        if previous is not ServerState.STOPPED:
            logger.info("Stopped mysqld on port %s (was %s)", self.port, previous.value)

    # ------------------------------------------------------------------
    # Connection handles
    # ------------------------------------------------------------------

    def dsn(self, suffix: str = "") -> str:
        """
        Go-style DSN for the server.

        Args:
            suffix: ``"dbname"`` or ``"dbname?param=value&..."``.

        Returns:
            ``root@tcp(127.0.0.1:<port>)/<suffix>``.  The port is only
            allocated by :meth:`start`, so before that it renders as ``None``.
        """
        mysqld = self.config.mysqld
        return f"{mysqld.user}@tcp({mysqld.host}:{self.port})/{suffix}"

    def url(self, suffix: str = "") -> URL:
        """SQLAlchemy URL equivalent of :meth:`dsn`.

        Query parameters are passed through to PyMySQL unchanged.
        """
        database, _, query = suffix.partition("?")
        mysqld = self.config.mysqld
        return URL.create(
            "mysql+pymysql",
            username=mysqld.user,
            host=mysqld.host,
            port=self.port,
            database=database or None,
            query=dict(parse_qsl(query, keep_blank_values=True)),
        )

    def db(self, suffix: str = "", **engine_kwargs: Any) -> Engine:
        """
        Pooled SQLAlchemy engine for the server.

        Building the engine does not connect; connectivity is checked on
        first use.  Engines still open when the server stops are disposed
        then; an engine the caller disposes earlier is forgotten.

        Raises:
            ConnectionHandleError: If the engine cannot be built.
        """
        try:
            engine = create_engine(self.url(suffix), **engine_kwargs)
        except (SQLAlchemyError, ImportError, TypeError, ValueError) as exc:
            raise ConnectionHandleError(
                f"Could not build engine for {self.dsn(suffix)}: {exc}"
            ) from exc
        with self._lock:
            self._engines.append(engine)
        event.listen(engine, "engine_disposed", self._forget_engine)
        return engine

    def _forget_engine(self, engine: Engine) -> None:
        with self._lock:
            if engine in self._engines:
                self._engines.remove(engine)


# ---------------------------------------------------------------------------
# Bounded, retrying start
# ---------------------------------------------------------------------------


class _StartAttempt:
    """Runs ``server.start()`` on a daemon thread and records its outcome."""

    def __init__(self, server: Server, number: int) -> None:
        self.server = server
        self.error: Exception | None = None
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"mysqld-start-{number}",
        )

    def _run(self) -> None:
        try:
            self.server.start()
        except Exception as exc:
            self.error = exc

    def run(self, timeout: float) -> bool:
        """Start the attempt and wait up to *timeout*; True if it finished."""
        self._thread.start()
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def cancel(self, grace: float) -> None:
        """Stop the server, which unblocks and ends the start thread."""
        self.server.stop()
        self._thread.join(grace)
        if self._thread.is_alive():
            logger.warning("Start thread %s still running after cancellation", self._thread.name)


def new_started_server(
    config: MySQLTestConfig | None = None,
    *,
    timeout: float | None = None,
    max_attempts: int | None = None,
    server_factory: Callable[[MySQLTestConfig], Server] | None = None,
) -> Server:
    """
    Create and start a server, retrying with a fresh instance on timeout.

    Each attempt gets *timeout* seconds to become ready.  An attempt that
    times out, or whose mysqld exits before becoming ready, is torn down
    (process killed, directory removed) and replaced by a new one.  Any other
    failure is raised immediately.

    Args:
        config: Configuration, loaded with :func:`load_config` if omitted.
        timeout: Per-attempt deadline in seconds (default ``config.startup.timeout``).
        max_attempts: Give up after this many attempts; None retries forever
            (default ``config.startup.max_attempts``).
        server_factory: Builds each attempt's server, ``Server`` by default.

    Returns:
        A server in the READY state.

    Raises:
        StartTimeoutError: If *max_attempts* attempts all failed to become ready.
        MySQLTestError: Any non-retryable start failure.
    """
    config = config or load_config()
    factory = server_factory or Server
    if timeout is None:
        timeout = config.startup.timeout
    if max_attempts is None:
        max_attempts = config.startup.max_attempts

    number = 0
    while max_attempts is None or number < max_attempts:
        number += 1
        server = factory(config)
        attempt = _StartAttempt(server, number)

        if not attempt.run(timeout):
            logger.warning(
                "mysqld not ready after %.1fs (attempt %d), retrying with a new instance",
                timeout,
                number,
            )
            attempt.cancel(config.startup.stop_grace)
            continue

        if attempt.error is None:
            if number > 1:
                logger.info("mysqld started after %d attempts", number)
            return server

        if isinstance(attempt.error, ServerExitedError):
            logger.warning("%s (attempt %d), retrying with a new instance", attempt.error, number)
            server.stop()
            continue

        logger.error("mysqld failed to start, instance directory left at %s", server.root_dir)
        raise attempt.error

    raise StartTimeoutError(f"mysqld did not become ready in {max_attempts} attempt(s)")


def new_server_db(
    name: str, config: MySQLTestConfig | None = None, **kwargs: Any
) -> tuple[Server, Engine]:
    """
    Start a server, create database *name* on it and return both.

    Keyword arguments are passed to :func:`new_started_server`.

    Raises:
        DatabaseCreateError: If ``CREATE DATABASE`` fails; the server is stopped.
    """
    server = new_started_server(config, **kwargs)
    bootstrap = server.db("")
    try:
        with bootstrap.connect() as conn:
            conn.exec_driver_sql(f"CREATE DATABASE `{name}`")
    except SQLAlchemyError as exc:
        server.stop()
        raise DatabaseCreateError(f"Could not create database {name}: {exc}") from exc
    finally:
        bootstrap.dispose()
    return server, server.db(name)
