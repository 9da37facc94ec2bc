"""Spawning, draining and killing mysqld processes."""

from __future__ import annotations

import logging
import re
import subprocess
import sys
import threading
from pathlib import Path
from typing import IO, TYPE_CHECKING, Protocol

from mysqltest.errors import (
    BaseDirNotFoundError,
    InitializationError,
    LaunchError,
    StartCancelledError,
)

if TYPE_CHECKING:
    from mysqltest.config import MysqldConfig

logger = logging.getLogger(__name__)

# Matches the "basedir" row of `mysqld --help --verbose`; the run of spaces
# keeps it from matching prose mentioning --basedir.
_BASEDIR_RE = re.compile(rb"^basedir {2,}(.*)$", re.MULTILINE)

_CHUNK_SIZE = 4096

# Output tail kept for InitializationError messages
_ERROR_TAIL = 2000

# Serialises writes to our own stderr from concurrent drain threads
_mirror_lock = threading.Lock()

_basedir_cache: dict[str, str] = {}
_basedir_lock = threading.Lock()


class Sink(Protocol):
    def write(self, data: bytes) -> int: ...


# ---------------------------------------------------------------------------
# Installation root discovery
# ---------------------------------------------------------------------------


def get_basedir(config: MysqldConfig) -> str:
    """Return the mysqld installation root.

    A ``basedir`` set in the configuration is returned as-is.  Otherwise the
    binary is asked once per process and the answer memoised; failures are
    not memoised, so a later call tries again.

    Raises:
        BaseDirNotFoundError: If discovery fails.
    """
    if config.basedir:
        return config.basedir

    with _basedir_lock:
        cached = _basedir_cache.get(config.binary)
        if cached is not None:
            return cached
        basedir = _discover_basedir(config.binary)
        _basedir_cache[config.binary] = basedir
        logger.info("Discovered mysqld basedir: %s", basedir)
        return basedir


def reset_basedir_cache() -> None:
    """Forget every memoised installation root."""
    with _basedir_lock:
        _basedir_cache.clear()


def _discover_basedir(binary: str) -> str:
    try:
        proc = subprocess.run(
            [binary, "--help", "--verbose"],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
    except OSError as exc:
        raise BaseDirNotFoundError(f"Could not run {binary}: {exc}") from exc

    if proc.returncode != 0:
        raise BaseDirNotFoundError(
            f"`{binary} --help --verbose` exited with status {proc.returncode}"
        )

    match = _BASEDIR_RE.search(proc.stdout)
    if match is None:
        raise BaseDirNotFoundError(f"No basedir reported by `{binary} --help --verbose`")
    basedir = match.group(1).strip().decode("utf-8", errors="replace")
    if not basedir:
        raise BaseDirNotFoundError(f"Empty basedir reported by `{binary} --help --verbose`")
    return basedir


# ---------------------------------------------------------------------------
# Process supervisor
# ---------------------------------------------------------------------------


class ProcessSupervisor:
    """
    Owns the mysqld subprocesses of a single server instance.

    Both the one-shot initialiser and the long-running server are tracked so
    that :meth:`terminate` can kill whichever is alive, from any thread.  Once
    terminated, the supervisor refuses to spawn anything new.
    """

    def __init__(self, binary: str, basedir: str, verbose: bool = False) -> None:
        """
        Args:
            binary: mysqld executable name or path.
            basedir: Installation root passed as ``--basedir``.
            verbose: Mirror child output to our own stdout/stderr.
        """
        self.binary = binary
        self.basedir = basedir
        self.verbose = verbose
        self._process: subprocess.Popen[bytes] | None = None
        self._terminated = False
        self._lock = threading.Lock()

    @property
    def process(self) -> subprocess.Popen[bytes] | None:
        """The most recently spawned process, if any."""
        return self._process

    def _command(self, config_path: Path, *extra: str) -> list[str]:
        return [
            self.binary,
            f"--defaults-file={config_path}",
            *extra,
            f"--basedir={self.basedir}",
        ]

    def _spawn(self, cmd: list[str], **kwargs) -> subprocess.Popen[bytes]:
        with self._lock:
            if self._terminated:
                raise StartCancelledError("Server was stopped before mysqld could start")
            logger.debug("Spawning %s", " ".join(cmd))
            proc = subprocess.Popen(cmd, stdin=subprocess.DEVNULL, **kwargs)
            self._process = proc
            return proc

    def run_init_once(self, config_path: Path) -> None:
        """
        Create the on-disk data structures with ``--initialize-insecure``.

        Blocks until the initialiser exits.

        Raises:
            InitializationError: On spawn failure or non-zero exit.
            StartCancelledError: If :meth:`terminate` was called.
        """
        cmd = self._command(config_path, "--initialize-insecure")
        if self.verbose:
            streams = {"stdout": None, "stderr": None}
        else:
            streams = {"stdout": subprocess.PIPE, "stderr": subprocess.STDOUT}

        try:
            proc = self._spawn(cmd, **streams)
        except OSError as exc:
            raise InitializationError(f"Could not run {self.binary}: {exc}") from exc

        output, _ = proc.communicate()

        if self._terminated:
            raise StartCancelledError("Server was stopped during initialisation")
        if proc.returncode != 0:
            msg = f"mysqld --initialize-insecure exited with status {proc.returncode}"
            if output:
                tail = output[-_ERROR_TAIL:].decode("utf-8", errors="replace").strip()
                msg = f"{msg}:\n{tail}"
            raise InitializationError(msg)
        logger.debug("Initialised data directory using %s", config_path)

    def launch(self, config_path: Path) -> subprocess.Popen[bytes]:
        """
        Start the long-running mysqld without waiting for it.

        Its stderr is piped; use :meth:`attach` to consume it.

        Raises:
            LaunchError: On spawn failure.
            StartCancelledError: If :meth:`terminate` was called.
        """
        cmd = self._command(config_path)
        stdout = None if self.verbose else subprocess.DEVNULL
        try:
            proc = self._spawn(cmd, stdout=stdout, stderr=subprocess.PIPE)
        except OSError as exc:
            raise LaunchError(f"Could not start {self.binary}: {exc}") from exc
        logger.debug("mysqld started with PID %d", proc.pid)
        return proc

    def attach(self, process: subprocess.Popen[bytes], *sinks: Sink) -> threading.Thread:
        """
        Drain *process* stderr into *sinks* on a daemon thread.

        Sinks with a ``close`` method are closed once the stream ends.
        """
        thread = threading.Thread(
            target=self._drain,
            args=(process.stderr, sinks),
            daemon=True,
            name=f"mysqld-drain-{process.pid}",
        )
        thread.start()
        return thread

    def _drain(self, stream: IO[bytes] | None, sinks: tuple[Sink, ...]) -> None:
        try:
            if stream is None:
                return
            while True:
                try:
                    chunk = stream.read1(_CHUNK_SIZE)
                except (OSError, ValueError):
                    # Pipe already closed
                    break
                if not chunk:
                    break
                for sink in sinks:
                    sink.write(chunk)
                if self.verbose:
                    _mirror(chunk)
            stream.close()
        finally:
            for sink in sinks:
                close = getattr(sink, "close", None)
                if close is not None:
                    close()

    def terminate(self, grace: float = 5.0) -> None:
        """
        Kill the tracked process immediately (SIGKILL) and reap it.

        Safe to call repeatedly, concurrently, or before anything was spawned.
        """
        with self._lock:
            self._terminated = True
            proc = self._process

        if proc is None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        try:
            proc.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            logger.warning("mysqld PID %d did not exit after SIGKILL", proc.pid)
        else:
            logger.debug("mysqld PID %d exited with %s", proc.pid, proc.returncode)


def _mirror(chunk: bytes) -> None:
    with _mirror_lock:
        buffer = getattr(sys.stderr, "buffer", None)
        if buffer is not None:
            buffer.write(chunk)
            buffer.flush()
        else:
            sys.stderr.write(chunk.decode("utf-8", errors="replace"))
            sys.stderr.flush()
