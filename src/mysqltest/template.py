"""Rendering of the minimal my.cnf used by every test instance."""

from __future__ import annotations

from pathlib import Path

from mysqltest.errors import ConfigWriteError

# Sized for fast startup and a small footprint, not for throughput.
TUNING: dict[str, str] = {
    "explicit_defaults_for_timestamp": "1",
    "innodb-buffer-pool-size": "5M",
    "innodb-log-file-size": "4M",
    "innodb-read-io-threads": "2",
    "key_buffer_size": "16K",
    "max-binlog-size": "256K",
    "max-delayed-threads": "5",
    "max_allowed_packet": "256K",
    "net_buffer_length": "2K",
    "sort_buffer_size": "32K",
    "sql_mode": "''",
    "thread_cache_size": "2",
    "thread_stack": "128K",
}

_KEY_WIDTH = 32


def render_config(
    data_dir: Path | str,
    socket: Path | str,
    port: int,
    bind_address: str = "127.0.0.1",
    user: str = "root",
) -> str:
    """Render the ``[mysqld]`` section for one instance.

    Args:
        data_dir: Directory mysqld initialises and serves from.
        socket: Unix socket path.
        port: TCP port to listen on.
        bind_address: Address to bind.
        user: OS user mysqld runs as.

    Returns:
        The my.cnf text, keys sorted alphabetically.
    """
    options = dict(TUNING)
    options["bind-address"] = bind_address
    options["datadir"] = str(data_dir)
    options["port"] = str(port)
    options["socket"] = str(socket)
    options["user"] = user

    lines = ["[mysqld]"]
    for key in sorted(options):
        lines.append(f"{key.ljust(_KEY_WIDTH)}= {options[key]}")
    return "\n".join(lines) + "\n"


def write_config(path: Path, data_dir: Path, socket: Path, port: int, **kwargs: str) -> Path:
    """Render the config and write it to *path*.

    Raises:
        ConfigWriteError: If the file cannot be written.
    """
    try:
        path.write_text(render_config(data_dir, socket, port, **kwargs))
    except OSError as exc:
        raise ConfigWriteError(f"Failed to write {path}: {exc}") from exc
    return path
