"""Free local port allocation."""

from __future__ import annotations

import socket

from mysqltest.errors import PortAllocationError


def get_free_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for an unused TCP port on *host*.

    The socket is closed before returning, so another process could in
    principle grab the port before mysqld binds it.  A lost race shows up as
    a server that never becomes ready and is retried by the start supervisor.

    Raises:
        PortAllocationError: If the bind fails.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((host, 0))
            return s.getsockname()[1]
    except OSError as exc:
        raise PortAllocationError(f"Could not allocate a free port on {host}: {exc}") from exc
