"""Stand-in for mysqld used by the lifecycle tests.

Usage:
    python tests/helpers/fake_mysqld.py --help --verbose
    python tests/helpers/fake_mysqld.py --defaults-file=<cnf> --initialize-insecure --basedir=<dir>
    python tests/helpers/fake_mysqld.py --defaults-file=<cnf> --basedir=<dir>

Behaviour is selected with ``FAKE_MYSQLD_MODE``:

- ``ok`` (default): initialise creates ``datadir``; the server prints the
  readiness marker split across two writes and then sleeps until killed.
- ``hang``: the server logs but never reports readiness.
- ``crash``: the server exits with status 1 before reporting readiness.
- ``fail-init``: initialisation exits with status 1.
- ``no-basedir``: ``--help --verbose`` output has no basedir row.

Each invocation appends its argv to ``FAKE_MYSQLD_LOG`` when set.
"""

from __future__ import annotations

import os
import sys
import time
from pathlib import Path

FAKE_BASEDIR = "/opt/fake-mysql"


def _read_cnf(path: str) -> dict[str, str]:
    options = {}
    for line in Path(path).read_text().splitlines():
        if "=" in line:
            key, _, value = line.partition("=")
            options[key.strip()] = value.strip()
    return options


def _log(stream: str) -> None:
    sys.stderr.write(stream)
    sys.stderr.flush()


def main() -> None:
    args = sys.argv[1:]
    mode = os.environ.get("FAKE_MYSQLD_MODE", "ok")

    log_path = os.environ.get("FAKE_MYSQLD_LOG")
    if log_path:
        with open(log_path, "a") as f:
            f.write(" ".join(args) + "\n")

    if "--help" in args:
        print("mysqld  Ver 8.0.0 for Linux (fake)")
        print("Variables (--variable-name=value)")
        print("and boolean options {FALSE|TRUE}  Value (after reading options)")
        print("-------------------------------------------------------- ------------")
        if mode != "no-basedir":
            print(f"basedir                                                  {FAKE_BASEDIR}/")
        print("bind-address                                             *")
        return

    defaults = next(a for a in args if a.startswith("--defaults-file="))
    options = _read_cnf(defaults.split("=", 1)[1])

    if "--initialize-insecure" in args:
        if mode == "fail-init":
            _log("[ERROR] [MY-010457] --initialize specified but the data directory is unusable\n")
            sys.exit(1)
        Path(options["datadir"]).mkdir(parents=True)
        (Path(options["datadir"]) / "ibdata1").write_bytes(b"\0" * 16)
        return

    _log(f"[System] [MY-010116] mysqld (mysqld 8.0.0) starting as process {os.getpid()}\n")
    if mode == "crash":
        _log(f"[ERROR] [MY-010262] Can't start server: Bind on TCP/IP port {options['port']}\n")
        sys.exit(1)
    if mode != "hang":
        _log("[System] [MY-010931] /usr/sbin/mysqld: rea")
        time.sleep(0.05)
        _log(f"dy for connections. socket: '{options['socket']}'  port: {options['port']}\n")
    while True:
        time.sleep(1)


if __name__ == "__main__":
    main()
