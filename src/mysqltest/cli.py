"""Entry point for the `mysqltest` CLI."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mysqltest.config import MySQLTestConfig

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and run the requested command."""
    parser = argparse.ArgumentParser(
        prog="mysqltest",
        description="Disposable mysqld instances for tests.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser(
        "run", help="Start a throwaway mysqld and keep it running until Ctrl-C"
    )
    run_parser.add_argument(
        "--database",
        metavar="NAME",
        help="Create this database once the server is ready.",
    )
    run_parser.add_argument(
        "--load",
        metavar="FILE",
        help="SQL file to apply to the database (requires --database).",
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="Per-attempt startup deadline (default: 30).",
    )
    run_parser.add_argument(
        "--verbose",
        action="store_true",
        help="Mirror mysqld output to this terminal.",
    )

    subparsers.add_parser("basedir", help="Print the discovered mysqld installation root")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    from mysqltest.config import load_config

    overrides: dict[str, dict[str, object]] = {}
    if getattr(args, "verbose", False):
        overrides.setdefault("mysqld", {})["verbose"] = True
    if getattr(args, "timeout", None) is not None:
        overrides.setdefault("startup", {})["timeout"] = args.timeout
    config = load_config(Path.cwd(), overrides)

    if args.command == "basedir":
        _basedir(config)
    elif args.command == "run":
        if args.load and not args.database:
            parser.error("--load requires --database")
        _run(config, args.database, args.load)


def _basedir(config: MySQLTestConfig) -> None:
    """Print the mysqld installation root.

    Args:
        config: Resolved configuration
    """
    from mysqltest.errors import BaseDirNotFoundError
    from mysqltest.process import get_basedir

    try:
        print(get_basedir(config.mysqld))
    except BaseDirNotFoundError as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)


def _run(config: MySQLTestConfig, database: str | None, sql_file: str | None) -> None:
    """Start a server, optionally prepare a database, and block until interrupted.

    Args:
        config: Resolved configuration
        database: Database to create, if any
        sql_file: SQL batch to load into the database, if any
    """
    from mysqltest.errors import MySQLTestError
    from mysqltest.loader import load
    from mysqltest.server import new_server_db, new_started_server

    try:
        if database:
            server, engine = new_server_db(database, config)
        else:
            server, engine = new_started_server(config), None
    except MySQLTestError:
        logger.exception("Failed to start mysqld")
        sys.exit(1)

    try:
        if sql_file and engine is not None:
            with open(sql_file, encoding="utf-8") as f:
                count = load(engine, f)
            logger.info("Loaded %d statement(s) from %s", count, sql_file)

        print(f"DSN:    {server.dsn(database or '')}")
        print(f"URL:    {server.url(database or '').render_as_string(hide_password=False)}")
        print(f"Socket: {server.socket}")
        print("Press Ctrl-C to stop.", flush=True)
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except (OSError, MySQLTestError):
        logger.exception("mysqltest run failed")
        sys.exit(1)
    finally:
        server.stop()


def _get_version() -> str:
    from mysqltest import __version__

    return __version__


if __name__ == "__main__":
    main()
