"""Applying semicolon-delimited SQL batches to a connection.

Splitting is naive: a terminator inside a string literal or comment still
ends the statement.  Batches are expected to be trusted test fixtures.
"""

from __future__ import annotations

import codecs
import io
import logging
from collections.abc import Iterator
from typing import IO, AnyStr

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from mysqltest.errors import LoadError

logger = logging.getLogger(__name__)


def split_statements(
    stream: IO[AnyStr], terminator: str = ";", chunk_size: int = 4096
) -> Iterator[str]:
    """
    Yield trimmed, non-empty statements read incrementally from *stream*.

    Args:
        stream: Text or binary file object; bytes are decoded as UTF-8.
        terminator: Single statement terminator character.
        chunk_size: Number of characters or bytes read per call.

    Yields:
        Statements in input order, without their terminator.
    """
    if len(terminator) != 1:
        raise ValueError(f"terminator must be a single character, got {terminator!r}")

    decoder = codecs.getincrementaldecoder("utf-8")()
    buffer = ""
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        if isinstance(chunk, bytes):
            chunk = decoder.decode(chunk)
        buffer += chunk

        while (index := buffer.find(terminator)) >= 0:
            statement = buffer[:index].strip()
            buffer = buffer[index + 1 :]
            if statement:
                yield statement

    buffer += decoder.decode(b"", final=True)
    statement = buffer.strip()
    if statement:
        yield statement


def load(db: Engine | Connection, stream: IO[AnyStr] | str, terminator: str = ";") -> int:
    """
    Execute each statement in *stream* against *db*, stopping at the first failure.

    With an ``Engine`` every statement is committed as soon as it runs.  With
    a ``Connection`` the caller owns the transaction.

    Args:
        db: SQLAlchemy engine or connection.
        stream: File object or a string holding the SQL batch.
        terminator: Statement terminator character.

    Returns:
        Number of statements executed.

    Raises:
        LoadError: Naming the failing statement, chained to the driver error.
    """
    if isinstance(stream, str):
        stream = io.StringIO(stream)

    if isinstance(db, Engine):
        with db.connect() as conn:
            return _apply(conn, stream, terminator, autocommit=True)
    return _apply(db, stream, terminator, autocommit=False)


def _apply(conn: Connection, stream: IO[AnyStr], terminator: str, autocommit: bool) -> int:
    count = 0
    for statement in split_statements(stream, terminator):
        try:
            conn.exec_driver_sql(statement)
            if autocommit:
                conn.commit()
        except SQLAlchemyError as exc:
            raise LoadError(statement, exc) from exc
        count += 1
        logger.debug("Executed statement %d: %.60s", count, statement)
    return count
