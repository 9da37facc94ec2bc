"""Tests for loader.py - splitting and applying SQL batches."""

from __future__ import annotations

import io
from unittest.mock import MagicMock, call

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError

from mysqltest.errors import LoadError
from mysqltest.loader import load, split_statements

BATCH = "CREATE TABLE t (a INT);  ; INSERT INTO t VALUES (1);"


@pytest.fixture
def sqlite_engine():
    """In-memory SQLite engine standing in for MySQL."""
    engine = create_engine("sqlite://")
    yield engine
    engine.dispose()


# ---------------------------------------------------------------------------
# split_statements
# ---------------------------------------------------------------------------


def test_split_skips_empty_segments():
    """Test empty and whitespace-only segments are dropped."""
    assert list(split_statements(io.StringIO(BATCH))) == [
        "CREATE TABLE t (a INT)",
        "INSERT INTO t VALUES (1)",
    ]


def test_split_trims_whitespace():
    """Test statements are stripped of surrounding whitespace and newlines."""
    text = "\n  SELECT 1 \r\n;\n\tSELECT 2\n;\n"

    assert list(split_statements(io.StringIO(text))) == ["SELECT 1", "SELECT 2"]


def test_split_keeps_unterminated_tail():
    """Test a final statement without a terminator is still yielded."""
    assert list(split_statements(io.StringIO("SELECT 1; SELECT 2"))) == ["SELECT 1", "SELECT 2"]


def test_split_across_small_chunks():
    """Test statements spanning many reads are reassembled."""
    text = "CREATE TABLE users (id INT, name VARCHAR(20)); INSERT INTO users VALUES (1, 'a');"

    assert list(split_statements(io.StringIO(text), chunk_size=3)) == [
        "CREATE TABLE users (id INT, name VARCHAR(20))",
        "INSERT INTO users VALUES (1, 'a')",
    ]


def test_split_bytes_stream_with_multibyte_chars():
    """Test binary streams are decoded even when a character straddles reads."""
    data = "INSERT INTO t VALUES ('héllo');INSERT INTO t VALUES ('wörld');".encode()

    assert list(split_statements(io.BytesIO(data), chunk_size=1)) == [
        "INSERT INTO t VALUES ('héllo')",
        "INSERT INTO t VALUES ('wörld')",
    ]


def test_split_is_naive_about_literals():
    """Test a terminator inside a string literal still splits."""
    assert list(split_statements(io.StringIO("SELECT 'a;b'"))) == ["SELECT 'a", "b'"]


def test_split_custom_terminator():
    """Test a different terminator character can be used."""
    assert list(split_statements(io.StringIO("SELECT 1 $ SELECT 2 $"), "$")) == [
        "SELECT 1",
        "SELECT 2",
    ]


def test_split_rejects_multichar_terminator():
    """Test the terminator must be a single character."""
    with pytest.raises(ValueError):
        list(split_statements(io.StringIO(""), "//"))


def test_split_empty_input():
    """Test empty or blank input yields nothing."""
    assert list(split_statements(io.StringIO(""))) == []
    assert list(split_statements(io.StringIO(" ;\n; "))) == []


def test_split_propagates_read_error():
    """Test an error from the stream itself reaches the caller."""
    stream = MagicMock()
    stream.read.side_effect = ["SELECT 1; SEL", OSError("disk gone")]
    statements = split_statements(stream)

    assert next(statements) == "SELECT 1"
    with pytest.raises(OSError, match="disk gone"):
        next(statements)


# ---------------------------------------------------------------------------
# load
# ---------------------------------------------------------------------------


def test_load_executes_statements_in_order():
    """Test exactly the non-empty statements run, trimmed and in order."""
    conn = MagicMock()

    count = load(conn, io.StringIO(BATCH))

    assert count == 2
    assert conn.exec_driver_sql.call_args_list == [
        call("CREATE TABLE t (a INT)"),
        call("INSERT INTO t VALUES (1)"),
    ]
    conn.commit.assert_not_called()


def test_load_stops_at_first_failure():
    """Test a failing statement aborts the batch and is named in the error."""
    conn = MagicMock()
    failure = OperationalError("INSERT INTO t VALUES (1)", {}, Exception("table is locked"))
    conn.exec_driver_sql.side_effect = [None, failure, None]

    with pytest.raises(LoadError) as exc_info:
        load(conn, BATCH + " INSERT INTO t VALUES (2);")

    assert conn.exec_driver_sql.call_count == 2
    assert exc_info.value.statement == "INSERT INTO t VALUES (1)"
    assert '"INSERT INTO t VALUES (1)" failed:' in str(exc_info.value)
    assert "table is locked" in str(exc_info.value)
    assert exc_info.value.__cause__ is failure


def test_load_accepts_string():
    """Test a plain string is accepted as the batch."""
    conn = MagicMock()

    assert load(conn, "SELECT 1;SELECT 2") == 2


def test_load_engine_commits_each_statement(sqlite_engine):
    """Test statements applied through an engine are committed."""
    count = load(sqlite_engine, io.StringIO(BATCH + "INSERT INTO t VALUES (2);"))

    assert count == 3
    with sqlite_engine.connect() as conn:
        rows = conn.exec_driver_sql("SELECT a FROM t ORDER BY a").fetchall()
    assert [r[0] for r in rows] == [1, 2]


def test_load_engine_keeps_statements_before_failure(sqlite_engine):
    """Test statements before the failing one stay applied."""
    batch = "CREATE TABLE t (a INT); INSERT INTO t VALUES (1); INSERT INTO missing VALUES (2);"

    with pytest.raises(LoadError) as exc_info:
        load(sqlite_engine, batch)

    assert exc_info.value.statement == "INSERT INTO missing VALUES (2)"
    with sqlite_engine.connect() as conn:
        assert conn.exec_driver_sql("SELECT COUNT(*) FROM t").scalar() == 1


def test_load_from_bytes_file(sqlite_engine, tmp_path):
    """Test a SQL file opened in binary mode can be loaded."""
    sql_file = tmp_path / "schema.sql"
    sql_file.write_text("CREATE TABLE t (a INT);\nINSERT INTO t VALUES (1);\n")

    with sql_file.open("rb") as f:
        assert load(sqlite_engine, f) == 2
