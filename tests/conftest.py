"""
In-memory stand-ins for the two database connections and for the accessors
built on top of them, so the pipeline can be exercised without Db2 or PostgreSQL.
"""
import re
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Tuple

import psycopg2
import pytest

from db2_to_pg_sync.ReplicationConfig import (
    Db2Settings,
    PostgresSettings,
    ReplicationConfig,
    ReplicationTarget,
)
from db2_to_pg_sync.reporting import ProgressReporter
from db2_to_pg_sync.source import Fetched
from db2_to_pg_sync.type_map import describe_column


# =============================================================================
# DB-API fakes
# =============================================================================

class FakeDb2Cursor:
    def __init__(self, conn):
        self.conn = conn
        self.description = None
        self._rows: List[Tuple] = []

    def execute(self, sql, params=None):
        self.conn.executed.append((sql, params))
        for pattern, handler in self.conn.handlers:
            if pattern in sql:
                result = handler(sql, params)
                if isinstance(result, Exception):
                    raise result
                names, rows = result
                self.description = [(n, None, None, None, None, None, None) for n in names]
                self._rows = list(rows)
                return
        raise AssertionError(f"unexpected Db2 query: {sql}")

    def fetchall(self):
        return self._rows

    def close(self):
        pass


class FakeDb2Connection:
    """Db2 connection whose queries are answered by (substring, handler) pairs."""

    def __init__(self, handlers: List[Tuple[str, Callable]] = ()):
        self.handlers = list(handlers)
        self.executed: List[Tuple[str, Any]] = []
        self.rollbacks = 0
        self.closed = False

    def cursor(self):
        return FakeDb2Cursor(self)

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True


class FakePgCursor:
    """Enough of a psycopg2 cursor for plain execute() and extras.execute_values()."""

    def __init__(self, conn):
        self.conn = conn
        self.connection = conn
        self.rowcount = -1
        self._one = None
        self._mogrified: List[Tuple] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def mogrify(self, template, args):
        self._mogrified.append(tuple(args))
        return b"(" + b",".join(repr(a).encode() for a in args) + b")"

    def execute(self, sql, params=None):
        if isinstance(sql, bytes):
            sql = sql.decode()
        self.conn.executed.append((sql, params))
        for pattern in self.conn.fail_on:
            if pattern in sql:
                raise psycopg2.Error(f"boom on {pattern}")
        if sql.startswith("SELECT COUNT(*)"):
            table = re.search(r'FROM (".*")', sql).group(1)
            self._one = (self.conn.counts.get(table, 0),)
        elif sql == "SELECT 1":
            self._one = (1,)
        elif sql.startswith("INSERT INTO"):
            self.rowcount = len(self._mogrified)
            self.conn.inserted_params.append([v for row in self._mogrified for v in row])
            self._mogrified = []
        else:
            self.rowcount = 0

    def fetchone(self):
        return self._one


class FakePgConnection:
    encoding = "UTF8"

    def __init__(self, counts: Dict[str, int] = None, fail_on: List[str] = ()):
        self.counts = dict(counts or {})
        self.fail_on = list(fail_on)
        self.executed: List[Tuple[str, Any]] = []
        self.inserted_params: List[List[Any]] = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = 0

    def cursor(self):
        return FakePgCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = 1

    def statements(self, prefix: str = "") -> List[str]:
        return [sql for sql, _ in self.executed if sql.startswith(prefix)]


# =============================================================================
# Accessor-level fakes for the engine
# =============================================================================

class FakeSource:
    """Db2Source double backed by dicts; rows are served in primary-key order."""

    def __init__(self, tables: Dict[Tuple[str, str], Dict[str, Any]] = None,
                 views: Dict[Tuple[str, str], str] = None):
        self.tables = tables or {}
        self.views = views or {}
        self.fail = set()          # {"columns", "count", "chunk", ...}
        self.calls: List[Tuple] = []

    def _table(self, schema, table):
        return self.tables.get((schema.upper(), table.upper()))

    def get_columns(self, schema, table):
        self.calls.append(("get_columns", schema, table))
        if "columns" in self.fail:
            return Fetched.soft_failure([], "catalog unavailable")
        t = self._table(schema, table)
        if not t:
            return Fetched.ok([])
        return Fetched.ok([describe_column(n, ty, ln) for n, ty, ln in t["columns"]])

    def get_primary_keys(self, schema, table):
        self.calls.append(("get_primary_keys", schema, table))
        t = self._table(schema, table)
        return Fetched.ok(list(t.get("keys", [])) if t else [])

    def get_row_count(self, schema, table):
        self.calls.append(("get_row_count", schema, table))
        if "count" in self.fail:
            return Fetched.soft_failure(0, "count failed")
        t = self._table(schema, table)
        return Fetched.ok(len(t["rows"]) if t else 0)

    def fetch_chunk(self, schema, table, chunk_size, offset):
        self.calls.append(("fetch_chunk", schema, table, chunk_size, offset))
        if "chunk" in self.fail:
            return Fetched.soft_failure([], "page failed")
        t = self._table(schema, table)
        return Fetched.ok([dict(r) for r in t["rows"][offset:offset + chunk_size]])

    def get_view_definition(self, schema, view):
        self.calls.append(("get_view_definition", schema, view))
        return Fetched.ok(self.views.get((schema.upper(), view.upper()), ""))

    def count_calls(self, name):
        return sum(1 for c in self.calls if c[0] == name)


class FakeDestination:
    """PostgresDestination double that records every call in order."""

    def __init__(self, counts: Dict[Tuple[str, str], int] = None):
        self.counts = dict(counts or {})
        self.rows: Dict[Tuple[str, str], List[Dict[str, Any]]] = {}
        self.calls: List[Tuple] = []
        self.raise_on: Dict[str, Exception] = {}

    def _maybe_raise(self, name):
        if name in self.raise_on:
            raise self.raise_on[name]

    def ping(self):
        self.calls.append(("ping",))
        self._maybe_raise("ping")

    def drop_schema(self, schema):
        self.calls.append(("drop_schema", schema))
        self._maybe_raise("drop_schema")
        for key in [k for k in self.rows if k[0] == schema]:
            del self.rows[key]
            self.counts.pop(key, None)

    def ensure_schema_exists(self, schema):
        self.calls.append(("ensure_schema_exists", schema))
        self._maybe_raise("ensure_schema_exists")

    def ensure_table_exists(self, schema, table, columns, primary_keys):
        self.calls.append(("ensure_table_exists", schema, table, tuple(c.name for c in columns)))
        self._maybe_raise("ensure_table_exists")
        self.rows.setdefault((schema, table), [])

    def get_row_count(self, schema, table):
        self.calls.append(("get_row_count", schema, table))
        if (schema, table) in self.counts:
            return self.counts[(schema, table)]
        return len(self.rows.get((schema, table), []))

    def truncate_table(self, schema, table):
        self.calls.append(("truncate_table", schema, table))
        self._maybe_raise("truncate_table")
        self.rows[(schema, table)] = []
        self.counts.pop((schema, table), None)

    def insert_batch(self, schema, table, columns, rows):
        self.calls.append(("insert_batch", schema, table, len(rows)))
        self._maybe_raise("insert_batch")
        self.rows.setdefault((schema, table), []).extend(rows)
        return len(rows)

    def create_view(self, schema, view, definition):
        self.calls.append(("create_view", schema, view, definition))
        self._maybe_raise("create_view")

    def count_calls(self, name):
        return sum(1 for c in self.calls if c[0] == name)

    def index_of(self, call):
        return self.calls.index(call)


class RecordingReporter(ProgressReporter):
    def __init__(self):
        self.events: List[Tuple] = []

    def target_skipped(self, target, reason):
        self.events.append(("skipped", target.qualified, reason))

    def chunk_progress(self, target, copied, total):
        self.events.append(("progress", target.qualified, copied, total))

    def soft_failure(self, target, what, error):
        self.events.append(("soft_failure", target.qualified, what))

    def validation_mismatch(self, target, source_rows, destination_rows):
        self.events.append(("mismatch", target.qualified, source_rows, destination_rows))

    def target_failed(self, target, error):
        self.events.append(("failed", target.qualified, str(error)))

    def view_created(self, target):
        self.events.append(("view_created", target.qualified))

    def run_aborted(self, error):
        self.events.append(("aborted", str(error)))

    def of(self, kind):
        return [e for e in self.events if e[0] == kind]


# =============================================================================
# Fixtures
# =============================================================================

def make_config(tables=(), views=(), **overrides) -> ReplicationConfig:
    def targets(items):
        return tuple(ReplicationTarget(*item.split(".")) for item in items)

    return ReplicationConfig(
        db2=Db2Settings(host="db2.example", port=50000, database="SAMPLE", user="db2inst1", password="pw"),
        postgres=PostgresSettings(host="pg.example", port=5432, user="postgres", password="pw", database="mirror"),
        tables=targets(tables),
        views=targets(views),
        **overrides,
    )


def people_rows(n: int) -> List[Dict[str, Any]]:
    return [{"ID": i, "NAME": f"person {i}"} for i in range(1, n + 1)]


PEOPLE_COLUMNS = [("ID", "INTEGER", 4), ("NAME", "VARCHAR", 40)]


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def fake_db2_factory():
    """Connection factory yielding a FakeDb2Connection, mirroring connections.db2_conn."""
    conns: List[FakeDb2Connection] = []

    @contextmanager
    def factory(settings):
        conn = FakeDb2Connection()
        conns.append(conn)
        try:
            yield conn
        finally:
            conn.close()

    factory.conns = conns
    return factory
