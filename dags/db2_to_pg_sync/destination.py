from __future__ import annotations

import logging
import re
import time
from typing import Any, Mapping, Sequence, Tuple

import psycopg2
import psycopg2.extras as extras

from db2_to_pg_sync.type_map import ColumnDescriptor, chunk, format_value

LOG = logging.getLogger(__name__)

INSERT_BATCH_SIZE = 1000

_ISOLATION_CLAUSE = re.compile(r"\bWITH\s+UR\b", re.IGNORECASE)

# ============================== Helpers (module-level; stateless) ===============================

def _qi(ident: str) -> str:
    return '"' + ident.replace('"', '""') + '"'


def _fq_table(schema: str, table: str) -> str:
    return f"{_qi(schema)}.{_qi(table)}"


def build_create_table_sql(schema: str, table: str, columns: Sequence[ColumnDescriptor]) -> str:
    col_defs = ", ".join(f"{_qi(c.name)} {c.destination_type}" for c in columns)
    return f"CREATE TABLE IF NOT EXISTS {_fq_table(schema, table)} ({col_defs})"


def build_insert_sql(schema: str, table: str, columns: Sequence[ColumnDescriptor]) -> str:
    """INSERT with a single VALUES %s slot for execute_values; literal % in identifiers is doubled."""
    col_list = ", ".join(_qi(c.name) for c in columns)
    prefix = f"INSERT INTO {_fq_table(schema, table)} ({col_list})".replace("%", "%%")
    return f"{prefix} VALUES %s"


def build_view_sql(schema: str, view: str, definition: str) -> str:
    """Wrap Db2 SELECT text in a PostgreSQL CREATE OR REPLACE VIEW, minus the WITH UR hint."""
    body = _ISOLATION_CLAUSE.sub("", definition, count=1).strip()
    return f"CREATE OR REPLACE VIEW {_fq_table(schema, view)} AS {body}"


def _row_params(row: Mapping[str, Any], columns: Sequence[ColumnDescriptor]) -> Tuple[Any, ...]:
    return tuple(row[c.name] for c in columns if c.name in row)


def _literal_row(row: Mapping[str, Any], columns: Sequence[ColumnDescriptor]) -> str:
    return "(" + ", ".join(format_value(row.get(c.name), c.destination_type) for c in columns) + ")"

# ============================== PostgreSQL destination ===============================

class PostgresDestination:
    """Provisioning and writes against the destination PostgreSQL connection."""

    def __init__(self, conn, logger: logging.Logger | None = None):
        self.conn = conn
        self.log = logger or LOG

    def _execute(self, sql: str, params: Sequence[Any] | None = None) -> int:
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("PostgreSQL statement: %s", sql)
        with self.conn.cursor() as c:
            c.execute(sql, params)
            affected = c.rowcount
        self.conn.commit()
        return affected

    def _fail(self, what: str, sql: str, error: Exception) -> None:
        self.log.error("❌ Failed to %s: %s", what, error)
        self.log.error("❗ Failing Query:\n%s", sql)
        self.conn.rollback()

    def ping(self) -> None:
        with self.conn.cursor() as c:
            c.execute("SELECT 1")
            c.fetchone()
        self.conn.rollback()

    # ------------------------ Provisioning ------------------------

    def drop_schema(self, schema: str) -> None:
        sql = f"DROP SCHEMA IF EXISTS {_qi(schema)} CASCADE"
        try:
            self._execute(sql)
        except psycopg2.Error as e:
            self._fail(f"drop schema {schema}", sql, e)
            raise
        self.log.info("🔥 Schema dropped: %s", schema)

    def ensure_schema_exists(self, schema: str) -> None:
        sql = f"CREATE SCHEMA IF NOT EXISTS {_qi(schema)}"
        try:
            self._execute(sql)
        except psycopg2.Error as e:
            self._fail(f"ensure schema {schema}", sql, e)
            raise
        self.log.info("✅ Schema ensured: %s", schema)

    def ensure_table_exists(self, schema: str, table: str, columns: Sequence[ColumnDescriptor],
                            primary_keys: Sequence[str]) -> None:
        """
        Create the table from the translated columns if it is missing.
        No PRIMARY KEY or UNIQUE constraint is declared, even when the source
        has a key; the table is truncated and reloaded as a whole.
        """
        sql = build_create_table_sql(schema, table, columns)
        try:
            self._execute(sql)
        except psycopg2.Error as e:
            self._fail(f"ensure table {schema}.{table}", sql, e)
            raise
        self.log.info("✅ Table ensured: %s.%s (source key: %s)", schema, table, list(primary_keys) or "none")

    def create_view(self, schema: str, view: str, definition: str) -> None:
        sql = build_view_sql(schema, view, definition)
        self.log.debug("Composed view SQL:\n%s", sql)
        try:
            self._execute(sql)
        except psycopg2.Error as e:
            self._fail(f"create view {schema}.{view}", sql, e)
            raise
        self.log.info("✅ View created: %s.%s", schema, view)

    # ------------------------ Data ------------------------

    def get_row_count(self, schema: str, table: str) -> int:
        """Exact row count, or -1 when the count itself failed."""
        sql = f"SELECT COUNT(*) FROM {_fq_table(schema, table)}"
        try:
            with self.conn.cursor() as c:
                c.execute(sql)
                cnt = int(c.fetchone()[0])
            self.conn.commit()
        except psycopg2.Error as e:
            self.log.error("❌ Failed to get row count for %s.%s: %s", schema, table, e)
            self.conn.rollback()
            return -1
        self.log.info("PostgreSQL row count for %s.%s: %d", schema, table, cnt)
        return cnt

    def truncate_table(self, schema: str, table: str) -> None:
        sql = f"TRUNCATE TABLE {_fq_table(schema, table)}"
        try:
            self._execute(sql)
        except psycopg2.Error as e:
            self._fail(f"truncate table {schema}.{table}", sql, e)
            raise
        self.log.info("✅ Table truncated: %s.%s", schema, table)

    def insert_batch(self, schema: str, table: str, columns: Sequence[ColumnDescriptor],
                     rows: Sequence[Mapping[str, Any]]) -> int:
        """
        Insert rows with execute_values, one statement per INSERT_BATCH_SIZE rows.
        Returns the number of rows PostgreSQL reports as inserted.
        """
        if not rows:
            self.log.warning("⚠️ Skipping empty chunk for %s.%s", schema, table)
            return 0

        sql = build_insert_sql(schema, table, columns)
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("Generated INSERT SQL: %s", sql)

        total_inserted = 0
        for batch in chunk(list(rows), INSERT_BATCH_SIZE):
            page = [_row_params(row, columns) for row in batch]

            expected = len(columns) * len(batch)
            got = sum(len(values) for values in page)
            if got != expected:
                self.log.error(
                    "❌ Error inserting data into %s.%s: values length %d does not match expected %d; skipping batch",
                    schema, table, got, expected,
                )
                self.log.error("❗ Failing Query:\n%s", sql)
                continue

            t_batch = time.perf_counter()
            try:
                with self.conn.cursor() as c:
                    extras.execute_values(c, sql, page, page_size=INSERT_BATCH_SIZE)
                    inserted = c.rowcount
                self.conn.commit()
            except psycopg2.Error as e:
                self._fail(f"insert batch into {schema}.{table}", sql, e)
                self.log.error("❗ First row of failing batch: %s", _literal_row(batch[0], columns))
                raise
            total_inserted += inserted
            if self.log.isEnabledFor(logging.DEBUG):
                self.log.debug("Inserted %d rows into %s.%s (%.3fs)", len(batch), schema, table, time.perf_counter() - t_batch)
        return total_inserted
