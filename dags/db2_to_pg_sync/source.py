from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Mapping, TypeVar

from db2_to_pg_sync.type_map import ColumnDescriptor, describe_column

LOG = logging.getLogger(__name__)

T = TypeVar("T")

# Cross-schema references that Db2 stores unquoted in view text.
QUALIFIED_REFERENCES: Dict[str, str] = {
    "EDM_COMP.LOCN_COMPANY_XREF": '"EDM_COMP"."LOCN_COMPANY_XREF"',
}

_AS_KEYWORD = re.compile(r"\bAS\b", re.IGNORECASE)

# ============================== Soft-failure result ===============================

@dataclass(frozen=True)
class Fetched(Generic[T]):
    """
    Result of a source read.
    A failed read still carries a usable degraded value ([] / 0 / ""), so callers
    can treat it like an empty result while tests can tell the two apart.
    """
    value: T
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def ok(cls, value: T) -> "Fetched[T]":
        return cls(value=value)

    @classmethod
    def soft_failure(cls, default: T, error: BaseException | str) -> "Fetched[T]":
        return cls(value=default, error=str(error) or type(error).__name__)

# ============================== Helpers ===============================

def _qi(ident: str) -> str:
    return '"' + ident.replace('"', '""') + '"'


def _fq_table(schema: str, table: str) -> str:
    return f"{_qi(schema.upper())}.{_qi(table.upper())}"


def _rows_as_dicts(cursor) -> List[Dict[str, Any]]:
    names = [d[0] for d in (cursor.description or [])]
    return [dict(zip(names, row)) for row in cursor.fetchall()]


def extract_select(view_text: str, references: Mapping[str, str] = QUALIFIED_REFERENCES) -> str:
    """
    Return the SELECT body of a Db2 'CREATE VIEW ... AS ...' text,
    with known cross-schema references quoted. Empty if there is no AS keyword.
    """
    m = _AS_KEYWORD.search(view_text or "")
    if not m:
        return ""
    body = view_text[m.end():].strip()
    for raw, quoted in references.items():
        body = body.replace(raw, quoted)
    return body

# ============================== Db2 source ===============================

class Db2Source:
    """Read-only access to a Db2 database through one DB-API connection."""

    def __init__(self, conn, references: Mapping[str, str] | None = None,
                 logger: logging.Logger | None = None):
        self.conn = conn
        self.references = dict(QUALIFIED_REFERENCES if references is None else references)
        self.log = logger or LOG

    def _query(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("Db2 query: %s params=%s", sql, params)
        cur = self.conn.cursor()
        try:
            if params:
                cur.execute(sql, params)
            else:
                cur.execute(sql)
            return _rows_as_dicts(cur)
        finally:
            cur.close()

    def _soft_fail(self, what: str, default: T, error: Exception) -> Fetched[T]:
        self.log.warning("⚠️ Failed to %s: %s", what, error)
        try:
            self.conn.rollback()
        except Exception:
            self.log.debug("Rollback after failed Db2 read did not succeed", exc_info=True)
        return Fetched.soft_failure(default, error)

    # ------------------------ Catalog ------------------------

    def get_columns(self, schema: str, table: str) -> Fetched[List[ColumnDescriptor]]:
        try:
            rows = self._query(
                """
                SELECT COLNAME, TYPENAME, LENGTH
                FROM SYSCAT.COLUMNS
                WHERE TABSCHEMA = ? AND TABNAME = ?
                ORDER BY COLNO
                """,
                (schema.upper(), table.upper()),
            )
        except Exception as e:
            return self._soft_fail(f"fetch column metadata for {schema}.{table}", [], e)
        cols = [describe_column(r["COLNAME"], r["TYPENAME"], r["LENGTH"]) for r in rows]
        self.log.info("Columns for %s.%s: %s", schema, table, [c.name for c in cols])
        return Fetched.ok(cols)

    def get_primary_keys(self, schema: str, table: str) -> Fetched[List[str]]:
        try:
            rows = self._query(
                """
                SELECT COLNAME
                FROM SYSCAT.KEYCOLUSE
                WHERE TABSCHEMA = ? AND TABNAME = ?
                ORDER BY COLSEQ
                """,
                (schema.upper(), table.upper()),
            )
        except Exception as e:
            return self._soft_fail(f"fetch primary keys for {schema}.{table}", [], e)
        keys = [r["COLNAME"].strip() for r in rows]
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("Primary key for %s.%s: %s", schema, table, keys)
        return Fetched.ok(keys)

    def get_row_count(self, schema: str, table: str) -> Fetched[int]:
        t0 = time.perf_counter()
        try:
            rows = self._query(f"SELECT COUNT(*) AS CNT FROM {_fq_table(schema, table)}")
        except Exception as e:
            return self._soft_fail(f"count rows in {schema}.{table}", 0, e)
        cnt = int(rows[0]["CNT"] or 0) if rows else 0
        self.log.info("Db2 row count for %s.%s: %d (%.3fs)", schema, table, cnt, time.perf_counter() - t0)
        return Fetched.ok(cnt)

    # ------------------------ Data ------------------------

    def build_chunk_sql(self, schema: str, table: str, primary_keys: List[str],
                        chunk_size: int, offset: int) -> str:
        order_by = ""
        if primary_keys:
            order_by = " ORDER BY " + ", ".join(f"{_qi(k)} ASC" for k in primary_keys)
        return (
            f"SELECT * FROM {_fq_table(schema, table)}{order_by} "
            f"OFFSET {int(offset)} ROWS FETCH FIRST {int(chunk_size)} ROWS ONLY"
        )

    def fetch_chunk(self, schema: str, table: str, chunk_size: int, offset: int) -> Fetched[List[Dict[str, Any]]]:
        """
        Fetch one page of rows ordered by the table's primary key.
        The key is looked up again on every page; without one, page order is
        whatever Db2 returns and is not guaranteed stable between pages.
        """
        keys = self.get_primary_keys(schema, table).value
        sql = self.build_chunk_sql(schema, table, keys, chunk_size, offset)
        try:
            rows = self._query(sql)
        except Exception as e:
            self.log.error("❌ Query: %s", sql)
            return self._soft_fail(f"fetch chunk for {schema}.{table} at offset {offset}", [], e)
        return Fetched.ok(rows)

    def get_view_definition(self, schema: str, view: str) -> Fetched[str]:
        try:
            rows = self._query(
                "SELECT TEXT FROM SYSCAT.VIEWS WHERE VIEWSCHEMA = ? AND VIEWNAME = ?",
                (schema.upper(), view.upper()),
            )
        except Exception as e:
            return self._soft_fail(f"get view definition for {schema}.{view}", "", e)
        if not rows or not rows[0].get("TEXT"):
            self.log.warning("No catalog text for view %s.%s", schema, view)
            return Fetched.ok("")
        return Fetched.ok(extract_select(rows[0]["TEXT"], self.references))
