from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Sequence

LOG = logging.getLogger(__name__)

GENERIC_TEXT_TYPE = "TEXT"
DECIMAL_SCALE = 2

# ============================== Db2 -> PostgreSQL type map ===============================

_TYPE_MAP = {
    "INTEGER": "INTEGER",
    "SMALLINT": "SMALLINT",
    "BIGINT": "BIGINT",
    "DECIMAL": "DECIMAL({length},%d)" % DECIMAL_SCALE,
    "DECFLOAT": "NUMERIC",
    "DOUBLE": "DOUBLE PRECISION",
    "FLOAT": "DOUBLE PRECISION",
    "REAL": "REAL",
    "BOOLEAN": "BOOLEAN",
    "CHAR": "TEXT",
    "VARCHAR": "TEXT",
    "LONG VARCHAR": "TEXT",
    "CLOB": "TEXT",
    "GRAPHIC": "TEXT",
    "VARGRAPHIC": "TEXT",
    "DBCLOB": "TEXT",
    "BLOB": "BYTEA",
    "DATE": "DATE",
    "TIME": "TIME",
    "TIMESTAMP": "TIMESTAMP",
}

_TEXT_MARKERS = ("TEXT", "CHAR")
_TEMPORAL_MARKERS = ("TIMESTAMP", "DATE", "TIME")
_NUMERIC_MARKERS = ("INTEGER", "SMALLINT", "BIGINT", "DECIMAL", "NUMERIC", "DOUBLE", "REAL")


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    source_type: str
    length: int
    destination_type: str


def translate_type(source_type: str | None, length: int | None) -> str:
    """Map a Db2 catalog TYPENAME (plus LENGTH) to a PostgreSQL column type."""
    key = (source_type or "").strip().upper()
    template = _TYPE_MAP.get(key)
    if template is None:
        if LOG.isEnabledFor(logging.DEBUG):
            LOG.debug("Unmapped Db2 type %r -> %s", source_type, GENERIC_TEXT_TYPE)
        return GENERIC_TEXT_TYPE
    return template.format(length=length)


def describe_column(name: str, source_type: str, length: int | None) -> ColumnDescriptor:
    return ColumnDescriptor(
        name=name.strip(),
        source_type=(source_type or "").strip(),
        length=int(length or 0),
        destination_type=translate_type(source_type, length),
    )


def format_value(value: Any, destination_type: str) -> str:
    """
    Render a value as a PostgreSQL literal for diagnostic SQL.
    - NULL for None and empty strings.
    - Text types are trimmed and quote-doubled.
    - Temporal types are quoted as-is, numeric types are left bare.
    Not an escaping routine: the insert path binds parameters instead.
    """
    if value is None or value == "":
        return "NULL"
    t = (destination_type or "").upper()
    if any(m in t for m in _TEXT_MARKERS):
        return "'" + str(value).strip().replace("'", "''") + "'"
    if any(m in t for m in _TEMPORAL_MARKERS):
        return f"'{value}'"
    if any(m in t for m in _NUMERIC_MARKERS):
        return str(value)
    return f"'{value}'"


def chunk(sequence: Sequence[Any], size: int) -> List[List[Any]]:
    if not isinstance(size, int) or isinstance(size, bool) or size <= 0:
        raise ValueError(f"chunk size must be a positive integer, got {size!r}")
    return [list(sequence[i:i + size]) for i in range(0, len(sequence), size)]
