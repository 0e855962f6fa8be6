from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Tuple

from dotenv import load_dotenv

LOG = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000

# ============================== Config model ===============================

@dataclass(frozen=True)
class ReplicationTarget:
    schema: str
    name: str

    @property
    def qualified(self) -> str:
        return f"{self.schema}.{self.name}"


@dataclass(frozen=True)
class Db2Settings:
    host: str | None
    port: int
    database: str | None
    user: str | None
    password: str | None = field(repr=False)
    ssl_truststore: str | None = None
    ssl_password: str | None = field(default=None, repr=False)
    connection_string: str | None = field(default=None, repr=False)     # full override, may carry PWD=


@dataclass(frozen=True)
class PostgresSettings:
    host: str | None
    port: int
    user: str | None
    password: str | None = field(repr=False)
    database: str | None


@dataclass(frozen=True)
class ReplicationConfig:
    db2: Db2Settings
    postgres: PostgresSettings
    tables: Tuple[ReplicationTarget, ...] = ()
    views: Tuple[ReplicationTarget, ...] = ()
    chunk_size: int = DEFAULT_CHUNK_SIZE
    reset: bool = False
    validate: bool = True
    discord_webhook: str | None = field(default=None, repr=False)

    @property
    def schemas(self) -> List[str]:
        """Schemas referenced by tables and views, de-duplicated in first-seen order."""
        return list(dict.fromkeys(t.schema for t in (*self.tables, *self.views)))

# ============================== Parsing helpers ===============================

def parse_target_list(raw: str | None, env_var: str = "") -> Tuple[ReplicationTarget, ...]:
    """
    Parse a comma-separated 'schema.name' list.
    Malformed entries are dropped with a warning instead of failing startup.
    """
    targets: List[ReplicationTarget] = []
    for entry in (raw or "").split(","):
        entry = entry.strip()
        if not entry:
            continue
        parts = [p.strip() for p in entry.split(".")]
        if len(parts) != 2 or not all(parts):
            LOG.warning("Invalid format for %s: %r (expected schema.name); ignoring", env_var or "target list", entry)
            continue
        targets.append(ReplicationTarget(schema=parts[0], name=parts[1]))
    return tuple(targets)


def _int_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        LOG.warning("%s=%r is not an integer; using %d", key, raw, default)
        return default


def _chunk_size(env: Mapping[str, str]) -> int:
    size = _int_env(env, "CHUNK_SIZE", DEFAULT_CHUNK_SIZE)
    if size <= 0:
        LOG.warning("CHUNK_SIZE=%d is not positive; using %d", size, DEFAULT_CHUNK_SIZE)
        return DEFAULT_CHUNK_SIZE
    return size


def _opt(env: Mapping[str, str], key: str) -> str | None:
    return (env.get(key) or "").strip() or None


def load_config(environ: Mapping[str, str] | None = None) -> ReplicationConfig:
    """Build the run configuration from the process environment (and a .env file, if any)."""
    if environ is None:
        load_dotenv()
        environ = os.environ
    env = environ

    cfg = ReplicationConfig(
        db2=Db2Settings(
            host=_opt(env, "DB2_HOST"),
            port=_int_env(env, "DB2_PORT", 50000),
            database=_opt(env, "DB2_DB"),
            user=_opt(env, "DB2_USER"),
            password=env.get("DB2_PASSWORD"),
            ssl_truststore=_opt(env, "DB2_SSL_TRUSTSTORE"),
            ssl_password=env.get("DB2_SSL_PASSWORD") or None,
            connection_string=_opt(env, "DB2_CONNECTION_STRING"),
        ),
        postgres=PostgresSettings(
            host=_opt(env, "POSTGRES_HOST"),
            port=_int_env(env, "POSTGRES_PORT", 5432),
            user=_opt(env, "POSTGRES_USER"),
            password=env.get("POSTGRES_PASSWORD"),
            database=_opt(env, "POSTGRES_DB"),
        ),
        tables=parse_target_list(env.get("REPLICATED_TABLES"), "REPLICATED_TABLES"),
        views=parse_target_list(env.get("REPLICATED_VIEWS"), "REPLICATED_VIEWS"),
        chunk_size=_chunk_size(env),
        reset=(env.get("RESET") or "").strip().lower() == "true",
        validate=(env.get("VALIDATE") or "true").strip().lower() != "false",
        discord_webhook=_opt(env, "DISCORD_WEBHOOK"),
    )
    LOG.info("🔍 Loaded replication tables: %s", [t.qualified for t in cfg.tables])
    LOG.info("🔍 Loaded replication views: %s", [v.qualified for v in cfg.views])
    LOG.info("🔍 RESET = %s, CHUNK_SIZE = %d", cfg.reset, cfg.chunk_size)
    return cfg
