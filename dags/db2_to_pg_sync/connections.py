from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

import psycopg2
import psycopg2.extensions

from db2_to_pg_sync.ReplicationConfig import Db2Settings, PostgresSettings

LOG = logging.getLogger(__name__)

# ============================== Connection strings ===============================

def db2_connection_string(settings: Db2Settings) -> str:
    """
    Build the Db2 CLI connection string.
    - An explicit connection_string wins and is used verbatim.
    - SSL is always requested; a .kdb trust store is passed as a key database,
      anything else as the server certificate file.
    """
    if settings.connection_string:
        return settings.connection_string

    missing = [k for k in ("host", "database", "user") if not getattr(settings, k)]
    if missing:
        raise ConnectionError(f"Invalid Db2 connection settings: missing {', '.join(missing)}")

    parts = [
        f"DATABASE={settings.database}",
        f"HOSTNAME={settings.host}",
        f"PORT={settings.port}",
        "PROTOCOL=TCPIP",
        f"UID={settings.user}",
        f"PWD={settings.password or ''}",
        "SECURITY=SSL",
    ]
    trust = settings.ssl_truststore
    if trust:
        if trust.lower().endswith(".kdb"):
            parts.append(f"SSLClientKeystoredb={trust}")
            if settings.ssl_password:
                parts.append(f"SSLClientKeystoreDBPassword={settings.ssl_password}")
        else:
            parts.append(f"SSLServerCertificate={trust}")
    return ";".join(parts) + ";"

# ============================== Scoped connections ===============================

@contextmanager
def db2_conn(settings: Db2Settings) -> Iterator[Any]:
    # native driver, imported on first connect
    import ibm_db_dbi

    conn_str = db2_connection_string(settings)
    LOG.info("🔌 Connecting to Db2 at %s:%s/%s", settings.host, settings.port, settings.database)
    try:
        conn = ibm_db_dbi.connect(conn_str, "", "")
    except Exception as e:
        LOG.error("❌ Db2 connection error: %s", e)
        raise ConnectionError(f"Failed to connect to Db2: {e}") from e
    LOG.info("✅ Connected to Db2")
    try:
        yield conn
    finally:
        try:
            conn.close()
            LOG.info("Db2 connection closed")
        except Exception:
            LOG.debug("Could not close Db2 connection cleanly", exc_info=True)


@contextmanager
def pg_conn(settings: PostgresSettings) -> Iterator[psycopg2.extensions.connection]:
    LOG.info("🔌 Connecting to PostgreSQL at %s:%s/%s", settings.host, settings.port, settings.database)
    try:
        conn = psycopg2.connect(
            host=settings.host,
            port=settings.port,
            user=settings.user,
            password=settings.password,
            dbname=settings.database,
        )
    except psycopg2.Error as e:
        LOG.error("❌ PostgreSQL connection error: %s", e)
        raise ConnectionError(f"Failed to connect to PostgreSQL: {e}") from e
    LOG.info("✅ Connected to PostgreSQL")
    try:
        yield conn
    finally:
        if not conn.closed:
            conn.close()
            LOG.info("PostgreSQL connection closed")
