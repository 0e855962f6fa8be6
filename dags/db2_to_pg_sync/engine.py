from __future__ import annotations

import json
import logging
import time
from contextlib import ExitStack
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, ContextManager, Dict, List, Mapping, Sequence

import pendulum

from db2_to_pg_sync.ReplicationConfig import ReplicationConfig, ReplicationTarget
from db2_to_pg_sync.connections import db2_conn, pg_conn
from db2_to_pg_sync.destination import PostgresDestination
from db2_to_pg_sync.reporting import LoggingReporter, ProgressReporter
from db2_to_pg_sync.source import Db2Source, Fetched
from db2_to_pg_sync.type_map import ColumnDescriptor

LOG = logging.getLogger(__name__)

# ============================== Helpers ===============================

def _json_sanitize(value: Any) -> Any:
    """Round-trip through JSON so only primitives remain (safe for Airflow XCom)."""
    return json.loads(json.dumps(value, default=str))

# ============================== Outcomes ===============================

@dataclass
class TargetOutcome:
    target: ReplicationTarget
    kind: str                          # "table" | "view"
    status: str = "failed"             # table: copied | in_sync | no_columns | failed; view: created | failed
    rows: int = 0                      # rows fetched from Db2
    inserted: int = 0                  # rows PostgreSQL reported as inserted
    validated: bool | None = None
    error: str | None = None


@dataclass
class RunResult:
    started_at: pendulum.DateTime = field(default_factory=lambda: pendulum.now("UTC"))
    status: str = "running"            # running | completed | aborted
    tables: List[TargetOutcome] = field(default_factory=list)
    views: List[TargetOutcome] = field(default_factory=list)
    elapsed: float = 0.0
    error: str | None = None

    def count(self, status: str, views: bool = False) -> int:
        return sum(1 for o in (self.views if views else self.tables) if o.status == status)

    @property
    def failures(self) -> List[TargetOutcome]:
        return [o for o in (*self.tables, *self.views) if o.status == "failed"]

    def as_dict(self) -> Dict[str, Any]:
        return _json_sanitize(asdict(self))

# ============================== Engine ===============================

ConnectionFactory = Callable[[Any], ContextManager[Any]]


class ReplicationEngine:
    """
    Drives one replication run:
    connect -> (reset) -> provision schemas -> tables -> views -> finish.
    Tables and views are processed one at a time in configured order; a failing
    target is recorded and the run moves on to the next one.
    """

    def __init__(
        self,
        cfg: ReplicationConfig,
        reporter: ProgressReporter | None = None,
        logger: logging.Logger | None = None,
        source_factory: ConnectionFactory = db2_conn,
        destination_factory: ConnectionFactory = pg_conn,
        references: Mapping[str, str] | None = None,
    ):
        self.cfg = cfg
        self.reporter = reporter or LoggingReporter()
        self.log = logger or LOG
        self.source_factory = source_factory
        self.destination_factory = destination_factory
        self.references = references

    # ------------------------ Entry point ------------------------

    def run(self) -> RunResult:
        """Open both connections for the duration of the run and replicate everything configured."""
        with ExitStack() as stack:
            try:
                src = stack.enter_context(self.source_factory(self.cfg.db2))
                dst = stack.enter_context(self.destination_factory(self.cfg.postgres))
            except Exception as e:
                self.reporter.run_aborted(e)
                raise
            return self.replicate(
                Db2Source(src, references=self.references),
                PostgresDestination(dst),
            )

    def replicate(self, source: Db2Source, destination: PostgresDestination) -> RunResult:
        cfg = self.cfg
        result = RunResult()
        t0 = time.perf_counter()
        self.reporter.run_started(len(cfg.tables), len(cfg.views), cfg.reset)

        try:
            destination.ping()
            schemas = cfg.schemas
            if cfg.reset:
                for schema in schemas:
                    destination.drop_schema(schema)
                    self.reporter.schema_dropped(schema)
            for schema in schemas:
                destination.ensure_schema_exists(schema)
        except Exception as e:
            result.status = "aborted"
            result.error = str(e)
            result.elapsed = round(time.perf_counter() - t0, 3)
            self.reporter.run_aborted(e)
            raise

        for target in cfg.tables:
            result.tables.append(self.replicate_table(source, destination, target))
        for target in cfg.views:
            result.views.append(self.replicate_view(source, destination, target))

        result.status = "completed"
        result.elapsed = round(time.perf_counter() - t0, 3)
        self.reporter.run_finished(result)
        return result

    # ------------------------ Tables ------------------------

    def _unwrap(self, target: ReplicationTarget, what: str, fetched: Fetched) -> Any:
        if fetched.failed:
            self.reporter.soft_failure(target, what, fetched.error)
        return fetched.value

    def replicate_table(self, source: Db2Source, destination: PostgresDestination,
                        target: ReplicationTarget) -> TargetOutcome:
        cfg = self.cfg
        schema, table = target.schema, target.name
        outcome = TargetOutcome(target=target, kind="table")
        self.reporter.target_started("table", target)

        try:
            columns = self._unwrap(target, "column lookup", source.get_columns(schema, table))
            if not columns:
                outcome.status = "no_columns"
                self.reporter.target_skipped(target, "no columns found")
                return outcome

            keys = self._unwrap(target, "primary key lookup", source.get_primary_keys(schema, table))
            if not keys:
                self.log.warning(
                    "No primary key for %s; chunks are fetched without ORDER BY and page boundaries may shift",
                    target.qualified,
                )
            destination.ensure_table_exists(schema, table, columns, keys)

            src_count = source.get_row_count(schema, table)
            self._unwrap(target, "source row count", src_count)

            if not cfg.reset:
                dst_count = destination.get_row_count(schema, table)
                if dst_count == src_count.value:
                    outcome.status = "in_sync"
                    self.reporter.target_skipped(target, "record counts match")
                    return outcome
                self.log.info(
                    "Record counts differ for %s (source=%d, destination=%d). Truncating table.",
                    target.qualified, src_count.value, dst_count,
                )
                destination.truncate_table(schema, table)

            self._transfer(source, destination, target, columns, src_count, outcome)

            if cfg.validate and not src_count.failed:
                after = destination.get_row_count(schema, table)
                outcome.validated = after == src_count.value
                if not outcome.validated:
                    self.reporter.validation_mismatch(target, src_count.value, after)

            outcome.status = "copied"
            self.reporter.target_finished(target, outcome.rows)
        except Exception as e:
            outcome.status = "failed"
            outcome.error = str(e)
            self.reporter.target_failed(target, e)
        return outcome

    def _transfer(self, source: Db2Source, destination: PostgresDestination, target: ReplicationTarget,
                  columns: Sequence[ColumnDescriptor], src_count: Fetched[int], outcome: TargetOutcome) -> None:
        """
        Copy the table page by page, strictly in sequence.
        Stops on an empty page, a short page, or once a known source count is reached.
        """
        chunk_size = self.cfg.chunk_size
        total = src_count.value
        known = not src_count.failed
        if known and total == 0:
            self.log.info("Source table %s is empty; nothing to copy", target.qualified)
            return

        offset = 0
        while True:
            page = source.fetch_chunk(target.schema, target.name, chunk_size, offset)
            rows = self._unwrap(target, f"chunk fetch at offset {offset}", page)
            if not rows:
                break

            outcome.rows += len(rows)
            outcome.inserted += destination.insert_batch(target.schema, target.name, columns, rows)
            offset += chunk_size
            self.reporter.chunk_progress(target, outcome.rows, total)

            if len(rows) < chunk_size or (known and outcome.rows >= total):
                break

    # ------------------------ Views ------------------------

    def replicate_view(self, source: Db2Source, destination: PostgresDestination,
                       target: ReplicationTarget) -> TargetOutcome:
        outcome = TargetOutcome(target=target, kind="view")
        self.reporter.target_started("view", target)
        try:
            definition = self._unwrap(
                target, "view definition lookup", source.get_view_definition(target.schema, target.name)
            )
            if not definition:
                outcome.error = "no view definition found"
                self.reporter.target_failed(target, outcome.error)
                return outcome
            destination.create_view(target.schema, target.name, definition)
            outcome.status = "created"
            self.reporter.view_created(target)
        except Exception as e:
            outcome.error = str(e)
            self.reporter.target_failed(target, e)
        return outcome
