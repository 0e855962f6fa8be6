from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from db2_to_pg_sync.ReplicationConfig import ReplicationTarget

if TYPE_CHECKING:
    from db2_to_pg_sync.engine import RunResult


class ProgressReporter:
    """
    Events the replication engine emits while it runs.
    The base class ignores everything; subclasses pick what to render.
    """

    def run_started(self, tables: int, views: int, reset: bool) -> None:
        pass

    def schema_dropped(self, schema: str) -> None:
        pass

    def target_started(self, kind: str, target: ReplicationTarget) -> None:
        pass

    def target_skipped(self, target: ReplicationTarget, reason: str) -> None:
        pass

    def chunk_progress(self, target: ReplicationTarget, copied: int, total: int) -> None:
        pass

    def soft_failure(self, target: ReplicationTarget, what: str, error: str) -> None:
        pass

    def validation_mismatch(self, target: ReplicationTarget, source_rows: int, destination_rows: int) -> None:
        pass

    def target_failed(self, target: ReplicationTarget, error: BaseException | str) -> None:
        pass

    def view_created(self, target: ReplicationTarget) -> None:
        pass

    def target_finished(self, target: ReplicationTarget, rows: int) -> None:
        pass

    def run_aborted(self, error: BaseException) -> None:
        pass

    def run_finished(self, result: "RunResult") -> None:
        pass


class LoggingReporter(ProgressReporter):
    """Render engine events as log lines."""

    def __init__(self, logger: logging.Logger | None = None):
        self.log = logger or logging.getLogger("db2_to_pg_sync.progress")

    def run_started(self, tables, views, reset):
        self.log.info("🔍 Starting replication process (%d tables, %d views, reset=%s)...", tables, views, reset)
        if not tables:
            self.log.warning("⚠️ No tables specified in REPLICATED_TABLES. Skipping table replication.")
        if not views:
            self.log.warning("⚠️ No views specified in REPLICATED_VIEWS. Skipping view replication.")

    def schema_dropped(self, schema):
        self.log.warning("🔥 Dropped schema %s (RESET enabled)", schema)

    def target_started(self, kind, target):
        self.log.info("🛠️  Replicating %s: %s", kind, target.qualified)

    def target_skipped(self, target, reason):
        self.log.warning("⚠️ Skipping %s (%s)", target.qualified, reason)

    def chunk_progress(self, target, copied, total):
        if total > 0:
            self.log.info("📥 %s: fetched & inserted %d/%d records (%.2f%%)",
                          target.qualified, copied, total, copied * 100.0 / total)
        else:
            self.log.info("📥 %s: fetched & inserted %d records (total unknown)", target.qualified, copied)

    def soft_failure(self, target, what, error):
        self.log.warning("⚠️ %s: %s failed (%s); continuing with an empty result", target.qualified, what, error)

    def validation_mismatch(self, target, source_rows, destination_rows):
        self.log.warning("⚠️ %s: row counts differ after load (source=%d, destination=%d)",
                         target.qualified, source_rows, destination_rows)

    def target_failed(self, target, error):
        exc_info = error if isinstance(error, BaseException) else None
        self.log.error("❌ Error processing %s: %s", target.qualified, error, exc_info=exc_info)

    def view_created(self, target):
        self.log.info("✅ View created: %s", target.qualified)

    def target_finished(self, target, rows):
        self.log.info("✅ Finished replicating %s (%d records)", target.qualified, rows)

    def run_aborted(self, error):
        self.log.error("❌ Replication aborted: %s", error)

    def run_finished(self, result):
        self.log.info(
            "🎉 Replication process complete: %d table(s) copied, %d in sync, %d failed; %d view(s) created, %d failed (%.3fs)",
            result.count("copied"), result.count("in_sync"), result.count("failed"),
            result.count("created", views=True), result.count("failed", views=True),
            result.elapsed,
        )
