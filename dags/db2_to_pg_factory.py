from __future__ import annotations

import logging
from typing import Any, Dict

import pendulum

from airflow.decorators import dag, task
from airflow.exceptions import AirflowFailException
from airflow.models import Variable

from db2_to_pg_sync.ReplicationConfig import load_config
from db2_to_pg_sync.alerts import send_discord_alert, summarize_abort, summarize_run
from db2_to_pg_sync.engine import ReplicationEngine

log = logging.getLogger(__name__)


def _webhook(cfg) -> str | None:
    return Variable.get("DISCORD_WEBHOOK", default_var="") or cfg.discord_webhook

# ------------------------ DAG ------------------------

@dag(
    dag_id="db2_to_pg_replication",
    schedule=Variable.get("DB2_TO_PG_SCHEDULE", default_var="0 2 * * *"),
    start_date=pendulum.datetime(2025, 8, 18, tz="UTC"),
    catchup=False,
    max_active_runs=1,
    tags=["db2", "pg", "replication"],
    description="Mirror configured Db2 tables and views into PostgreSQL",
)
def db2_to_pg_replication():

    @task(multiple_outputs=False)
    def replicate() -> Dict[str, Any]:
        cfg = load_config()
        log.info("Replicating %d tables and %d views", len(cfg.tables), len(cfg.views))
        try:
            result = ReplicationEngine(cfg).run()
        except Exception as e:
            # downstream alerting is skipped once this task fails
            send_discord_alert(_webhook(cfg), summarize_abort(e))
            raise AirflowFailException(f"Replication aborted: {e}") from e
        return {
            "run": result.as_dict(),
            "alert": summarize_run(result) if result.failures else None,
        }

    @task(do_xcom_push=False)
    def alerting(summary: Dict[str, Any]) -> None:
        message = summary.get("alert")
        if not message:
            log.info("All targets replicated; no alerting.")
            return
        send_discord_alert(_webhook(load_config()), message)

    alerting(replicate())


db2_to_pg_replication()
