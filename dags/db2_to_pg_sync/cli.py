from __future__ import annotations

import logging
import sys

from db2_to_pg_sync.ReplicationConfig import load_config
from db2_to_pg_sync.alerts import send_discord_alert, summarize_abort, summarize_run
from db2_to_pg_sync.engine import ReplicationEngine

logger = logging.getLogger("db2_to_pg_sync")


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    cfg = load_config()
    try:
        result = ReplicationEngine(cfg).run()
    except Exception as e:
        logger.error("❌ Replication aborted: %s", e)
        if cfg.discord_webhook:
            send_discord_alert(cfg.discord_webhook, summarize_abort(e))
        return 1

    if result.failures:
        logger.warning("⚠️ Replication finished with %d failed target(s)", len(result.failures))
        if cfg.discord_webhook:
            send_discord_alert(cfg.discord_webhook, summarize_run(result))
    else:
        logger.info("🎉 All schemas replicated successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
