import logging
from typing import Optional

import requests

from db2_to_pg_sync.engine import RunResult

log = logging.getLogger(__name__)

DISCORD_LIMIT = 2000  # Discord message hard limit (approx)


def _truncate_for_discord(text: str, limit: int = DISCORD_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 20] + "\n… (truncated)"


def summarize_run(result: RunResult) -> str:
    """One message listing every failed table and view of a run."""
    failures = result.failures
    header = (
        f"❗️ **Db2 → PostgreSQL replication**: {len(failures)} target(s) failed "
        f"(run started {result.started_at.to_datetime_string()} UTC)"
    )
    lines = [header]
    for o in failures:
        lines.append(f"- {o.kind} `{o.target.qualified}`: {o.error or 'unknown error'}")
    return "\n".join(lines)


def summarize_abort(error: BaseException) -> str:
    return f"❗️ **Db2 → PostgreSQL replication aborted**: {error}"


def send_discord_alert(webhook_url: Optional[str], message: str,
                       username: Optional[str] = "Database Sync Alert",
                       avatar_url: Optional[str] = None) -> bool:
    """
    Sends a simple Discord webhook message. Returns True when Discord accepted it.
    Discord returns 204 No Content for non-waiting calls; 200 OK if '?wait=true'.
    """
    if not webhook_url:
        log.warning("No Discord webhook URL configured (DISCORD_WEBHOOK), skipping alert.")
        return False

    payload = {
        "content": _truncate_for_discord(message),
        "username": username,
    }
    if avatar_url:
        payload["avatar_url"] = avatar_url

    try:
        response = requests.post(webhook_url, json=payload, timeout=10)
    except requests.RequestException as e:
        log.exception("Exception while sending Discord alert: %s", e)
        return False

    if response.status_code in (200, 204):
        log.info("Discord alert sent successfully (status %s).", response.status_code)
        return True

    log.error("Failed to send Discord alert: status=%s body=%s", response.status_code, response.text)
    return False
