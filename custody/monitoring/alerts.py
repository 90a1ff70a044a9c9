"""
Custody - Alerting System
==========================
Webhook escalation when an audit entry could not be persisted.

Slack and Discord incoming webhooks get their native message shapes; any
other URL receives a flat JSON document.
"""

from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog

from custody.config import settings

logger = structlog.get_logger(__name__)

ALERT_TITLE = "Audit log write failed"
ERROR_PREVIEW_CHARS = 500


def _actor(entry: dict[str, Any]) -> str:
    return str(entry.get("username") or entry.get("user_id") or "anonymous")


def build_payload(url: str, entry: dict[str, Any], error_message: str) -> dict[str, Any]:
    """Webhook body for ``url``."""
    now = datetime.now(timezone.utc)
    error = error_message[:ERROR_PREVIEW_CHARS]
    action = entry.get("action")

    if "slack.com" in url:
        return {
            "text": ALERT_TITLE,
            "blocks": [
                {"type": "header", "text": {"type": "plain_text", "text": ALERT_TITLE}},
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Action:*\n`{action}`"},
                        {"type": "mrkdwn", "text": f"*Actor:*\n{_actor(entry)}"},
                        {"type": "mrkdwn", "text": f"*Resource:*\n{entry.get('resource') or '-'}"},
                    ],
                },
                {"type": "section", "text": {"type": "mrkdwn", "text": f"*Error:*\n```{error}```"}},
                {
                    "type": "context",
                    "elements": [{
                        "type": "mrkdwn",
                        "text": f"{settings.environment} | {now:%Y-%m-%d %H:%M:%S} UTC",
                    }],
                },
            ],
        }

    if "discord.com" in url:
        return {
            "embeds": [{
                "title": ALERT_TITLE,
                "color": 15158332,  # red
                "fields": [
                    {"name": "Action", "value": f"`{action}`", "inline": True},
                    {"name": "Actor", "value": _actor(entry), "inline": True},
                    {"name": "Resource", "value": str(entry.get("resource") or "-"), "inline": True},
                    {"name": "Error", "value": f"```{error}```", "inline": False},
                ],
                "footer": {"text": f"Environment: {settings.environment}"},
                "timestamp": now.isoformat(),
            }]
        }

    return {
        "type": "audit_write_failure",
        "timestamp": now.isoformat(),
        "service": "custody",
        "environment": settings.environment,
        "action": action,
        "user_id": entry.get("user_id"),
        "resource": entry.get("resource"),
        "error_message": error,
    }


async def send_audit_failure_alert(
    entry: dict[str, Any],
    error_message: str,
    webhook_url: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> bool:
    """
    Notify the configured webhook that ``entry`` went to the recovery log.

    Returns True if the webhook accepted the alert. Delivery problems are
    logged and reported as False.
    """
    url = webhook_url or settings.alert_webhook_url
    if not url:
        logger.debug("alert_skipped_no_webhook")
        return False

    payload = build_payload(url, entry, error_message)
    action = entry.get("action")

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=10) as own_client:
                response = await own_client.post(url, json=payload)
        else:
            response = await client.post(url, json=payload)
        response.raise_for_status()
    except httpx.TimeoutException:
        logger.warning("alert_timeout", action=action)
        return False
    except httpx.HTTPStatusError as e:
        logger.error("alert_failed", action=action, status_code=e.response.status_code)
        return False
    except httpx.HTTPError as e:
        logger.error("alert_error", action=action, error=str(e))
        return False

    logger.info("alert_sent", action=action, webhook_status=response.status_code)
    return True
