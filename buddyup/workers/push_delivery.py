"""Push notification delivery worker.

Jobs are enqueued by QueueNotifier and executed by an RQ worker:

    rq worker notifications --url $REDIS_URL

Environment flags:
- PUSH_GATEWAY_URL (required)
- PUSH_GATEWAY_TIMEOUT_SECONDS (default 5)
"""
from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from buddyup.core.config import settings

logger = logging.getLogger("buddyup")


def build_push_payload(notification: Dict[str, Any]) -> Dict[str, Any]:
    """Shape a serialized Notification into the gateway's push format."""
    return {
        "user_id": notification["recipient_id"],
        "type": notification["kind"],
        "title": notification["title"],
        "body": notification["body"],
        "url": notification.get("url") or "/dashboard",
        "tag": str(notification["kind"]).lower().replace("_", "-"),
        "data": notification.get("context") or {},
    }


def deliver_push(notification: Dict[str, Any]) -> int:
    """POST one notification to the push gateway. Returns the HTTP status.

    Raises on non-2xx so RQ records the failure and can retry the job.
    """
    url = settings.PUSH_GATEWAY_URL
    if not url:
        raise RuntimeError("PUSH_GATEWAY_URL is not configured")

    payload = build_push_payload(notification)
    with httpx.Client(timeout=settings.PUSH_GATEWAY_TIMEOUT_SECONDS) as client:
        response = client.post(url, json=payload)
        response.raise_for_status()

    logger.info(
        "push.delivered",
        extra={"user_id": payload["user_id"], "event_type": payload["type"]},
    )
    return response.status_code
