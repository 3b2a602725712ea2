from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from app.db.redis import redis_client

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def notify(
    *,
    user_id: str | None,
    kind: str,
    title: str,
    body: str,
    payload: dict | None = None,
) -> None:
    """Publish a notification for the delivery workers.

    Fire-and-forget: a failed publish is logged and never reaches the caller,
    so it cannot undo or block the credit mutation that triggered it.
    """
    if not user_id:
        return
    msg = {
        "user_id": str(user_id),
        "kind": kind,
        "title": title,
        "body": body,
        "payload": payload or {},
        "created_at": _now_iso(),
    }
    try:
        await redis_client.publish(f"notif:{user_id}", json.dumps(msg, default=str))
    except Exception:
        logger.exception("Failed to publish %s notification for user_id=%s", kind, user_id)
