"""
buddyup/api/dashboard.py
Dashboard API: activity feed and change polling.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from buddyup.api.deps import get_engine
from buddyup.core.auth import get_current_user_id
from buddyup.core.errors import ValidationError
from buddyup.core.tracing import start_span
from buddyup.features.engine import Engine

router = APIRouter(prefix="/v1/dashboard", tags=["dashboard"])


def _parse_since(since: Optional[str]) -> datetime:
    if not since:
        return datetime.fromtimestamp(0, timezone.utc)
    try:
        parsed = datetime.fromisoformat(since.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Invalid ISO timestamp format for 'since' parameter")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@router.get("/feed")
def feed_endpoint(
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Priority-ordered activity feed for the dashboard"""
    with start_span("api.dashboard.feed", {"user_id": user_id}):
        feed = engine.feed.feed_for(user_id)
    return {"data": feed.model_dump(mode="json")}


@router.get("/updates")
def updates_endpoint(
    since: Optional[str] = Query(None, description="ISO timestamp of the client's last refresh"),
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Cheap poll: has anything the viewer can see changed since `since`?"""
    summary = engine.feed.updates_since(user_id, _parse_since(since))
    return {"data": summary.model_dump(mode="json")}
