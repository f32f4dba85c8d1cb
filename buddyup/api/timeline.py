"""Chat API: partnership messages and the merged timeline."""

from fastapi import APIRouter, Depends, Path, Query

from buddyup.api.deps import get_engine
from buddyup.core.auth import get_current_user_id
from buddyup.core.tracing import start_span
from buddyup.features.engine import Engine
from buddyup.models.message import PostMessageRequest

router = APIRouter(prefix="/v1/partnerships", tags=["timeline"])


@router.get("/{partnership_id}/messages")
def list_messages_endpoint(
    partnership_id: str = Path(..., description="Partnership ID"),
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    messages = engine.messages.list_messages(partnership_id, user_id)
    return {"data": [m.model_dump(mode="json") for m in messages], "count": len(messages)}


@router.post("/{partnership_id}/messages", status_code=201)
def post_message_endpoint(
    request: PostMessageRequest,
    partnership_id: str = Path(..., description="Partnership ID"),
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    message = engine.messages.post_message(partnership_id, user_id, request.content)
    return {"data": message.model_dump(mode="json")}


@router.get("/{partnership_id}/timeline")
def get_timeline_endpoint(
    partnership_id: str = Path(..., description="Partnership ID"),
    limit: int = Query(500, ge=1, le=1000, description="Maximum events to return"),
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Get the partnership's history, oldest first.

    Merges chat messages with:
    - Habit proposals and approvals
    - Goals set
    - Completions, misses and skips
    """
    with start_span("api.timeline.get", {"partnership_id": partnership_id, "limit": limit}):
        timeline = engine.timeline.get_timeline(partnership_id, user_id, limit=limit)
    return {"data": timeline.model_dump(mode="json")}
