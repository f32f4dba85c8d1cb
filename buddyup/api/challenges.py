"""
buddyup/api/challenges.py
Challenge API: set today's goal, record completions and misses.
"""

from fastapi import APIRouter, Depends

from buddyup.api.deps import get_engine
from buddyup.core.auth import get_current_user_id
from buddyup.features.engine import Engine
from buddyup.models.challenge import (
    CompleteChallengeRequest,
    CompletionStatus,
    CreateChallengeRequest,
    RecordMissRequest,
)

router = APIRouter(prefix="/v1", tags=["challenges"])


@router.post("/challenges", status_code=201)
def create_challenge_endpoint(
    request: CreateChallengeRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Set the next goal for a habit (turn holder only)"""
    challenge = engine.challenges.create_challenge(
        request.habit_id, user_id, request.title, description=request.description
    )
    return {"data": challenge.model_dump(mode="json")}


@router.get("/partnerships/{partnership_id}/challenges")
def list_challenges_endpoint(
    partnership_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    challenges = engine.challenges.list_for_partnership(partnership_id, user_id)
    return {"data": [c.model_dump(mode="json") for c in challenges], "count": len(challenges)}


@router.get("/challenges/{challenge_id}")
def get_challenge_endpoint(
    challenge_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    detail = engine.challenges.get(challenge_id, user_id)
    return {"data": detail.model_dump(mode="json")}


@router.post("/challenges/{challenge_id}/complete")
def complete_challenge_endpoint(
    challenge_id: str,
    request: CompleteChallengeRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Mark today's goal done, with optional reflection, feelings and photo"""
    outcome = engine.challenges.complete_challenge(
        challenge_id,
        user_id,
        reflection=request.reflection,
        feeling_tags=request.feeling_tags,
        photo_ref=request.photo_ref,
    )
    return {"data": outcome.model_dump(mode="json")}


@router.post("/challenges/{challenge_id}/miss")
def record_miss_endpoint(
    challenge_id: str,
    request: RecordMissRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Record a missed (streak resets) or skipped (streak kept) goal"""
    outcome = engine.challenges.record_miss(
        challenge_id,
        user_id,
        status=CompletionStatus(request.status),
        reflection=request.reflection,
    )
    return {"data": outcome.model_dump(mode="json")}
