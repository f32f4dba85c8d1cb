"""
buddyup/api/partnerships.py
Partnership API: invite, accept/decline, invite codes, pause/resume/end.
"""

from fastapi import APIRouter, Depends

from buddyup.api.deps import get_engine
from buddyup.core.auth import get_current_user_id
from buddyup.features.engine import Engine
from buddyup.models.partnership import (
    AcceptInviteCodeRequest,
    InvitePartnerRequest,
    UpdatePartnershipStatusRequest,
)

router = APIRouter(prefix="/v1", tags=["partnerships"])


@router.post("/partnerships", status_code=201)
def invite_partner_endpoint(
    request: InvitePartnerRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Invite another user to be your accountability buddy"""
    partnership = engine.partnerships.invite(user_id, request.receiver_id)
    return {"data": partnership.model_dump(mode="json")}


@router.get("/partnerships")
def list_partnerships_endpoint(
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """List partnerships involving user"""
    partnerships = engine.partnerships.list_for_user(user_id)
    return {
        "data": [p.model_dump(mode="json") for p in partnerships],
        "count": len(partnerships),
    }


@router.get("/partnerships/{partnership_id}")
def get_partnership_endpoint(
    partnership_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    partnership = engine.partnerships.get(partnership_id, user_id)
    return {"data": partnership.model_dump(mode="json")}


@router.patch("/partnerships/{partnership_id}")
def update_partnership_endpoint(
    partnership_id: str,
    request: UpdatePartnershipStatusRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Pause, resume or end a partnership"""
    partnership = engine.partnerships.update_status(partnership_id, user_id, request.status)
    return {"data": partnership.model_dump(mode="json")}


@router.post("/partnerships/{partnership_id}/accept")
def accept_partnership_endpoint(
    partnership_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    partnership = engine.partnerships.accept(partnership_id, user_id)
    return {"data": partnership.model_dump(mode="json")}


@router.post("/partnerships/{partnership_id}/decline")
def decline_partnership_endpoint(
    partnership_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    partnership = engine.partnerships.decline(partnership_id, user_id)
    return {"data": partnership.model_dump(mode="json")}


@router.get("/invite-code")
def get_invite_code_endpoint(
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Your shareable invite code (created on first request)"""
    code = engine.partnerships.get_or_create_invite_code(user_id)
    return {"data": {"code": code}}


@router.post("/invite-code/accept", status_code=201)
def accept_invite_code_endpoint(
    request: AcceptInviteCodeRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Join a partnership with someone's invite code"""
    partnership = engine.partnerships.join_by_code(user_id, request.code)
    return {"data": partnership.model_dump(mode="json")}
