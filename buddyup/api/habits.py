"""
buddyup/api/habits.py
Habit API: propose, approve/reject, pass turn, dismiss, cancel, streak audit.
"""

from fastapi import APIRouter, Depends, Query

from buddyup.api.deps import get_engine
from buddyup.core.auth import get_current_user_id
from buddyup.features.engine import Engine
from buddyup.models.habit import ApprovalRequest, ProposeHabitRequest

router = APIRouter(prefix="/v1", tags=["habits"])


@router.post("/habits", status_code=201)
def propose_habit_endpoint(
    request: ProposeHabitRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Propose a habit to your buddy; it stays PENDING until they approve"""
    habit = engine.habits.propose_habit(
        user_id,
        request.partnership_id,
        request.name,
        description=request.description,
        category=request.category,
        frequency=request.frequency,
        custom_days=request.custom_days,
        duration_days=request.duration_days,
    )
    return {"data": habit.model_dump(mode="json")}


@router.get("/partnerships/{partnership_id}/habits")
def list_habits_endpoint(
    partnership_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    habits = engine.habits.list_for_partnership(partnership_id, user_id)
    return {"data": [h.model_dump(mode="json") for h in habits], "count": len(habits)}


@router.post("/habits/{habit_id}/approve")
def resolve_habit_endpoint(
    habit_id: str,
    request: ApprovalRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Approve or reject your buddy's proposal"""
    habit = engine.habits.resolve_approval(habit_id, user_id, request.action)
    return {"data": habit.model_dump(mode="json")}


@router.post("/habits/{habit_id}/pass")
def pass_turn_endpoint(
    habit_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Hand your turn to set the next goal to your buddy"""
    habit = engine.turns.pass_turn(habit_id, user_id)
    return {"data": habit.model_dump(mode="json")}


@router.post("/habits/{habit_id}/dismiss")
def dismiss_habit_endpoint(
    habit_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    habit = engine.habits.dismiss(habit_id, user_id)
    return {"data": habit.model_dump(mode="json")}


@router.post("/habits/{habit_id}/cancel")
def cancel_habit_endpoint(
    habit_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    habit = engine.habits.cancel_habit(habit_id, user_id)
    return {"data": habit.model_dump(mode="json")}


@router.get("/habits/{habit_id}/streak-audit")
def streak_audit_endpoint(
    habit_id: str,
    repair: bool = Query(False, description="Write replayed counters back when they disagree"),
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Compare stored streak counters with a replay of the completion history"""
    engine.habits.get(habit_id, user_id)
    if repair:
        audit = engine.streaks.repair(habit_id, now=engine.clock.now())
    else:
        audit = engine.streaks.audit(habit_id)
    return {"data": audit.model_dump(mode="json")}
