"""
buddyup/features/feed/service.py
Dashboard activity feed and change polling.

derive_feed is a pure function of (viewer, snapshot, now): the same inputs
always give the same tuple of items. FeedService only loads the snapshot.

Items (priority, lower first):
1 habit_approval   buddy proposed a habit the viewer must resolve
2 buddy_habits     per buddy, the action each ACTIVE habit needs from the viewer
3 buddy_invite     viewer is the receiver of a PENDING partnership
3 turn_passed      buddy passed the turn to the viewer recently
4 habit_pending    viewer's own proposals awaiting the buddy
5 habit_declined   viewer's proposal was rejected recently and not dismissed
"""

from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from buddyup.core.config import settings
from buddyup.models.challenge import Challenge, ChallengeStatus, Completion
from buddyup.models.feed import (
    FEED_PRIORITIES,
    ActionNeeded,
    ActivityItem,
    FeedItemKind,
    FeedResponse,
    FeedSnapshot,
    HabitActionStatus,
    UpdatesSummary,
)
from buddyup.models.habit import Habit, HabitStatus
from buddyup.models.partnership import Partnership, PartnershipStatus

DEFAULT_PASS_WINDOW = timedelta(hours=2)
DEFAULT_DECLINED_WINDOW = timedelta(hours=24)


def _item(kind: FeedItemKind, item_id: str, timestamp: datetime, partnership: Partnership, viewer: str, **payload) -> ActivityItem:
    return ActivityItem(
        item_id=item_id,
        kind=kind,
        priority=FEED_PRIORITIES[kind],
        timestamp=timestamp,
        partnership_id=partnership.partnership_id,
        buddy_id=partnership.other_member(viewer),
        **payload,
    )


def habit_action(
    viewer_id: str,
    habit: Habit,
    partnership: Partnership,
    challenges_by_day: Dict[Tuple[str, date], Challenge],
    recorded: Dict[str, set],
    today: date,
) -> HabitActionStatus:
    """What the viewer should do next for one ACTIVE habit."""
    holds_turn = habit.current_turn.user_in(partnership) == viewer_id
    tomorrow = today + timedelta(days=1)
    today_challenge = challenges_by_day.get((habit.habit_id, today))
    tomorrow_challenge = challenges_by_day.get((habit.habit_id, tomorrow))

    next_due: Optional[date] = None
    if holds_turn and today_challenge is None:
        action, next_due = ActionNeeded.SET_GOAL, today
    elif (
        holds_turn
        and today_challenge.status == ChallengeStatus.CLOSED
        and tomorrow_challenge is None
    ):
        action, next_due = ActionNeeded.SET_GOAL, tomorrow
    elif today_challenge is not None and viewer_id not in recorded.get(today_challenge.challenge_id, set()):
        action = ActionNeeded.COMPLETE_GOAL
    else:
        action = ActionNeeded.WAITING

    return HabitActionStatus(
        habit_id=habit.habit_id,
        name=habit.name,
        action_needed=action,
        streak_count=habit.streak_count,
        holds_turn=holds_turn,
        today_challenge_id=today_challenge.challenge_id if today_challenge else None,
        today_challenge_title=today_challenge.title if today_challenge else None,
        next_due_date=next_due,
    )


def derive_feed(
    user_id: str,
    snapshot: FeedSnapshot,
    now: datetime,
    pass_window: timedelta = DEFAULT_PASS_WINDOW,
    declined_window: timedelta = DEFAULT_DECLINED_WINDOW,
) -> Tuple[ActivityItem, ...]:
    """
    Build the viewer's feed from an immutable snapshot.

    Returns:
        Items sorted by priority ascending, then newest first, unique by item_id
    """
    today = now.date()
    partnerships = {p.partnership_id: p for p in snapshot.partnerships if p.is_member(user_id)}
    challenges_by_day = {(c.habit_id, c.due_date): c for c in snapshot.challenges}
    recorded: Dict[str, set] = {}
    for completion in snapshot.completions:
        recorded.setdefault(completion.challenge_id, set()).add(completion.user_id)

    items: List[ActivityItem] = []

    for partnership in partnerships.values():
        if partnership.status == PartnershipStatus.PENDING and partnership.party_b == user_id:
            items.append(_item(FeedItemKind.BUDDY_INVITE, f"invite-{partnership.partnership_id}", partnership.created_at, partnership, user_id))

    active_by_partnership: Dict[str, List[Habit]] = {}
    for habit in snapshot.habits:
        partnership = partnerships.get(habit.partnership_id)
        if partnership is None:
            continue
        mine = habit.created_by == user_id

        if habit.status == HabitStatus.PENDING and partnership.status == PartnershipStatus.ACTIVE:
            kind = FeedItemKind.HABIT_PENDING if mine else FeedItemKind.HABIT_APPROVAL
            prefix = "pending" if mine else "approval"
            items.append(
                _item(kind, f"{prefix}-{habit.habit_id}", habit.created_at, partnership, user_id,
                      habit_id=habit.habit_id, habit_name=habit.name)
            )

        elif habit.status == HabitStatus.CANCELLED:
            # A rejected proposal never got a start_date; cancelled active habits are not "declined".
            if (
                mine
                and habit.start_date is None
                and habit.dismissed_at is None
                and habit.resolved_at is not None
                and now - habit.resolved_at <= declined_window
            ):
                items.append(
                    _item(FeedItemKind.HABIT_DECLINED, f"declined-{habit.habit_id}", habit.resolved_at, partnership, user_id,
                          habit_id=habit.habit_id, habit_name=habit.name)
                )

        elif habit.status == HabitStatus.ACTIVE and partnership.status == PartnershipStatus.ACTIVE:
            active_by_partnership.setdefault(partnership.partnership_id, []).append(habit)
            holder = habit.current_turn.user_in(partnership)
            if (
                habit.passed_at is not None
                and holder == user_id
                and habit.last_passed_by is not None
                and habit.last_passed_by != user_id
                and now - habit.passed_at <= pass_window
            ):
                items.append(
                    _item(FeedItemKind.TURN_PASSED, f"turn-passed-{habit.habit_id}", habit.passed_at, partnership, user_id,
                          habit_id=habit.habit_id, habit_name=habit.name)
                )

    for partnership_id, habits in active_by_partnership.items():
        partnership = partnerships[partnership_id]
        statuses = tuple(habit_action(user_id, h, partnership, challenges_by_day, recorded, today) for h in habits)
        timestamp = max(h.updated_at for h in habits)
        items.append(_item(FeedItemKind.BUDDY_HABITS, f"buddy-habits-{partnership_id}", timestamp, partnership, user_id, habits=statuses))

    items.sort(key=lambda i: (i.priority, -i.timestamp.timestamp(), i.item_id))
    seen = set()
    unique: List[ActivityItem] = []
    for item in items:
        if item.item_id in seen:
            continue
        seen.add(item.item_id)
        unique.append(item)
    return tuple(unique)


class FeedService:
    def __init__(self, store, clock, cfg=None):
        self.store = store
        self.clock = clock
        cfg = cfg or settings
        self.pass_window = timedelta(hours=cfg.FEED_PASS_WINDOW_HOURS)
        self.declined_window = timedelta(hours=cfg.FEED_DECLINED_WINDOW_HOURS)

    def snapshot_for(self, user_id: str) -> FeedSnapshot:
        today = self.clock.today()
        relevant_days = {today, today + timedelta(days=1)}
        partnerships = self.store.list_partnerships_for_user(user_id)
        habits = self.store.list_habits([p.partnership_id for p in partnerships])
        challenges = [
            c for c in self.store.list_challenges([h.habit_id for h in habits])
            if c.due_date in relevant_days
        ]
        completions = self.store.list_completions([c.challenge_id for c in challenges])
        return FeedSnapshot(
            partnerships=tuple(partnerships),
            habits=tuple(habits),
            challenges=tuple(challenges),
            completions=tuple(completions),
        )

    def feed_for(self, user_id: str) -> FeedResponse:
        now = self.clock.now()
        items = derive_feed(
            user_id,
            self.snapshot_for(user_id),
            now,
            pass_window=self.pass_window,
            declined_window=self.declined_window,
        )
        return FeedResponse(user_id=user_id, items=items, computed_at=now)

    def updates_since(self, user_id: str, since: datetime) -> UpdatesSummary:
        """Counts of rows touched after `since` that the viewer can see."""
        partnerships = self.store.list_partnerships_for_user(user_id)
        habits = self.store.list_habits([p.partnership_id for p in partnerships])
        challenges = self.store.list_challenges([h.habit_id for h in habits])
        completions: List[Completion] = self.store.list_completions([c.challenge_id for c in challenges])

        changed_partnerships = sum(1 for p in partnerships if p.updated_at > since)
        changed_habits = sum(1 for h in habits if h.updated_at > since)
        new_completions = sum(1 for c in completions if c.recorded_at > since)
        new_messages = sum(
            1
            for p in partnerships
            for m in self.store.list_messages(p.partnership_id)
            if m.created_at > since and m.sender_id != user_id
        )
        return UpdatesSummary(
            has_updates=bool(changed_partnerships or changed_habits or new_completions or new_messages),
            partnerships=changed_partnerships,
            habits=changed_habits,
            completions=new_completions,
            messages=new_messages,
            checked_at=self.clock.now(),
        )
