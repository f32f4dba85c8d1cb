"""Timeline event mapping.

Converts messages, habits, challenges and completions into normalized
TimelineEvent objects. Pure: no store access.
"""

from typing import Dict, Iterable, List

from buddyup.features.timeline.models import TimelineEvent
from buddyup.features.users.identity import display_for_user
from buddyup.models.challenge import Challenge, Completion, CompletionStatus
from buddyup.models.habit import Habit
from buddyup.models.message import Message, MessageType
from buddyup.models.partnership import Partnership


_COMPLETION_TYPES = {
    CompletionStatus.COMPLETED: ("goal_completed", "completed"),
    CompletionStatus.MISSED: ("goal_missed", "missed"),
    CompletionStatus.SKIPPED: ("goal_skipped", "skipped"),
}


def map_message(message: Message) -> TimelineEvent:
    system = message.message_type == MessageType.SYSTEM
    return TimelineEvent(
        event_id=f"message-{message.message_id}",
        ts=message.created_at,
        type="system_message" if system else "message",
        actor_user_id=message.sender_id,
        partnership_id=message.partnership_id,
        summary=message.content,
        meta={"message_type": message.message_type.value},
    )


def map_habit(habit: Habit, partnership: Partnership) -> List[TimelineEvent]:
    """Proposal event plus, once resolved, an approval or rejection event."""
    creator = display_for_user(habit.created_by)
    events = [
        TimelineEvent(
            event_id=f"habit-created-{habit.habit_id}",
            ts=habit.created_at,
            type="habit_created",
            actor_user_id=habit.created_by,
            partnership_id=habit.partnership_id,
            summary=f'{creator} proposed "{habit.name}"',
            meta={"habit_id": habit.habit_id, "category": habit.category},
        )
    ]
    if habit.resolved_at is None:
        return events

    resolver = partnership.other_member(habit.created_by)
    approved = habit.start_date is not None
    verb = "approved" if approved else "declined"
    events.append(
        TimelineEvent(
            event_id=f"habit-{'approved' if approved else 'rejected'}-{habit.habit_id}",
            ts=habit.resolved_at,
            type="habit_approved" if approved else "habit_rejected",
            actor_user_id=resolver,
            partnership_id=habit.partnership_id,
            summary=f'{display_for_user(resolver)} {verb} "{habit.name}"',
            meta={"habit_id": habit.habit_id},
        )
    )
    return events


def map_challenge(challenge: Challenge, habit: Habit) -> TimelineEvent:
    return TimelineEvent(
        event_id=f"challenge-created-{challenge.challenge_id}",
        ts=challenge.created_at,
        type="goal_set",
        actor_user_id=challenge.created_by,
        partnership_id=habit.partnership_id,
        summary=f'{display_for_user(challenge.created_by)} set a goal for "{habit.name}": {challenge.title}',
        meta={
            "habit_id": habit.habit_id,
            "challenge_id": challenge.challenge_id,
            "due_date": challenge.due_date.isoformat(),
        },
    )


def map_completion(completion: Completion, challenge: Challenge, habit: Habit) -> TimelineEvent:
    event_type, verb = _COMPLETION_TYPES[completion.status]
    meta: Dict[str, object] = {
        "habit_id": habit.habit_id,
        "challenge_id": challenge.challenge_id,
    }
    if completion.reflection:
        meta["reflection"] = completion.reflection
    if completion.feeling_tags is not None:
        meta["feeling_tags"] = completion.feeling_tags.model_dump()
    if completion.photo_ref:
        meta["photo_ref"] = completion.photo_ref
    return TimelineEvent(
        event_id=f"completion-{completion.completion_id}",
        ts=completion.recorded_at,
        type=event_type,
        actor_user_id=completion.user_id,
        partnership_id=habit.partnership_id,
        summary=f'{display_for_user(completion.user_id)} {verb} "{challenge.title}"',
        meta=meta,
    )


def build_timeline(
    partnership: Partnership,
    messages: Iterable[Message],
    habits: Iterable[Habit],
    challenges: Iterable[Challenge],
    completions: Iterable[Completion],
) -> List[TimelineEvent]:
    """
    Merge a partnership's history into one list, oldest first.

    Ties on timestamp are broken by event_id so the order is stable.
    """
    habits_by_id = {h.habit_id: h for h in habits if h.partnership_id == partnership.partnership_id}
    challenges_by_id = {c.challenge_id: c for c in challenges if c.habit_id in habits_by_id}

    events: List[TimelineEvent] = [
        map_message(m) for m in messages if m.partnership_id == partnership.partnership_id
    ]
    for habit in habits_by_id.values():
        events.extend(map_habit(habit, partnership))
    for challenge in challenges_by_id.values():
        events.append(map_challenge(challenge, habits_by_id[challenge.habit_id]))
    for completion in completions:
        challenge = challenges_by_id.get(completion.challenge_id)
        if challenge is None:
            continue
        events.append(map_completion(completion, challenge, habits_by_id[challenge.habit_id]))

    events.sort(key=lambda e: (e.ts, e.event_id))
    return events
