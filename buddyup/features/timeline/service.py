"""Timeline service: partnership chat history with habit and goal events.

Read-only projection over the store; mapping lives in mapping.py.
"""

import logging

from buddyup.core.tracing import start_span
from buddyup.features.timeline.mapping import build_timeline
from buddyup.features.timeline.models import TimelineResponse

logger = logging.getLogger("buddyup")


class TimelineService:
    """Service for partnership timeline aggregation."""

    def __init__(self, store, partnerships):
        self.store = store
        self.partnerships = partnerships

    def get_timeline(self, partnership_id: str, user_id: str, limit: int = 500) -> TimelineResponse:
        """Get timeline events for a partnership.

        Args:
            partnership_id: Partnership to fetch timeline for
            user_id: Viewer; must be a member
            limit: Maximum events to return, most recent kept (max 1000)

        Returns:
            TimelineResponse with events oldest first
        """
        with start_span("timeline.get_timeline", {"partnership_id": partnership_id, "limit": limit}):
            partnership = self.partnerships.require_member(partnership_id, user_id)
            limit = max(1, min(limit, 1000))

            messages = self.store.list_messages(partnership_id)
            habits = self.store.list_habits([partnership_id])
            challenges = self.store.list_challenges([h.habit_id for h in habits])
            completions = self.store.list_completions([c.challenge_id for c in challenges])

            events = build_timeline(partnership, messages, habits, challenges, completions)
            if len(events) > limit:
                logger.debug("timeline.truncated", extra={"partnership_id": partnership_id})
                events = events[-limit:]
            return TimelineResponse(partnership_id=partnership_id, events=events)
