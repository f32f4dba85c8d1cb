"""
buddyup/features/messages/service.py
Partnership chat: append-only messages between the two members.
"""

import uuid
from typing import List

from buddyup.core.errors import ValidationError
from buddyup.core.logging import log_event
from buddyup.features.notifications.dispatcher import NotificationKind
from buddyup.features.users.identity import display_for_user
from buddyup.models.message import Message, MessageType
from buddyup.models.partnership import Partnership

MAX_MESSAGE_LENGTH = 4000


class MessageService:
    def __init__(self, store, dispatcher, clock, partnerships):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.partnerships = partnerships

    def post_message(self, partnership_id: str, sender_id: str, content: str) -> Message:
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message content is required")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message is longer than {MAX_MESSAGE_LENGTH} characters")

        partnership = self.partnerships.require_active_member(partnership_id, sender_id)
        message = self._append(partnership, sender_id, text, MessageType.TEXT)

        log_event("info", "message.posted", user_id=sender_id, partnership_id=partnership_id, event_type="message_posted")
        self.dispatcher.send(
            partnership.other_member(sender_id),
            NotificationKind.NEW_MESSAGE,
            {"actor_name": display_for_user(sender_id), "partnership_id": partnership_id},
        )
        return message

    def build_system(self, partnership: Partnership, sender_id: str, content: str) -> Message:
        """Unsaved engine-generated message (turn passes); stored with the write it announces."""
        return self._build(partnership, sender_id, content, MessageType.SYSTEM)

    def _build(self, partnership: Partnership, sender_id: str, content: str, message_type: MessageType) -> Message:
        return Message(
            message_id=str(uuid.uuid4()),
            partnership_id=partnership.partnership_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            created_at=self.clock.now(),
        )

    def _append(self, partnership: Partnership, sender_id: str, content: str, message_type: MessageType) -> Message:
        return self.store.insert_message(self._build(partnership, sender_id, content, message_type))

    def list_messages(self, partnership_id: str, user_id: str) -> List[Message]:
        self.partnerships.require_member(partnership_id, user_id)
        return self.store.list_messages(partnership_id)
