"""
buddyup/features/partnerships/service.py
Partnership service: invite, accept/decline, invite codes, pause/resume/end.

The store enforces "at most one PENDING/ACTIVE partnership per pair"; this
service turns its UniqueViolation into InvalidStateError(partnership_exists).
"""

import secrets
import uuid
from typing import List, Optional

from buddyup.core.errors import InvalidStateError, NotAuthorizedError, NotFoundError, ValidationError
from buddyup.core.logging import log_event
from buddyup.core.metrics import cas_conflicts_total, engine_transitions_total
from buddyup.core.tracing import start_span
from buddyup.features.notifications.dispatcher import NotificationKind
from buddyup.features.users.identity import display_for_user, is_valid_user_id
from buddyup.models.partnership import Partnership, PartnershipStatus
from buddyup.store.base import UniqueViolation

INVITE_CODE_BYTES = 4
INVITE_CODE_ATTEMPTS = 5

# current status -> statuses a member may move it to
_STATUS_TRANSITIONS = {
    PartnershipStatus.ACTIVE: (PartnershipStatus.PAUSED, PartnershipStatus.COMPLETED),
    PartnershipStatus.PAUSED: (PartnershipStatus.ACTIVE, PartnershipStatus.COMPLETED),
}


def generate_invite_code() -> str:
    """8 uppercase hex characters."""
    return secrets.token_hex(INVITE_CODE_BYTES).upper()


def _partnership_exists() -> InvalidStateError:
    return InvalidStateError("A partnership with this user already exists", code="partnership_exists")


class PartnershipService:
    def __init__(self, store, dispatcher, clock):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock

    # Lookups shared by the other services

    def load(self, partnership_id: str) -> Partnership:
        partnership = self.store.get_partnership(partnership_id)
        if partnership is None:
            raise NotFoundError("Partnership not found")
        return partnership

    def require_member(self, partnership_id: str, user_id: str) -> Partnership:
        partnership = self.load(partnership_id)
        if not partnership.is_member(user_id):
            raise NotAuthorizedError("Not a member of this partnership")
        return partnership

    def require_active_member(self, partnership_id: str, user_id: str) -> Partnership:
        partnership = self.require_member(partnership_id, user_id)
        if partnership.status != PartnershipStatus.ACTIVE:
            raise InvalidStateError("Partnership is not active")
        return partnership

    # Operations

    def invite(self, initiator_id: str, receiver_id: str) -> Partnership:
        """
        Create a PENDING partnership from initiator to receiver.

        Raises:
            ValidationError: self-invite or malformed user id
            InvalidStateError: the pair already has a PENDING/ACTIVE partnership
        """
        receiver_id = (receiver_id or "").strip()
        if not is_valid_user_id(receiver_id):
            raise ValidationError("receiver_id is required")
        if receiver_id == initiator_id:
            raise ValidationError("You cannot invite yourself")

        now = self.clock.now()
        partnership = Partnership(
            partnership_id=str(uuid.uuid4()),
            party_a=initiator_id,
            party_b=receiver_id,
            status=PartnershipStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        with start_span("partnership.invite", {"user_id": initiator_id}):
            try:
                partnership = self.store.insert_partnership(partnership)
            except UniqueViolation:
                raise _partnership_exists()

        engine_transitions_total.inc(labels={"type": "partnership_invited"})
        log_event(
            "info",
            "partnership.invited",
            user_id=initiator_id,
            partnership_id=partnership.partnership_id,
            event_type="partnership_invited",
        )
        self.dispatcher.send(
            receiver_id,
            NotificationKind.BUDDY_INVITE_RECEIVED,
            {"actor_name": display_for_user(initiator_id), "partnership_id": partnership.partnership_id},
        )
        return partnership

    def accept(self, partnership_id: str, user_id: str) -> Partnership:
        """Receiver accepts a PENDING invite."""
        partnership = self.load(partnership_id)
        if user_id != partnership.party_b:
            raise NotAuthorizedError("Only the invited user can accept")
        if partnership.status != PartnershipStatus.PENDING:
            raise InvalidStateError("Invite is no longer pending")

        now = self.clock.now()
        with start_span("partnership.accept", {"partnership_id": partnership_id}):
            updated = self.store.update_partnership_if(
                partnership_id,
                [PartnershipStatus.PENDING],
                {"status": PartnershipStatus.ACTIVE, "accepted_at": now, "updated_at": now},
            )
        if updated is None:
            cas_conflicts_total.inc(labels={"entity": "partnership"})
            raise InvalidStateError("Invite is no longer pending")

        engine_transitions_total.inc(labels={"type": "partnership_accepted"})
        log_event("info", "partnership.accepted", user_id=user_id, partnership_id=partnership_id, event_type="partnership_accepted")
        self.dispatcher.send(
            updated.party_a,
            NotificationKind.BUDDY_INVITE_ACCEPTED,
            {"actor_name": display_for_user(user_id), "partnership_id": partnership_id},
        )
        return updated

    def decline(self, partnership_id: str, user_id: str) -> Partnership:
        partnership = self.load(partnership_id)
        if user_id != partnership.party_b:
            raise NotAuthorizedError("Only the invited user can decline")
        if partnership.status != PartnershipStatus.PENDING:
            raise InvalidStateError("Invite is no longer pending")

        updated = self.store.update_partnership_if(
            partnership_id,
            [PartnershipStatus.PENDING],
            {"status": PartnershipStatus.COMPLETED, "updated_at": self.clock.now()},
        )
        if updated is None:
            cas_conflicts_total.inc(labels={"entity": "partnership"})
            raise InvalidStateError("Invite is no longer pending")

        engine_transitions_total.inc(labels={"type": "partnership_declined"})
        log_event("info", "partnership.declined", user_id=user_id, partnership_id=partnership_id, event_type="partnership_declined")
        return updated

    def get_or_create_invite_code(self, user_id: str) -> str:
        existing = self.store.get_invite_code(user_id)
        if existing:
            return existing

        for _ in range(INVITE_CODE_ATTEMPTS):
            try:
                return self.store.insert_invite_code(user_id, generate_invite_code(), self.clock.now())
            except UniqueViolation:
                # Either a concurrent request created ours, or the code collided.
                existing = self.store.get_invite_code(user_id)
                if existing:
                    return existing
        raise InvalidStateError("Could not allocate an invite code, try again")

    def join_by_code(self, user_id: str, code: str) -> Partnership:
        """
        Accept someone's invite code: creates an ACTIVE partnership at once,
        with the code owner as initiator.

        Raises:
            NotFoundError: unknown code
            ValidationError: your own code
            InvalidStateError: the pair already has a live partnership
        """
        normalized = (code or "").strip().upper()
        owner_id: Optional[str] = self.store.find_invite_code_owner(normalized) if normalized else None
        if owner_id is None:
            raise NotFoundError("Invalid invite code")
        if owner_id == user_id:
            raise ValidationError("You cannot use your own invite code")

        now = self.clock.now()
        partnership = Partnership(
            partnership_id=str(uuid.uuid4()),
            party_a=owner_id,
            party_b=user_id,
            status=PartnershipStatus.ACTIVE,
            created_at=now,
            updated_at=now,
            accepted_at=now,
        )
        try:
            partnership = self.store.insert_partnership(partnership)
        except UniqueViolation:
            raise _partnership_exists()

        engine_transitions_total.inc(labels={"type": "partnership_joined"})
        log_event("info", "partnership.joined", user_id=user_id, partnership_id=partnership.partnership_id, event_type="partnership_joined")
        self.dispatcher.send(
            owner_id,
            NotificationKind.BUDDY_INVITE_ACCEPTED,
            {"actor_name": display_for_user(user_id), "partnership_id": partnership.partnership_id},
        )
        return partnership

    def update_status(self, partnership_id: str, user_id: str, status: PartnershipStatus) -> Partnership:
        """Pause, resume or end a partnership. Either member may do it."""
        partnership = self.require_member(partnership_id, user_id)
        allowed = _STATUS_TRANSITIONS.get(partnership.status, ())
        if status not in allowed:
            raise InvalidStateError(f"Cannot move partnership from {partnership.status.value} to {status.value}")

        try:
            updated = self.store.update_partnership_if(
                partnership_id,
                [partnership.status],
                {"status": status, "updated_at": self.clock.now()},
            )
        except UniqueViolation:
            raise _partnership_exists()
        if updated is None:
            cas_conflicts_total.inc(labels={"entity": "partnership"})
            raise InvalidStateError("Partnership changed, reload and try again")

        event_type = f"partnership_{status.value.lower()}"
        engine_transitions_total.inc(labels={"type": event_type})
        log_event("info", "partnership.status_changed", user_id=user_id, partnership_id=partnership_id, event_type=event_type)

        kind = None
        if status == PartnershipStatus.PAUSED:
            kind = NotificationKind.PARTNERSHIP_PAUSED
        elif status == PartnershipStatus.ACTIVE:
            kind = NotificationKind.PARTNERSHIP_RESUMED
        if kind is not None:
            self.dispatcher.send(
                updated.other_member(user_id),
                kind,
                {"actor_name": display_for_user(user_id), "partnership_id": partnership_id},
            )
        return updated

    def get(self, partnership_id: str, user_id: str) -> Partnership:
        partnership = self.store.get_partnership(partnership_id)
        if partnership is None or not partnership.is_member(user_id):
            raise NotFoundError("Partnership not found")
        return partnership

    def list_for_user(self, user_id: str) -> List[Partnership]:
        return self.store.list_partnerships_for_user(user_id)
