"""
buddyup/store/sql.py

SQL persistence for the accountability engine.

Same contract as MemoryStore, backed by the tables in core/database.py.
Conditional writes are single UPDATE ... WHERE statements, so the database
arbitrates races. Transient connection failures are retried a bounded number
of times before surfacing as StoreUnavailableError.
"""

import logging
import time
from contextlib import contextmanager
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from buddyup.core.config import settings
from buddyup.core.database import (
    challenges,
    completions,
    habits,
    invite_codes,
    messages,
    partnerships,
)
from buddyup.core.errors import StoreUnavailableError
from buddyup.core.logging import log_event
from buddyup.core.metrics import store_retries_total
from buddyup.models.challenge import Challenge, ChallengeStatus, Completion, FeelingTags
from buddyup.models.habit import Habit
from buddyup.models.message import Message
from buddyup.models.partnership import Partnership, PartnershipStatus
from buddyup.store.base import PreconditionFailed, UniqueViolation

T = TypeVar("T")

_DATETIME_FIELDS = (
    "created_at",
    "updated_at",
    "accepted_at",
    "passed_at",
    "last_completed_at",
    "resolved_at",
    "dismissed_at",
    "closed_at",
    "recorded_at",
)


def _to_db(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return value


def _row_values(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _to_db(value) for key, value in values.items()}


def _from_db(row) -> Dict[str, Any]:
    """Row mapping -> dict; SQLite hands back naive datetimes, stored as UTC."""
    data = dict(row._mapping)
    for field in _DATETIME_FIELDS:
        value = data.get(field)
        if isinstance(value, datetime) and value.tzinfo is None:
            data[field] = value.replace(tzinfo=timezone.utc)
    return data


def _conditions(table, expected: Dict[str, Any]) -> list:
    conds = []
    for field, value in expected.items():
        column = table.c[field]
        conds.append(column.is_(None) if value is None else column == _to_db(value))
    return conds


def _constraint_name(exc: IntegrityError) -> str:
    return str(getattr(exc, "orig", exc)).splitlines()[0]


class SqlStore:
    """
    SQLAlchemy-backed store.

    Args:
        engine: SQLAlchemy engine (see core.database.build_engine)
        retry_attempts: total tries per operation for transient failures
        retry_base_delay_ms: first backoff; doubles on each retry
    """

    def __init__(self, engine, retry_attempts: Optional[int] = None, retry_base_delay_ms: Optional[int] = None):
        self.engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        self.retry_attempts = max(1, retry_attempts if retry_attempts is not None else settings.STORE_RETRY_ATTEMPTS)
        self.retry_base_delay_ms = (
            retry_base_delay_ms if retry_base_delay_ms is not None else settings.STORE_RETRY_BASE_DELAY_MS
        )

    @contextmanager
    def _session(self):
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _run(self, operation: str, fn: Callable[[Any], T]) -> T:
        for attempt in range(1, self.retry_attempts + 1):
            try:
                with self._session() as session:
                    return fn(session)
            except IntegrityError as e:
                raise UniqueViolation(_constraint_name(e)) from e
            except OperationalError as e:
                if attempt >= self.retry_attempts:
                    log_event(
                        "error",
                        "store.unavailable",
                        event_type=operation,
                        error_code="store_unavailable",
                        extra={"attempts": attempt},
                    )
                    raise StoreUnavailableError(f"Store unavailable during {operation}") from e
                store_retries_total.inc(labels={"operation": operation})
                log_event("warning", "store.retry", event_type=operation, extra={"attempt": attempt})
                time.sleep(self.retry_base_delay_ms * (2 ** (attempt - 1)) / 1000.0)
        raise StoreUnavailableError(f"Store unavailable during {operation}")

    # Partnerships

    def insert_partnership(self, partnership: Partnership) -> Partnership:
        row = _row_values(partnership.model_dump())
        row["pair_key"] = partnership.pair_key

        def op(session):
            session.execute(insert(partnerships).values(**row))
            return partnership

        return self._run("insert_partnership", op)

    def get_partnership(self, partnership_id: str) -> Optional[Partnership]:
        def op(session):
            row = session.execute(
                select(partnerships).where(partnerships.c.partnership_id == partnership_id)
            ).first()
            return Partnership.model_validate(_from_db(row)) if row else None

        return self._run("get_partnership", op)

    def list_partnerships_for_user(self, user_id: str) -> List[Partnership]:
        def op(session):
            rows = session.execute(
                select(partnerships)
                .where((partnerships.c.party_a == user_id) | (partnerships.c.party_b == user_id))
                .order_by(partnerships.c.created_at)
            ).all()
            return [Partnership.model_validate(_from_db(r)) for r in rows]

        return self._run("list_partnerships", op)

    def update_partnership_if(
        self,
        partnership_id: str,
        expected_statuses: Sequence[PartnershipStatus],
        changes: Dict[str, Any],
    ) -> Optional[Partnership]:
        values = _row_values(changes)
        statuses = [_to_db(s) for s in expected_statuses]

        def op(session):
            result = session.execute(
                update(partnerships)
                .where(
                    and_(
                        partnerships.c.partnership_id == partnership_id,
                        partnerships.c.status.in_(statuses),
                    )
                )
                .values(**values)
            )
            if result.rowcount != 1:
                return None
            row = session.execute(
                select(partnerships).where(partnerships.c.partnership_id == partnership_id)
            ).first()
            return Partnership.model_validate(_from_db(row))

        return self._run("update_partnership", op)

    # Invite codes

    def get_invite_code(self, user_id: str) -> Optional[str]:
        def op(session):
            return session.execute(
                select(invite_codes.c.code).where(invite_codes.c.user_id == user_id)
            ).scalar()

        return self._run("get_invite_code", op)

    def insert_invite_code(self, user_id: str, code: str, created_at: datetime) -> str:
        def op(session):
            session.execute(
                insert(invite_codes).values(user_id=user_id, code=code, created_at=_to_db(created_at))
            )
            return code

        return self._run("insert_invite_code", op)

    def find_invite_code_owner(self, code: str) -> Optional[str]:
        def op(session):
            return session.execute(
                select(invite_codes.c.user_id).where(invite_codes.c.code == code)
            ).scalar()

        return self._run("find_invite_code_owner", op)

    # Habits

    def insert_habit(self, habit: Habit) -> Habit:
        row = _row_values(habit.model_dump())

        def op(session):
            session.execute(insert(habits).values(**row))
            return habit

        return self._run("insert_habit", op)

    @staticmethod
    def _select_habit(session, habit_id: str) -> Optional[Habit]:
        row = session.execute(select(habits).where(habits.c.habit_id == habit_id)).first()
        return Habit.model_validate(_from_db(row)) if row else None

    def get_habit(self, habit_id: str) -> Optional[Habit]:
        return self._run("get_habit", lambda session: self._select_habit(session, habit_id))

    def list_habits(self, partnership_ids: Iterable[str]) -> List[Habit]:
        ids = list(partnership_ids)
        if not ids:
            return []

        def op(session):
            rows = session.execute(
                select(habits).where(habits.c.partnership_id.in_(ids)).order_by(habits.c.created_at)
            ).all()
            return [Habit.model_validate(_from_db(r)) for r in rows]

        return self._run("list_habits", op)

    def update_habit_if(
        self,
        habit_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any],
        mark_applied: Optional[str] = None,
        message: Optional[Message] = None,
    ) -> Optional[Habit]:
        values = _row_values(changes)
        values["version"] = habits.c.version + 1
        conds = [habits.c.habit_id == habit_id] + _conditions(habits, expected)
        message_row = _row_values(message.model_dump(exclude={"seq"})) if message is not None else None

        def op(session):
            result = session.execute(update(habits).where(and_(*conds)).values(**values))
            if result.rowcount != 1:
                return None
            if mark_applied is not None:
                session.execute(
                    update(challenges)
                    .where(challenges.c.challenge_id == mark_applied)
                    .values(aggregate_applied=True)
                )
            if message_row is not None:
                session.execute(insert(messages).values(**message_row))
            return self._select_habit(session, habit_id)

        return self._run("update_habit", op)

    # Challenges

    def insert_challenge(self, challenge: Challenge, habit_guard: Dict[str, Any]) -> Challenge:
        row = _row_values(challenge.model_dump())
        conds = [habits.c.habit_id == challenge.habit_id] + _conditions(habits, habit_guard)

        def op(session):
            result = session.execute(
                update(habits).where(and_(*conds)).values(version=habits.c.version + 1)
            )
            if result.rowcount != 1:
                raise PreconditionFailed(challenge.habit_id)
            session.execute(insert(challenges).values(**row))
            return challenge

        return self._run("insert_challenge", op)

    def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        def op(session):
            row = session.execute(
                select(challenges).where(challenges.c.challenge_id == challenge_id)
            ).first()
            return Challenge.model_validate(_from_db(row)) if row else None

        return self._run("get_challenge", op)

    def find_challenge(self, habit_id: str, due_date: date) -> Optional[Challenge]:
        def op(session):
            row = session.execute(
                select(challenges).where(
                    and_(challenges.c.habit_id == habit_id, challenges.c.due_date == due_date)
                )
            ).first()
            return Challenge.model_validate(_from_db(row)) if row else None

        return self._run("find_challenge", op)

    def list_challenges(self, habit_ids: Iterable[str]) -> List[Challenge]:
        ids = list(habit_ids)
        if not ids:
            return []

        def op(session):
            rows = session.execute(
                select(challenges)
                .where(challenges.c.habit_id.in_(ids))
                .order_by(challenges.c.due_date, challenges.c.created_at)
            ).all()
            return [Challenge.model_validate(_from_db(r)) for r in rows]

        return self._run("list_challenges", op)

    def close_challenge_if_open(self, challenge_id: str, closed_at: datetime) -> Optional[Challenge]:
        def op(session):
            result = session.execute(
                update(challenges)
                .where(
                    and_(
                        challenges.c.challenge_id == challenge_id,
                        challenges.c.status == ChallengeStatus.OPEN.value,
                    )
                )
                .values(status=ChallengeStatus.CLOSED.value, closed_at=_to_db(closed_at))
            )
            if result.rowcount != 1:
                return None
            row = session.execute(
                select(challenges).where(challenges.c.challenge_id == challenge_id)
            ).first()
            return Challenge.model_validate(_from_db(row))

        return self._run("close_challenge", op)

    # Completions

    @staticmethod
    def _completion_from_row(row) -> Completion:
        data = _from_db(row)
        data["seq"] = data.pop("id")
        tags = data.get("feeling_tags")
        data["feeling_tags"] = FeelingTags.model_validate(tags) if tags else None
        return Completion.model_validate(data)

    def insert_completion(self, completion: Completion) -> Completion:
        row = _row_values(completion.model_dump(exclude={"seq", "feeling_tags"}))
        row["feeling_tags"] = completion.feeling_tags.model_dump() if completion.feeling_tags else None

        def op(session):
            result = session.execute(insert(completions).values(**row))
            return completion.model_copy(update={"seq": result.inserted_primary_key[0]})

        return self._run("insert_completion", op)

    def list_completions(self, challenge_ids: Iterable[str]) -> List[Completion]:
        ids = list(challenge_ids)
        if not ids:
            return []

        def op(session):
            rows = session.execute(
                select(completions).where(completions.c.challenge_id.in_(ids)).order_by(completions.c.id)
            ).all()
            return [self._completion_from_row(r) for r in rows]

        return self._run("list_completions", op)

    # Messages

    def insert_message(self, message: Message) -> Message:
        row = _row_values(message.model_dump(exclude={"seq"}))

        def op(session):
            result = session.execute(insert(messages).values(**row))
            return message.model_copy(update={"seq": result.inserted_primary_key[0]})

        return self._run("insert_message", op)

    def list_messages(self, partnership_id: str) -> List[Message]:
        def op(session):
            rows = session.execute(
                select(messages)
                .where(messages.c.partnership_id == partnership_id)
                .order_by(messages.c.created_at, messages.c.id)
            ).all()
            result = []
            for r in rows:
                data = _from_db(r)
                data["seq"] = data.pop("id")
                result.append(Message.model_validate(data))
            return result

        return self._run("list_messages", op)

    def ping(self) -> bool:
        def op(session):
            session.connection().exec_driver_sql("SELECT 1")
            return True

        return self._run("ping", op)

    def close(self) -> None:
        self.engine.dispose()
