"""
Database configuration and table definitions.

This module provides:
- SQLAlchemy engine construction with sane pooling defaults
- Test database support
- Table definitions for the accountability engine
"""
from typing import Optional
from sqlalchemy import create_engine, false, MetaData, Table, Column, Boolean, Integer, String, Date, DateTime, JSON, Text, Index, UniqueConstraint
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func
import logging
import os

from buddyup.core.config import settings

logger = logging.getLogger("buddyup")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def build_engine(url: str):
    """Create an engine; SQLite (tests, local dev) shares one connection."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    logger.info("database.engine", extra={"dialect": url.split(":", 1)[0]})
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=False,  # Set to True for SQL query logging
    )


def create_all_tables(engine):
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine)


def drop_all_tables(engine):
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    metadata.drop_all(bind=engine)


# Partnerships: two users, one live pairing per unordered pair
partnerships = Table(
    'partnerships',
    metadata,
    Column('partnership_id', String(100), primary_key=True),
    Column('party_a', String(100), nullable=False, index=True),
    Column('party_b', String(100), nullable=False, index=True),
    Column('pair_key', String(201), nullable=False),
    Column('status', String(20), nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    Column('accepted_at', DateTime(timezone=True), nullable=True),
    Index('idx_partnerships_pair_key', 'pair_key'),
)

# At most one PENDING/ACTIVE partnership per pair
Index(
    'uq_partnerships_live_pair',
    partnerships.c.pair_key,
    unique=True,
    postgresql_where=partnerships.c.status.in_(['PENDING', 'ACTIVE']),
    sqlite_where=partnerships.c.status.in_(['PENDING', 'ACTIVE']),
)

# Invite codes: one shareable code per user
invite_codes = Table(
    'invite_codes',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('code', String(32), nullable=False, unique=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Habits: the turn pointer and streak counters live here (CAS on version)
habits = Table(
    'habits',
    metadata,
    Column('habit_id', String(100), primary_key=True),
    Column('partnership_id', String(100), nullable=False, index=True),
    Column('name', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('category', String(100), nullable=False),
    Column('frequency', String(20), nullable=False),
    Column('custom_days', JSON, nullable=True),
    Column('duration_days', Integer, nullable=True),
    Column('end_date', Date, nullable=True),
    Column('created_by', String(100), nullable=False, index=True),
    Column('status', String(20), nullable=False, index=True),
    Column('current_turn', String(10), nullable=False),
    Column('streak_count', Integer, nullable=False, server_default='0'),
    Column('longest_streak', Integer, nullable=False, server_default='0'),
    Column('completed_cycles', Integer, nullable=False, server_default='0'),
    Column('total_records', Integer, nullable=False, server_default='0'),
    Column('last_applied_seq', Integer, nullable=False, server_default='0'),
    Column('pass_count', Integer, nullable=False, server_default='0'),
    Column('last_passed_by', String(100), nullable=True),
    Column('passed_at', DateTime(timezone=True), nullable=True),
    Column('last_completed_at', DateTime(timezone=True), nullable=True),
    Column('start_date', Date, nullable=True),
    Column('resolved_at', DateTime(timezone=True), nullable=True),
    Column('dismissed_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    Column('version', Integer, nullable=False, server_default='0'),
    Index('idx_habits_partnership_status', 'partnership_id', 'status'),
)

# Challenges: one per habit per calendar day
challenges = Table(
    'challenges',
    metadata,
    Column('challenge_id', String(100), primary_key=True),
    Column('habit_id', String(100), nullable=False, index=True),
    Column('created_by', String(100), nullable=False),
    Column('title', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('due_date', Date, nullable=False),
    Column('status', String(20), nullable=False),
    Column('closed_at', DateTime(timezone=True), nullable=True),
    Column('aggregate_applied', Boolean, nullable=False, server_default=false()),
    Column('created_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('habit_id', 'due_date', name='uq_challenges_habit_due_date'),
    Index('idx_challenges_habit_due', 'habit_id', 'due_date'),
)

# Completions: one outcome per (challenge, user); id doubles as write order
completions = Table(
    'completions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('completion_id', String(100), nullable=False, unique=True),
    Column('challenge_id', String(100), nullable=False, index=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('status', String(20), nullable=False),
    Column('reflection', Text, nullable=True),
    Column('feeling_tags', JSON, nullable=True),
    Column('photo_ref', String(500), nullable=True),
    Column('recorded_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('challenge_id', 'user_id', name='uq_completions_challenge_user'),
)

# Messages: append-only partnership chat
messages = Table(
    'messages',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('message_id', String(100), nullable=False, unique=True),
    Column('partnership_id', String(100), nullable=False, index=True),
    Column('sender_id', String(100), nullable=False),
    Column('content', Text, nullable=False),
    Column('message_type', String(20), nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Index('idx_messages_partnership_created', 'partnership_id', 'created_at', 'id'),
)
