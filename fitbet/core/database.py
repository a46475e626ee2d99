"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (QueuePool for servers, StaticPool for SQLite tests)
- Table definitions for every challenge entity
- Readiness helpers for the health probes
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    BigInteger,
    String,
    DateTime,
    Boolean,
    Float,
    JSON,
    Text,
    Index,
    ForeignKey,
    UniqueConstraint,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.types import TypeDecorator
import logging
import os

from fitbet.core.config import settings

logger = logging.getLogger("fitbet")


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine
_engine = None


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite drops tzinfo on the way back; values are stored as naive UTC and
    re-tagged on load so comparisons with ``datetime.now(timezone.utc)`` work.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def build_engine(url: str) -> Engine:
    """Create an engine with pooling suited to the URL's backend."""
    if url.startswith("sqlite"):
        # In-memory SQLite must share one connection across sessions
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        echo=False,  # Set to True for SQL query logging
    )


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    _engine = build_engine(url)
    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def build_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to ``engine``; sessions are committed explicitly."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_all_tables(engine: Optional[Engine] = None):
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine or get_engine())


def check_connection(engine: Optional[Engine] = None) -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        eng = engine or get_engine()
        with eng.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


_OPEN_CHALLENGE_PREDICATE = text("status NOT IN ('completed', 'cancelled')")

# Challenges: one per group chat while non-terminal
challenges = Table(
    'challenges',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('chat_id', BigInteger, nullable=False, index=True),
    Column('chat_title', Text, nullable=True),
    Column('creator_id', BigInteger, nullable=False),
    Column('duration_value', Integer, nullable=False, server_default='6'),
    Column('duration_unit', String(20), nullable=False, server_default='months'),
    Column('stake_amount', Float, nullable=False),
    Column('discipline_threshold', Float, nullable=False, server_default='0.8'),
    Column('max_skips', Integer, nullable=False, server_default='2'),
    Column('bank_holder_id', BigInteger, nullable=True),
    Column('bank_holder_username', String(100), nullable=True),
    Column('status', String(30), nullable=False, server_default='draft', index=True),
    Column('created_at', UTCDateTime(timezone=True), nullable=False, default=utc_now),
    Column('started_at', UTCDateTime(timezone=True), nullable=True),
    Column('ends_at', UTCDateTime(timezone=True), nullable=True),
    # At most one non-terminal challenge per chat
    Index(
        'uq_challenges_open_chat',
        'chat_id',
        unique=True,
        postgresql_where=_OPEN_CHALLENGE_PREDICATE,
        sqlite_where=_OPEN_CHALLENGE_PREDICATE,
    ),
    Index('idx_challenges_status_ends', 'status', 'ends_at'),
)

# Participants: one per (challenge, user)
participants = Table(
    'participants',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('challenge_id', Integer, ForeignKey('challenges.id'), nullable=False, index=True),
    Column('user_id', BigInteger, nullable=False, index=True),
    Column('username', String(100), nullable=True),
    Column('first_name', String(200), nullable=True),
    Column('track', String(10), nullable=True),  # 'cut' | 'bulk'
    Column('start_weight', Float, nullable=True),
    Column('start_waist', Float, nullable=True),
    Column('height', Float, nullable=True),
    Column('start_photo_front_id', Text, nullable=True),
    Column('start_photo_left_id', Text, nullable=True),
    Column('start_photo_right_id', Text, nullable=True),
    Column('start_photo_back_id', Text, nullable=True),
    Column('total_checkins', Integer, nullable=False, server_default='0'),
    Column('completed_checkins', Integer, nullable=False, server_default='0'),
    Column('skipped_checkins', Integer, nullable=False, server_default='0'),
    Column('pending_checkin_window_id', Integer, nullable=True),
    Column('pending_checkin_requested_at', UTCDateTime(timezone=True), nullable=True),
    Column('status', String(30), nullable=False, server_default='onboarding', index=True),
    Column('joined_at', UTCDateTime(timezone=True), nullable=False, default=utc_now),
    Column('onboarding_completed_at', UTCDateTime(timezone=True), nullable=True),
    UniqueConstraint('challenge_id', 'user_id', name='uq_participants_challenge_user'),
    Index('idx_participants_status_joined', 'status', 'joined_at'),
)

# Goals: one per participant
goals = Table(
    'goals',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('participant_id', Integer, ForeignKey('participants.id'), nullable=False, unique=True),
    Column('target_weight', Float, nullable=True),
    Column('target_waist', Float, nullable=True),
    Column('is_validated', Boolean, nullable=False, default=False),
    Column('validation_result', String(30), nullable=True),  # realistic | too_aggressive | too_easy
    Column('validation_feedback', Text, nullable=True),
    Column('validated_at', UTCDateTime(timezone=True), nullable=True),
    Column('created_at', UTCDateTime(timezone=True), nullable=False, default=utc_now),
    Column('updated_at', UTCDateTime(timezone=True), nullable=True),
)

# Payments: one per participant, status pending -> marked_paid -> confirmed
payments = Table(
    'payments',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('participant_id', Integer, ForeignKey('participants.id'), nullable=False, unique=True),
    Column('status', String(30), nullable=False, server_default='pending', index=True),
    Column('marked_paid_at', UTCDateTime(timezone=True), nullable=True),
    Column('confirmed_at', UTCDateTime(timezone=True), nullable=True),
    Column('confirmed_by', BigInteger, nullable=True),
    Column('created_at', UTCDateTime(timezone=True), nullable=False, default=utc_now),
)

# Check-in windows: pre-scheduled in bulk at activation
checkin_windows = Table(
    'checkin_windows',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('challenge_id', Integer, ForeignKey('challenges.id'), nullable=False, index=True),
    Column('window_number', Integer, nullable=False),
    Column('opens_at', UTCDateTime(timezone=True), nullable=False),
    Column('closes_at', UTCDateTime(timezone=True), nullable=False),
    Column('reminder_sent_at', UTCDateTime(timezone=True), nullable=True),
    Column('status', String(20), nullable=False, server_default='scheduled'),
    Column('created_at', UTCDateTime(timezone=True), nullable=False, default=utc_now),
    UniqueConstraint('challenge_id', 'window_number', name='uq_checkin_windows_challenge_number'),
    Index('idx_checkin_windows_status_opens', 'status', 'opens_at'),
    Index('idx_checkin_windows_status_closes', 'status', 'closes_at'),
)

# Check-ins: at most one per (participant, window)
checkins = Table(
    'checkins',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('participant_id', Integer, ForeignKey('participants.id'), nullable=False, index=True),
    Column('window_id', Integer, ForeignKey('checkin_windows.id'), nullable=False, index=True),
    Column('weight', Float, nullable=False),
    Column('waist', Float, nullable=False),
    Column('photo_front_id', Text, nullable=False),
    Column('photo_left_id', Text, nullable=False),
    Column('photo_right_id', Text, nullable=False),
    Column('photo_back_id', Text, nullable=False),
    Column('submitted_at', UTCDateTime(timezone=True), nullable=False, default=utc_now),
    UniqueConstraint('participant_id', 'window_id', name='uq_checkins_participant_window'),
)

# Advisory output stored per check-in (best effort)
checkin_recommendations = Table(
    'checkin_recommendations',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('checkin_id', Integer, ForeignKey('checkins.id'), nullable=False, unique=True),
    Column('participant_id', Integer, ForeignKey('participants.id'), nullable=False, index=True),
    Column('progress_assessment', Text, nullable=False),
    Column('body_composition_notes', Text, nullable=False),
    Column('nutrition_advice', Text, nullable=False),
    Column('training_advice', Text, nullable=False),
    Column('motivational_message', Text, nullable=False),
    Column('warning_flags', JSON, nullable=True),
    Column('llm_model', String(100), nullable=False),
    Column('processing_time_ms', Integer, nullable=True),
    Column('created_at', UTCDateTime(timezone=True), nullable=False, default=utc_now),
)

# Bank Holder elections: one per challenge
bank_holder_elections = Table(
    'bank_holder_elections',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('challenge_id', Integer, ForeignKey('challenges.id'), nullable=False, unique=True),
    Column('initiated_by', BigInteger, nullable=False),
    Column('status', String(20), nullable=False, server_default='in_progress', index=True),
    Column('created_at', UTCDateTime(timezone=True), nullable=False, default=utc_now),
    Column('completed_at', UTCDateTime(timezone=True), nullable=True),
)

# Bank Holder votes: one per (election, voter)
bank_holder_votes = Table(
    'bank_holder_votes',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('election_id', Integer, ForeignKey('bank_holder_elections.id'), nullable=False, index=True),
    Column('voter_id', BigInteger, nullable=False),
    Column('voted_for_id', BigInteger, nullable=False),
    Column('voted_at', UTCDateTime(timezone=True), nullable=False, default=utc_now),
    UniqueConstraint('election_id', 'voter_id', name='uq_bank_holder_votes_election_voter'),
)

# Commitment catalogue
commitment_templates = Table(
    'commitment_templates',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('name', String(200), nullable=False),
    Column('description', Text, nullable=False),
    Column('category', String(50), nullable=False),  # nutrition | exercise | lifestyle
    Column('is_active', Boolean, nullable=False, default=True),
)

# Participant's chosen commitments (informational)
participant_commitments = Table(
    'participant_commitments',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('participant_id', Integer, ForeignKey('participants.id'), nullable=False, index=True),
    Column('template_id', Integer, ForeignKey('commitment_templates.id'), nullable=False),
    Column('created_at', UTCDateTime(timezone=True), nullable=False, default=utc_now),
    UniqueConstraint('participant_id', 'template_id', name='uq_participant_commitments_participant_template'),
)
