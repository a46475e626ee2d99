"""
fitbet/features/store/persistence.py

SQLAlchemy Core persistence for every challenge entity.

``EntityStore.transaction()`` yields a ``UnitOfWork`` whose repositories share one
session, so composite transitions (confirm payment + activate, close window +
skip accounting) commit or roll back together.

Status changes go through ``update_status(id, new, expected=...)``: the row only
changes when its current status matches, and the boolean result tells the caller
whether it won the race.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from fitbet.core.database import (
    bank_holder_elections,
    bank_holder_votes,
    build_session_factory,
    challenges,
    checkin_recommendations,
    checkin_windows,
    checkins,
    commitment_templates,
    get_engine,
    goals,
    participant_commitments,
    participants,
    payments,
    utc_now,
)
from fitbet.models.challenge import TERMINAL_STATUSES, Challenge
from fitbet.models.checkin import Checkin, CheckinAdvice, CheckinWindow
from fitbet.models.election import BankHolderElection, BankHolderVote
from fitbet.models.participant import CommitmentTemplate, Goal, Participant, Payment

Expected = Union[str, Sequence[str]]


def _status_clause(column, expected: Expected):
    if isinstance(expected, str):
        return column == expected
    return column.in_(tuple(expected))


class _Repository:
    def __init__(self, session: Session):
        self.session = session


class ChallengeRepository(_Repository):
    def create(self, **values) -> Challenge:
        values.setdefault("created_at", utc_now())
        result = self.session.execute(insert(challenges).values(**values))
        self.session.flush()
        return self.get(result.inserted_primary_key[0])

    def get(self, challenge_id: int) -> Optional[Challenge]:
        row = self.session.execute(
            select(challenges).where(challenges.c.id == challenge_id)
        ).first()
        return Challenge.from_row(row) if row else None

    def find_open_for_chat(self, chat_id: int) -> Optional[Challenge]:
        row = self.session.execute(
            select(challenges)
            .where(challenges.c.chat_id == chat_id)
            .where(challenges.c.status.not_in(TERMINAL_STATUSES))
            .order_by(challenges.c.created_at.desc())
        ).first()
        return Challenge.from_row(row) if row else None

    def list_due_for_finale(self, now: datetime) -> List[Challenge]:
        rows = self.session.execute(
            select(challenges)
            .where(challenges.c.status == "active")
            .where(challenges.c.ends_at <= now)
            .order_by(challenges.c.id)
        ).all()
        return [Challenge.from_row(r) for r in rows]

    def update_status(self, challenge_id: int, new: str, *, expected: Expected) -> bool:
        result = self.session.execute(
            update(challenges)
            .where(challenges.c.id == challenge_id)
            .where(_status_clause(challenges.c.status, expected))
            .values(status=new)
        )
        return result.rowcount == 1

    def assign_bank_holder(self, challenge_id: int, user_id: int, username: Optional[str]) -> bool:
        """Set the Bank Holder once and move a draft to ``pending_payments``."""
        result = self.session.execute(
            update(challenges)
            .where(challenges.c.id == challenge_id)
            .where(challenges.c.bank_holder_id.is_(None))
            .where(challenges.c.status.in_(("draft", "pending_payments")))
            .values(
                bank_holder_id=user_id,
                bank_holder_username=username,
                status="pending_payments",
            )
        )
        return result.rowcount == 1

    def activate(self, challenge_id: int, started_at: datetime, ends_at: datetime) -> bool:
        result = self.session.execute(
            update(challenges)
            .where(challenges.c.id == challenge_id)
            .where(challenges.c.status == "pending_payments")
            .values(status="active", started_at=started_at, ends_at=ends_at)
        )
        return result.rowcount == 1


class ParticipantRepository(_Repository):
    def create(self, **values) -> Participant:
        values.setdefault("joined_at", utc_now())
        result = self.session.execute(insert(participants).values(**values))
        self.session.flush()
        return self.get(result.inserted_primary_key[0])

    def get(self, participant_id: int) -> Optional[Participant]:
        row = self.session.execute(
            select(participants).where(participants.c.id == participant_id)
        ).first()
        return Participant.from_row(row) if row else None

    def find(self, challenge_id: int, user_id: int) -> Optional[Participant]:
        row = self.session.execute(
            select(participants)
            .where(participants.c.challenge_id == challenge_id)
            .where(participants.c.user_id == user_id)
        ).first()
        return Participant.from_row(row) if row else None

    def list_for_challenge(
        self, challenge_id: int, statuses: Optional[Expected] = None
    ) -> List[Participant]:
        stmt = select(participants).where(participants.c.challenge_id == challenge_id)
        if statuses is not None:
            stmt = stmt.where(_status_clause(participants.c.status, statuses))
        rows = self.session.execute(stmt.order_by(participants.c.id)).all()
        return [Participant.from_row(r) for r in rows]

    def list_stale_onboarding(self, cutoff: datetime) -> List[Participant]:
        rows = self.session.execute(
            select(participants)
            .where(participants.c.status == "onboarding")
            .where(participants.c.joined_at < cutoff)
            .order_by(participants.c.id)
        ).all()
        return [Participant.from_row(r) for r in rows]

    def update_fields(self, participant_id: int, **values) -> None:
        self.session.execute(
            update(participants).where(participants.c.id == participant_id).values(**values)
        )

    def update_status(
        self, participant_id: int, new: str, *, expected: Expected, **values
    ) -> bool:
        result = self.session.execute(
            update(participants)
            .where(participants.c.id == participant_id)
            .where(_status_clause(participants.c.status, expected))
            .values(status=new, **values)
        )
        return result.rowcount == 1

    def restart_onboarding(self, participant_id: int, joined_at: datetime, **values) -> bool:
        """Put a dropped participant back at the start of onboarding."""
        return self.update_status(
            participant_id,
            "onboarding",
            expected="dropped",
            joined_at=joined_at,
            onboarding_completed_at=None,
            track=None,
            start_weight=None,
            start_waist=None,
            height=None,
            start_photo_front_id=None,
            start_photo_left_id=None,
            start_photo_right_id=None,
            start_photo_back_id=None,
            **values,
        )

    def record_completed_checkin(self, participant_id: int) -> None:
        self.session.execute(
            update(participants)
            .where(participants.c.id == participant_id)
            .values(
                completed_checkins=participants.c.completed_checkins + 1,
                total_checkins=participants.c.total_checkins + 1,
                pending_checkin_window_id=None,
                pending_checkin_requested_at=None,
            )
        )

    def record_skipped_checkin(self, participant_id: int) -> int:
        """Increment skip counters in the database and return the new skip count."""
        self.session.execute(
            update(participants)
            .where(participants.c.id == participant_id)
            .values(
                skipped_checkins=participants.c.skipped_checkins + 1,
                total_checkins=participants.c.total_checkins + 1,
            )
        )
        return self.session.execute(
            select(participants.c.skipped_checkins).where(participants.c.id == participant_id)
        ).scalar_one()


class GoalRepository(_Repository):
    def get_for_participant(self, participant_id: int) -> Optional[Goal]:
        row = self.session.execute(
            select(goals).where(goals.c.participant_id == participant_id)
        ).first()
        return Goal.from_row(row) if row else None

    def upsert(self, participant_id: int, now: datetime, **values) -> Goal:
        if self.get_for_participant(participant_id) is None:
            self.session.execute(
                insert(goals).values(participant_id=participant_id, created_at=now, **values)
            )
        else:
            self.session.execute(
                update(goals)
                .where(goals.c.participant_id == participant_id)
                .values(updated_at=now, **values)
            )
        self.session.flush()
        return self.get_for_participant(participant_id)

    def delete_for_participant(self, participant_id: int) -> None:
        self.session.execute(delete(goals).where(goals.c.participant_id == participant_id))


class PaymentRepository(_Repository):
    def get_for_participant(self, participant_id: int) -> Optional[Payment]:
        row = self.session.execute(
            select(payments).where(payments.c.participant_id == participant_id)
        ).first()
        return Payment.from_row(row) if row else None

    def get_or_create(self, participant_id: int, now: datetime) -> Payment:
        existing = self.get_for_participant(participant_id)
        if existing is not None:
            return existing
        self.session.execute(
            insert(payments).values(participant_id=participant_id, status="pending", created_at=now)
        )
        self.session.flush()
        return self.get_for_participant(participant_id)

    def update_status(
        self, participant_id: int, new: str, *, expected: Expected, **values
    ) -> bool:
        result = self.session.execute(
            update(payments)
            .where(payments.c.participant_id == participant_id)
            .where(_status_clause(payments.c.status, expected))
            .values(status=new, **values)
        )
        return result.rowcount == 1

    def status_counts(self, challenge_id: int) -> dict:
        rows = self.session.execute(
            select(payments.c.status, func.count())
            .select_from(payments.join(participants, payments.c.participant_id == participants.c.id))
            .where(participants.c.challenge_id == challenge_id)
            .group_by(payments.c.status)
        ).all()
        return {status: count for status, count in rows}


class CheckinWindowRepository(_Repository):
    def create_many(self, challenge_id: int, spans: Iterable[Tuple[int, datetime, datetime]], now: datetime) -> int:
        existing = set(
            self.session.execute(
                select(checkin_windows.c.window_number).where(
                    checkin_windows.c.challenge_id == challenge_id
                )
            ).scalars()
        )
        rows = [
            {
                "challenge_id": challenge_id,
                "window_number": number,
                "opens_at": opens_at,
                "closes_at": closes_at,
                "status": "scheduled",
                "created_at": now,
            }
            for number, opens_at, closes_at in spans
            if number not in existing
        ]
        if rows:
            self.session.execute(insert(checkin_windows), rows)
        return len(rows)

    def get(self, window_id: int) -> Optional[CheckinWindow]:
        row = self.session.execute(
            select(checkin_windows).where(checkin_windows.c.id == window_id)
        ).first()
        return CheckinWindow.from_row(row) if row else None

    def list_for_challenge(self, challenge_id: int) -> List[CheckinWindow]:
        rows = self.session.execute(
            select(checkin_windows)
            .where(checkin_windows.c.challenge_id == challenge_id)
            .order_by(checkin_windows.c.window_number)
        ).all()
        return [CheckinWindow.from_row(r) for r in rows]

    def find_open_for_challenge(self, challenge_id: int) -> Optional[CheckinWindow]:
        row = self.session.execute(
            select(checkin_windows)
            .where(checkin_windows.c.challenge_id == challenge_id)
            .where(checkin_windows.c.status == "open")
            .order_by(checkin_windows.c.window_number)
        ).first()
        return CheckinWindow.from_row(row) if row else None

    def _active_challenge_windows(self):
        return (
            select(checkin_windows)
            .join(challenges, checkin_windows.c.challenge_id == challenges.c.id)
            .where(challenges.c.status == "active")
        )

    def list_due_to_open(self, now: datetime) -> List[CheckinWindow]:
        rows = self.session.execute(
            self._active_challenge_windows()
            .where(checkin_windows.c.status == "scheduled")
            .where(checkin_windows.c.opens_at <= now)
            .order_by(checkin_windows.c.opens_at, checkin_windows.c.id)
        ).all()
        return [CheckinWindow.from_row(r) for r in rows]

    def list_due_for_reminder(self, threshold: datetime) -> List[CheckinWindow]:
        rows = self.session.execute(
            self._active_challenge_windows()
            .where(checkin_windows.c.status == "open")
            .where(checkin_windows.c.reminder_sent_at.is_(None))
            .where(checkin_windows.c.closes_at <= threshold)
            .order_by(checkin_windows.c.closes_at, checkin_windows.c.id)
        ).all()
        return [CheckinWindow.from_row(r) for r in rows]

    def list_due_to_close(self, now: datetime) -> List[CheckinWindow]:
        rows = self.session.execute(
            select(checkin_windows)
            .where(checkin_windows.c.status == "open")
            .where(checkin_windows.c.closes_at <= now)
            .order_by(checkin_windows.c.closes_at, checkin_windows.c.id)
        ).all()
        return [CheckinWindow.from_row(r) for r in rows]

    def update_status(self, window_id: int, new: str, *, expected: Expected) -> bool:
        result = self.session.execute(
            update(checkin_windows)
            .where(checkin_windows.c.id == window_id)
            .where(_status_clause(checkin_windows.c.status, expected))
            .values(status=new)
        )
        return result.rowcount == 1

    def stamp_reminder(self, window_id: int, now: datetime) -> bool:
        result = self.session.execute(
            update(checkin_windows)
            .where(checkin_windows.c.id == window_id)
            .where(checkin_windows.c.reminder_sent_at.is_(None))
            .values(reminder_sent_at=now)
        )
        return result.rowcount == 1


class CheckinRepository(_Repository):
    def get(self, checkin_id: int) -> Optional[Checkin]:
        row = self.session.execute(select(checkins).where(checkins.c.id == checkin_id)).first()
        return Checkin.from_row(row) if row else None

    def find(self, participant_id: int, window_id: int) -> Optional[Checkin]:
        row = self.session.execute(
            select(checkins)
            .where(checkins.c.participant_id == participant_id)
            .where(checkins.c.window_id == window_id)
        ).first()
        return Checkin.from_row(row) if row else None

    def insert_if_absent(self, participant_id: int, window_id: int, **values) -> Optional[Checkin]:
        """Insert a checkin, returning None when one already exists for the pair.

        On PostgreSQL and SQLite the insert uses ON CONFLICT DO NOTHING so a racing
        duplicate is reported as None too; elsewhere the unique constraint raises
        IntegrityError for the caller to map.
        """
        row = {"participant_id": participant_id, "window_id": window_id, **values}
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            if self.find(participant_id, window_id) is not None:
                return None
            self.session.execute(insert(checkins).values(**row))
            self.session.flush()
            return self.find(participant_id, window_id)

        result = self.session.execute(
            dialect_insert(checkins)
            .values(**row)
            .on_conflict_do_nothing(index_elements=["participant_id", "window_id"])
        )
        if result.rowcount != 1:
            return None
        return self.find(participant_id, window_id)

    def list_for_participant(self, participant_id: int) -> List[Checkin]:
        rows = self.session.execute(
            select(checkins)
            .where(checkins.c.participant_id == participant_id)
            .order_by(checkins.c.submitted_at, checkins.c.id)
        ).all()
        return [Checkin.from_row(r) for r in rows]

    def latest_for_participant(self, participant_id: int) -> Optional[Checkin]:
        row = self.session.execute(
            select(checkins)
            .where(checkins.c.participant_id == participant_id)
            .order_by(checkins.c.submitted_at.desc(), checkins.c.id.desc())
        ).first()
        return Checkin.from_row(row) if row else None

    def participant_ids_for_window(self, window_id: int) -> set:
        return set(
            self.session.execute(
                select(checkins.c.participant_id).where(checkins.c.window_id == window_id)
            ).scalars()
        )


class RecommendationRepository(_Repository):
    def create(self, checkin_id: int, participant_id: int, advice: CheckinAdvice, now: datetime) -> None:
        self.session.execute(
            insert(checkin_recommendations).values(
                checkin_id=checkin_id,
                participant_id=participant_id,
                progress_assessment=advice.progress_assessment,
                body_composition_notes=advice.body_composition_notes,
                nutrition_advice=advice.nutrition_advice,
                training_advice=advice.training_advice,
                motivational_message=advice.motivational_message,
                warning_flags=list(advice.warning_flags),
                llm_model=advice.llm_model,
                processing_time_ms=advice.processing_time_ms,
                created_at=now,
            )
        )

    def get_for_checkin(self, checkin_id: int) -> Optional[CheckinAdvice]:
        row = self.session.execute(
            select(checkin_recommendations).where(checkin_recommendations.c.checkin_id == checkin_id)
        ).first()
        if row is None:
            return None
        m = row._mapping
        return CheckinAdvice(
            progress_assessment=m["progress_assessment"],
            body_composition_notes=m["body_composition_notes"],
            nutrition_advice=m["nutrition_advice"],
            training_advice=m["training_advice"],
            motivational_message=m["motivational_message"],
            warning_flags=list(m["warning_flags"] or []),
            llm_model=m["llm_model"],
            processing_time_ms=m["processing_time_ms"],
        )


class ElectionRepository(_Repository):
    def create(self, challenge_id: int, initiated_by: int, now: datetime) -> BankHolderElection:
        self.session.execute(
            insert(bank_holder_elections).values(
                challenge_id=challenge_id,
                initiated_by=initiated_by,
                status="in_progress",
                created_at=now,
            )
        )
        self.session.flush()
        return self.get_for_challenge(challenge_id)

    def get(self, election_id: int) -> Optional[BankHolderElection]:
        row = self.session.execute(
            select(bank_holder_elections).where(bank_holder_elections.c.id == election_id)
        ).first()
        return BankHolderElection.from_row(row) if row else None

    def get_for_challenge(self, challenge_id: int) -> Optional[BankHolderElection]:
        row = self.session.execute(
            select(bank_holder_elections).where(bank_holder_elections.c.challenge_id == challenge_id)
        ).first()
        return BankHolderElection.from_row(row) if row else None

    def list_stale(self, cutoff: datetime) -> List[BankHolderElection]:
        rows = self.session.execute(
            select(bank_holder_elections)
            .where(bank_holder_elections.c.status == "in_progress")
            .where(bank_holder_elections.c.created_at < cutoff)
            .order_by(bank_holder_elections.c.id)
        ).all()
        return [BankHolderElection.from_row(r) for r in rows]

    def update_status(self, election_id: int, new: str, *, expected: Expected, **values) -> bool:
        result = self.session.execute(
            update(bank_holder_elections)
            .where(bank_holder_elections.c.id == election_id)
            .where(_status_clause(bank_holder_elections.c.status, expected))
            .values(status=new, **values)
        )
        return result.rowcount == 1

    def reopen(self, election_id: int, initiated_by: int, now: datetime) -> bool:
        """Restart a completed election that produced no Bank Holder."""
        reopened = self.update_status(
            election_id,
            "in_progress",
            expected="completed",
            initiated_by=initiated_by,
            created_at=now,
            completed_at=None,
        )
        if reopened:
            self.session.execute(
                delete(bank_holder_votes).where(bank_holder_votes.c.election_id == election_id)
            )
        return reopened


class VoteRepository(_Repository):
    def create(self, election_id: int, voter_id: int, voted_for_id: int, now: datetime) -> BankHolderVote:
        """Insert a vote. A second vote by the same voter raises IntegrityError."""
        self.session.execute(
            insert(bank_holder_votes).values(
                election_id=election_id,
                voter_id=voter_id,
                voted_for_id=voted_for_id,
                voted_at=now,
            )
        )
        self.session.flush()
        return self.find(election_id, voter_id)

    def find(self, election_id: int, voter_id: int) -> Optional[BankHolderVote]:
        row = self.session.execute(
            select(bank_holder_votes)
            .where(bank_holder_votes.c.election_id == election_id)
            .where(bank_holder_votes.c.voter_id == voter_id)
        ).first()
        return BankHolderVote.from_row(row) if row else None

    def list_for_election(self, election_id: int) -> List[BankHolderVote]:
        rows = self.session.execute(
            select(bank_holder_votes)
            .where(bank_holder_votes.c.election_id == election_id)
            .order_by(bank_holder_votes.c.id)
        ).all()
        return [BankHolderVote.from_row(r) for r in rows]

    def count_for_election(self, election_id: int) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(bank_holder_votes)
            .where(bank_holder_votes.c.election_id == election_id)
        ).scalar_one()


class CommitmentRepository(_Repository):
    def list_active_templates(self) -> List[CommitmentTemplate]:
        rows = self.session.execute(
            select(commitment_templates)
            .where(commitment_templates.c.is_active.is_(True))
            .order_by(commitment_templates.c.id)
        ).all()
        return [CommitmentTemplate.from_row(r) for r in rows]

    def seed_templates(self, templates: Iterable[dict]) -> int:
        rows = [dict(t, is_active=True) for t in templates]
        if rows:
            self.session.execute(insert(commitment_templates), rows)
        return len(rows)

    def template_ids_for_participant(self, participant_id: int) -> List[int]:
        return list(
            self.session.execute(
                select(participant_commitments.c.template_id)
                .where(participant_commitments.c.participant_id == participant_id)
                .order_by(participant_commitments.c.template_id)
            ).scalars()
        )

    def replace_for_participant(self, participant_id: int, template_ids: Sequence[int], now: datetime) -> None:
        self.delete_for_participant(participant_id)
        if template_ids:
            self.session.execute(
                insert(participant_commitments),
                [
                    {"participant_id": participant_id, "template_id": tid, "created_at": now}
                    for tid in template_ids
                ],
            )

    def delete_for_participant(self, participant_id: int) -> None:
        self.session.execute(
            delete(participant_commitments).where(
                participant_commitments.c.participant_id == participant_id
            )
        )


# Children first, so foreign keys never dangle mid-wipe
WIPE_ORDER = (
    checkin_recommendations,
    checkins,
    checkin_windows,
    bank_holder_votes,
    bank_holder_elections,
    participant_commitments,
    payments,
    goals,
    participants,
    challenges,
    commitment_templates,
)


class UnitOfWork:
    """Repositories bound to one session; committed or rolled back as a whole."""

    def __init__(self, session: Session):
        self.session = session
        self.challenges = ChallengeRepository(session)
        self.participants = ParticipantRepository(session)
        self.goals = GoalRepository(session)
        self.payments = PaymentRepository(session)
        self.windows = CheckinWindowRepository(session)
        self.checkins = CheckinRepository(session)
        self.recommendations = RecommendationRepository(session)
        self.elections = ElectionRepository(session)
        self.votes = VoteRepository(session)
        self.commitments = CommitmentRepository(session)

    def wipe_all(self) -> dict:
        """Delete every row of every table. Returns deleted counts per table."""
        counts = {}
        for table in WIPE_ORDER:
            counts[table.name] = self.session.execute(delete(table)).rowcount
        return counts


class EntityStore:
    """
    Entry point to persistence.

    Usage:
        store = EntityStore(engine)
        with store.transaction() as uow:
            challenge = uow.challenges.get(challenge_id)
    """

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or get_engine()
        self._session_factory = build_session_factory(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        session = self._session_factory()
        try:
            yield UnitOfWork(session)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
