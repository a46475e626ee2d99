"""
Challenge lifecycle: challenge, participant and payment state machines.

Challenge:   draft -> pending_payments -> active -> completed
             draft | pending_payments -> cancelled
Participant: onboarding -> pending_payment -> payment_marked -> active -> completed
             onboarding -> dropped (timeout), active -> disqualified (skips)
Payment:     pending -> marked_paid -> confirmed

Every operation returns (result, effects). Effects carry the chat messages to
send once the transaction has committed; nothing here talks to the chat
platform directly.
"""

from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError

from fitbet.core.clock import Clock, SystemClock
from fitbet.core.config import Settings, settings as default_settings
from fitbet.core.errors import GuardViolationError, NotFoundError, PermissionError, ValidationError
from fitbet.core.logging import log_event
from fitbet.features.advisor.service import (
    AdvisoryOracle,
    GoalValidation,
    GoalValidationParams,
    NullAdvisor,
    fallback_goal_validation,
)
from fitbet.features.checkins.scheduler import checkin_period, generate_windows, window_length
from fitbet.features.commitments.catalog import seed_commitments
from fitbet.features.elections.engine import eligible_participants
from fitbet.features.elections.service import ElectionService, payment_prompts
from fitbet.features.jobs.phases import PhaseResult, run_isolated
from fitbet.features.notifications import messages
from fitbet.features.onboarding.progress import (
    MAX_COMMITMENTS,
    MIN_COMMITMENTS,
    OnboardingProgress,
    derive_progress,
)
from fitbet.features.scoring.engine import ParticipantScore, ScoringEngine
from fitbet.features.store.persistence import EntityStore, UnitOfWork
from fitbet.models.challenge import (
    DURATION_UNITS,
    Challenge,
    duration_to_months,
    normalize_duration_unit,
)
from fitbet.models.effects import Effect, OutboundMessage
from fitbet.models.participant import (
    PHOTO_SLOTS,
    UNPAID_STATUSES,
    CommitmentTemplate,
    Goal,
    Participant,
    Payment,
)

ONBOARDING_FIELDS = (
    "track",
    "start_weight",
    "start_waist",
    "height",
    *(f"start_photo_{slot}_id" for slot in PHOTO_SLOTS),
)
_METRIC_FIELDS = ("start_weight", "start_waist", "height")


class LifecycleService:
    def __init__(
        self,
        store: EntityStore,
        clock: Optional[Clock] = None,
        advisor: Optional[AdvisoryOracle] = None,
        config: Optional[Settings] = None,
        elections: Optional[ElectionService] = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.advisor = advisor or NullAdvisor()
        self.config = config or default_settings
        self.elections = elections or ElectionService(store, self.clock, self.config)

    # Internal helpers -------------------------------------------------
    @staticmethod
    def _challenge(uow: UnitOfWork, challenge_id: int) -> Challenge:
        challenge = uow.challenges.get(challenge_id)
        if challenge is None:
            raise NotFoundError(f"Challenge {challenge_id} not found")
        return challenge

    @staticmethod
    def _participant(uow: UnitOfWork, participant_id: int) -> Participant:
        participant = uow.participants.get(participant_id)
        if participant is None:
            raise NotFoundError(f"Participant {participant_id} not found")
        return participant

    @classmethod
    def _onboarding_participant(cls, uow: UnitOfWork, participant_id: int) -> Participant:
        participant = cls._participant(uow, participant_id)
        if participant.status != "onboarding":
            raise GuardViolationError("not_onboarding", "Onboarding is already finished")
        return participant

    # Challenge --------------------------------------------------------
    def create_challenge(
        self,
        *,
        chat_id: int,
        creator_id: int,
        stake_amount: float,
        duration_value: int = 6,
        duration_unit: Optional[str] = None,
        discipline_threshold: Optional[float] = None,
        max_skips: Optional[int] = None,
        chat_title: Optional[str] = None,
    ) -> Tuple[Challenge, List[Effect]]:
        if duration_unit is not None and duration_unit not in DURATION_UNITS:
            raise ValidationError(f"Unknown duration unit: {duration_unit}")
        unit = normalize_duration_unit(duration_unit or self.config.CHALLENGE_DURATION_UNIT)
        threshold = self.config.DEFAULT_DISCIPLINE_THRESHOLD if discipline_threshold is None else discipline_threshold
        skips = self.config.DEFAULT_MAX_SKIPS if max_skips is None else max_skips

        if stake_amount is None or stake_amount <= 0:
            raise ValidationError("Stake must be positive")
        if not 0 < threshold <= 1:
            raise ValidationError("Discipline threshold must be in (0, 1]")
        if skips < 0:
            raise ValidationError("max_skips cannot be negative")
        if duration_value is None or duration_value <= 0:
            raise ValidationError("Duration must be positive")

        try:
            with self.store.transaction() as uow:
                if uow.challenges.find_open_for_chat(chat_id) is not None:
                    raise GuardViolationError("challenge_exists", "This chat already has an ongoing challenge")
                challenge = uow.challenges.create(
                    chat_id=chat_id,
                    chat_title=chat_title,
                    creator_id=creator_id,
                    duration_value=duration_value,
                    duration_unit=unit,
                    stake_amount=stake_amount,
                    discipline_threshold=threshold,
                    max_skips=skips,
                    status="draft",
                    created_at=self.clock.now(),
                )
        except IntegrityError:
            # Lost the race against another create for the same chat
            raise GuardViolationError("challenge_exists", "This chat already has an ongoing challenge")

        log_event("info", "Challenge created", challenge_id=challenge.id, user_id=creator_id,
                  event_type="challenge.created")
        return challenge, [
            Effect(
                type="challenge.created",
                payload={"challengeId": challenge.id, "chatId": chat_id},
                messages=[OutboundMessage(chat_id, messages.challenge_created(challenge))],
            )
        ]

    def cancel_challenge(self, challenge_id: int, actor_id: int) -> Tuple[Challenge, List[Effect]]:
        with self.store.transaction() as uow:
            challenge = self._challenge(uow, challenge_id)
            if challenge.creator_id != actor_id:
                raise PermissionError("not_creator", "Only the challenge creator can cancel it")
            if not uow.challenges.update_status(challenge_id, "cancelled", expected=("draft", "pending_payments")):
                raise GuardViolationError("challenge_not_cancellable", "Only challenges that have not started can be cancelled")
            election = uow.elections.get_for_challenge(challenge_id)
            if election is not None:
                uow.elections.update_status(election.id, "cancelled", expected="in_progress")
            challenge = uow.challenges.get(challenge_id)

        log_event("info", "Challenge cancelled", challenge_id=challenge_id, user_id=actor_id,
                  event_type="challenge.cancelled")
        return challenge, [
            Effect(
                type="challenge.cancelled",
                payload={"challengeId": challenge_id},
                messages=[OutboundMessage(challenge.chat_id, messages.challenge_cancelled(challenge))],
            )
        ]

    # Participants -----------------------------------------------------
    def join_challenge(
        self,
        challenge_id: int,
        user_id: int,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
    ) -> Tuple[Participant, List[Effect]]:
        now = self.clock.now()
        restarted = False
        try:
            with self.store.transaction() as uow:
                challenge = self._challenge(uow, challenge_id)
                if not challenge.accepts_participants:
                    raise GuardViolationError("challenge_not_open", "The challenge no longer accepts participants")

                existing = uow.participants.find(challenge_id, user_id)
                if existing is None:
                    participant = uow.participants.create(
                        challenge_id=challenge_id,
                        user_id=user_id,
                        username=username,
                        first_name=first_name,
                        status="onboarding",
                        joined_at=now,
                    )
                elif existing.status == "onboarding":
                    raise GuardViolationError("already_onboarding", "Onboarding already started, continue in private chat")
                elif existing.status == "dropped":
                    if not uow.participants.restart_onboarding(
                        existing.id, now, username=username or existing.username,
                        first_name=first_name or existing.first_name,
                    ):
                        raise GuardViolationError("already_joined")
                    uow.goals.delete_for_participant(existing.id)
                    uow.commitments.delete_for_participant(existing.id)
                    participant = uow.participants.get(existing.id)
                    restarted = True
                else:
                    raise GuardViolationError("already_joined", "You already take part in this challenge")
        except IntegrityError:
            raise GuardViolationError("already_joined", "You already take part in this challenge")

        log_event("info", "Participant joined", challenge_id=challenge_id, user_id=user_id,
                  event_type="participant.joined", extra={"restarted": restarted})
        return participant, [
            Effect(
                type="participant.joined",
                payload={"challengeId": challenge_id, "participantId": participant.id, "restarted": restarted},
                messages=[OutboundMessage(user_id, messages.joined(challenge, restarted=restarted))],
            )
        ]

    def get_onboarding_progress(self, participant_id: int) -> OnboardingProgress:
        with self.store.transaction() as uow:
            participant = self._participant(uow, participant_id)
            return derive_progress(
                participant,
                uow.goals.get_for_participant(participant_id),
                uow.commitments.template_ids_for_participant(participant_id),
            )

    def save_onboarding_data(self, participant_id: int, **data) -> Participant:
        unknown = set(data) - set(ONBOARDING_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown onboarding fields: {', '.join(sorted(unknown))}")
        if "track" in data and data["track"] not in ("cut", "bulk"):
            raise ValidationError("Track must be 'cut' or 'bulk'")
        for name in _METRIC_FIELDS:
            if name in data and data[name] is not None and data[name] <= 0:
                raise ValidationError(f"{name} must be positive")

        with self.store.transaction() as uow:
            self._onboarding_participant(uow, participant_id)
            if data:
                uow.participants.update_fields(participant_id, **data)
            return uow.participants.get(participant_id)

    def restart_onboarding(self, participant_id: int) -> Participant:
        """Wipe collected onboarding data so the flow starts over."""
        with self.store.transaction() as uow:
            self._onboarding_participant(uow, participant_id)
            uow.participants.update_fields(participant_id, **{name: None for name in ONBOARDING_FIELDS})
            uow.goals.delete_for_participant(participant_id)
            uow.commitments.delete_for_participant(participant_id)
            return uow.participants.get(participant_id)

    def set_goal(
        self, participant_id: int, target_weight: float, target_waist: float
    ) -> Tuple[Goal, GoalValidation]:
        """Create or revise the goal, validated by the advisory oracle."""
        if target_weight is None or target_weight <= 0 or target_waist is None or target_waist <= 0:
            raise ValidationError("Goal targets must be positive")

        with self.store.transaction() as uow:
            participant = self._onboarding_participant(uow, participant_id)
            challenge = self._challenge(uow, participant.challenge_id)
        if participant.track is None or not all(getattr(participant, n) for n in _METRIC_FIELDS):
            raise GuardViolationError("metrics_missing", "Track and body metrics are needed before the goal")

        params = GoalValidationParams(
            track=participant.track,
            current_weight=participant.start_weight,
            current_waist=participant.start_waist,
            height=participant.height,
            target_weight=target_weight,
            target_waist=target_waist,
            duration_months=duration_to_months(challenge.duration_value, challenge.duration_unit),
        )
        try:
            validation = self.advisor.validate_goal(params)
        except Exception:
            log_event("warning", "Goal validation raised, accepting goal", user_id=participant.user_id,
                      challenge_id=participant.challenge_id, error_code="advisor_error", exc_info=True)
            validation = fallback_goal_validation("Could not validate the goal, accepted automatically")

        now = self.clock.now()
        with self.store.transaction() as uow:
            self._onboarding_participant(uow, participant_id)
            goal = uow.goals.upsert(
                participant_id,
                now,
                target_weight=target_weight,
                target_waist=target_waist,
                is_validated=True,
                validation_result=validation.result,
                validation_feedback=validation.feedback,
                validated_at=now,
            )
        return goal, validation

    def list_commitment_templates(self) -> List[CommitmentTemplate]:
        with self.store.transaction() as uow:
            return uow.commitments.list_active_templates()

    def choose_commitments(self, participant_id: int, template_ids: Sequence[int]) -> List[int]:
        chosen = list(dict.fromkeys(template_ids))
        if not MIN_COMMITMENTS <= len(chosen) <= MAX_COMMITMENTS:
            raise ValidationError(f"Choose between {MIN_COMMITMENTS} and {MAX_COMMITMENTS} commitments")

        with self.store.transaction() as uow:
            self._onboarding_participant(uow, participant_id)
            active = {t.id for t in uow.commitments.list_active_templates()}
            unknown = [tid for tid in chosen if tid not in active]
            if unknown:
                raise ValidationError(f"Unknown commitments: {unknown}")
            uow.commitments.replace_for_participant(participant_id, chosen, self.clock.now())
            return uow.commitments.template_ids_for_participant(participant_id)

    def complete_onboarding(self, participant_id: int) -> Tuple[Participant, List[Effect]]:
        now = self.clock.now()
        with self.store.transaction() as uow:
            participant = self._onboarding_participant(uow, participant_id)
            progress = derive_progress(
                participant,
                uow.goals.get_for_participant(participant_id),
                uow.commitments.template_ids_for_participant(participant_id),
            )
            if not progress.is_complete:
                raise GuardViolationError(
                    "onboarding_incomplete", f"Onboarding is missing: {', '.join(progress.missing())}"
                )
            if not uow.participants.update_status(
                participant_id, "pending_payment", expected="onboarding", onboarding_completed_at=now
            ):
                raise GuardViolationError("not_onboarding", "Onboarding is already finished")
            uow.payments.get_or_create(participant_id, now)
            challenge = self._challenge(uow, participant.challenge_id)
            participant = uow.participants.get(participant_id)

        log_event("info", "Onboarding completed", challenge_id=challenge.id, user_id=participant.user_id,
                  event_type="participant.onboarded")
        return participant, [
            Effect(
                type="participant.onboarded",
                payload={"challengeId": challenge.id, "participantId": participant_id},
                messages=[OutboundMessage(participant.user_id, messages.onboarding_completed(challenge))],
            )
        ]

    # Payments ---------------------------------------------------------
    def mark_paid(self, participant_id: int, actor_user_id: int) -> Tuple[Payment, List[Effect]]:
        now = self.clock.now()
        with self.store.transaction() as uow:
            participant = self._participant(uow, participant_id)
            if participant.user_id != actor_user_id:
                raise PermissionError("not_participant", "Only the participant can mark their own payment")
            if participant.status != "pending_payment":
                raise GuardViolationError("payment_not_pending", "There is no pending payment to mark")
            uow.payments.get_or_create(participant_id, now)
            marked = uow.participants.update_status(participant_id, "payment_marked", expected="pending_payment")
            if not marked or not uow.payments.update_status(
                participant_id, "marked_paid", expected="pending", marked_paid_at=now
            ):
                raise GuardViolationError("payment_not_pending", "There is no pending payment to mark")
            challenge = self._challenge(uow, participant.challenge_id)
            payment = uow.payments.get_for_participant(participant_id)
            participant = uow.participants.get(participant_id)

        effects = [Effect(type="payment.marked", payload={"challengeId": challenge.id, "participantId": participant_id})]
        if challenge.bank_holder_id is not None:
            effects[0].messages.append(
                OutboundMessage(challenge.bank_holder_id, messages.payment_marked(participant, challenge))
            )
        else:
            # First marked payment without a Bank Holder opens the vote
            _, started = self.elections.start_election(challenge.id, actor_user_id, implicit=True)
            effects.extend(started)

        log_event("info", "Payment marked", challenge_id=challenge.id, user_id=actor_user_id,
                  event_type="payment.marked")
        return payment, effects

    def confirm_payment(self, participant_id: int, actor_user_id: int) -> Tuple[Payment, List[Effect]]:
        now = self.clock.now()
        with self.store.transaction() as uow:
            participant = self._participant(uow, participant_id)
            challenge = self._challenge(uow, participant.challenge_id)
            if challenge.bank_holder_id is None or challenge.bank_holder_id != actor_user_id:
                raise PermissionError("not_bank_holder", "Only the Bank Holder can confirm payments")
            if participant.status != "payment_marked":
                raise GuardViolationError("payment_not_marked", "This payment is not waiting for confirmation")

            confirmed = uow.payments.update_status(
                participant_id, "confirmed", expected="marked_paid", confirmed_at=now, confirmed_by=actor_user_id
            )
            if not confirmed or not uow.participants.update_status(participant_id, "active", expected="payment_marked"):
                raise GuardViolationError("payment_not_marked", "This payment is not waiting for confirmation")
            payment = uow.payments.get_for_participant(participant_id)

        log_event("info", "Payment confirmed", challenge_id=challenge.id, user_id=participant.user_id,
                  event_type="payment.confirmed")
        effects = [
            Effect(
                type="payment.confirmed",
                payload={"challengeId": challenge.id, "participantId": participant_id},
                messages=[OutboundMessage(participant.user_id, messages.payment_confirmed())],
            )
        ]
        _, activation_effects = self.check_activation(challenge.id)
        return payment, effects + activation_effects

    # Bank Holder ------------------------------------------------------
    def assign_bank_holder(self, challenge_id: int, actor_id: int, holder_user_id: int) -> Tuple[Challenge, List[Effect]]:
        """Direct Bank Holder selection by the creator, bypassing the vote."""
        with self.store.transaction() as uow:
            challenge = self._challenge(uow, challenge_id)
            if challenge.creator_id != actor_id:
                raise PermissionError("not_creator", "Only the challenge creator can pick the Bank Holder")
            holder = uow.participants.find(challenge_id, holder_user_id)
            if holder is None or not eligible_participants([holder]):
                raise GuardViolationError("candidate_not_eligible", "The Bank Holder must have finished onboarding")
            if not uow.challenges.assign_bank_holder(challenge_id, holder.user_id, holder.username):
                raise GuardViolationError("bank_holder_already_set", "The Bank Holder is already chosen")
            election = uow.elections.get_for_challenge(challenge_id)
            if election is not None:
                uow.elections.update_status(
                    election.id, "completed", expected="in_progress", completed_at=self.clock.now()
                )
            challenge = uow.challenges.get(challenge_id)
            prompts = payment_prompts(uow, challenge, holder)

        log_event("info", "Bank Holder assigned", challenge_id=challenge_id, user_id=holder_user_id,
                  event_type="bank_holder.assigned")
        return challenge, [
            Effect(
                type="bank_holder.assigned",
                payload={"challengeId": challenge_id, "bankHolderId": holder_user_id},
                messages=[OutboundMessage(challenge.chat_id, messages.bank_holder_assigned(holder))] + prompts,
            )
        ]

    # Activation -------------------------------------------------------
    def check_activation(self, challenge_id: int) -> Tuple[bool, List[Effect]]:
        """
        Start the challenge once every participant's stake is confirmed.

        Safe to call from racing confirmations: the pending_payments -> active
        compare-and-swap lets exactly one caller materialise the windows.
        """
        now = self.clock.now()
        with self.store.transaction() as uow:
            challenge = self._challenge(uow, challenge_id)
            if challenge.status != "pending_payments":
                return False, []
            participants = uow.participants.list_for_challenge(challenge_id)
            if any(p.status in UNPAID_STATUSES for p in participants):
                return False, []
            if not any(p.status == "active" for p in participants):
                return False, []

            ends_at = challenge.compute_ends_at(now)
            if not uow.challenges.activate(challenge_id, now, ends_at):
                return False, []
            spans = generate_windows(now, ends_at, checkin_period(self.config), window_length(self.config))
            uow.windows.create_many(challenge_id, spans, now)
            challenge = uow.challenges.get(challenge_id)

        log_event("info", "Challenge activated", challenge_id=challenge_id, event_type="challenge.activated",
                  extra={"windows": len(spans), "endsAt": ends_at.isoformat()})
        return True, [
            Effect(
                type="challenge.activated",
                payload={"challengeId": challenge_id, "windows": len(spans), "endsAt": ends_at.isoformat()},
                messages=[OutboundMessage(challenge.chat_id, messages.challenge_activated(challenge, len(spans)))],
            )
        ]

    # Time-driven ------------------------------------------------------
    def _drop_participant(self, participant: Participant) -> Tuple[bool, List[Effect]]:
        with self.store.transaction() as uow:
            dropped = uow.participants.update_status(participant.id, "dropped", expected="onboarding")
            challenge = uow.challenges.get(participant.challenge_id)
        if not dropped:
            return False, []
        log_event("info", "Participant dropped after onboarding timeout", challenge_id=participant.challenge_id,
                  user_id=participant.user_id, event_type="participant.dropped")
        effects = [
            Effect(
                type="participant.dropped",
                payload={"challengeId": participant.challenge_id, "participantId": participant.id},
                messages=[
                    OutboundMessage(participant.user_id, messages.onboarding_dropped()),
                    OutboundMessage(challenge.chat_id, messages.onboarding_dropped_group(participant)),
                ],
            )
        ]
        # The straggler may have been the last one holding back activation
        _, activation_effects = self.check_activation(participant.challenge_id)
        return True, effects + activation_effects

    def drop_stale_onboarding(self) -> PhaseResult:
        cutoff = self.clock.now() - timedelta(hours=self.config.ONBOARDING_TIMEOUT_HOURS)
        with self.store.transaction() as uow:
            stale = uow.participants.list_stale_onboarding(cutoff)
        return run_isolated("onboarding_timeout", stale, self._drop_participant)

    def run_finale(self, challenge_id: int) -> Tuple[Optional[List[ParticipantScore]], List[Effect]]:
        """Complete an active challenge: score, mark participants completed, publish results."""
        with self.store.transaction() as uow:
            if not uow.challenges.update_status(challenge_id, "completed", expected="active"):
                return None, []
            challenge = uow.challenges.get(challenge_id)
            finishers = uow.participants.list_for_challenge(challenge_id, ("active", "completed"))
            goals: Dict[int, Optional[Goal]] = {p.id: uow.goals.get_for_participant(p.id) for p in finishers}
            latest = {p.id: uow.checkins.latest_for_participant(p.id) for p in finishers}
            scores = ScoringEngine.score_challenge(
                finishers, goals, latest, challenge.discipline_threshold, challenge.stake_amount
            )
            for participant in finishers:
                uow.participants.update_status(participant.id, "completed", expected="active")

        log_event("info", "Challenge completed", challenge_id=challenge_id, event_type="challenge.completed",
                  extra={"participants": len(scores), "winners": sum(1 for s in scores if s.is_winner)})
        results = [OutboundMessage(challenge.chat_id, messages.format_results(challenge, scores))]
        results += [
            OutboundMessage(s.participant.user_id, messages.personal_result(challenge, s)) for s in scores
        ]
        return scores, [
            Effect(
                type="challenge.completed",
                payload={"challengeId": challenge_id, "scores": [s.to_dict() for s in scores]},
                messages=results,
            )
        ]

    def finalize_due_challenges(self) -> PhaseResult:
        with self.store.transaction() as uow:
            due = uow.challenges.list_due_for_finale(self.clock.now())
        return run_isolated("finale", due, lambda c: self.run_finale(c.id))

    # Admin ------------------------------------------------------------
    def admin_reset(self, actor_id: int) -> Dict[str, int]:
        """Wipe every table and reseed the commitment catalogue."""
        if self.config.ADMIN_USER_ID is None or actor_id != self.config.ADMIN_USER_ID:
            raise PermissionError("not_admin", "Only the administrator can reset the database")
        with self.store.transaction() as uow:
            counts = uow.wipe_all()
            counts["commitment_templates_seeded"] = seed_commitments(uow)
        log_event("warning", "Database reset by admin", user_id=actor_id, event_type="admin.reset", extra=counts)
        return counts
