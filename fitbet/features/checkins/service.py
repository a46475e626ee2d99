"""
Check-in windows: open, remind, close, and participant submissions.

Each time-driven step flips one window through a conditional update, so re-running
a tick (or two ticks racing) performs the accounting for a window exactly once.
"""

from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from fitbet.core.clock import Clock, SystemClock
from fitbet.core.config import Settings, settings as default_settings
from fitbet.core.errors import GuardViolationError, NotFoundError, ValidationError
from fitbet.core.logging import log_event
from fitbet.features.advisor.service import AdvisoryOracle, CheckinAdviceParams, NullAdvisor
from fitbet.features.jobs.phases import PhaseResult, run_isolated
from fitbet.features.notifications import messages
from fitbet.features.store.persistence import EntityStore
from fitbet.models.challenge import duration_to_months
from fitbet.models.checkin import Checkin, CheckinAdvice, CheckinSubmission, CheckinWindow
from fitbet.models.effects import Effect, OutboundMessage
from fitbet.models.participant import Participant


class CheckinService:
    def __init__(
        self,
        store: EntityStore,
        clock: Optional[Clock] = None,
        advisor: Optional[AdvisoryOracle] = None,
        config: Optional[Settings] = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.advisor = advisor or NullAdvisor()
        self.config = config or default_settings

    # Open -------------------------------------------------------------
    def _open_window(self, window: CheckinWindow) -> Tuple[bool, List[Effect]]:
        with self.store.transaction() as uow:
            if not uow.windows.update_status(window.id, "open", expected="scheduled"):
                return False, []
            challenge = uow.challenges.get(window.challenge_id)
            active = uow.participants.list_for_challenge(window.challenge_id, "active")

        text = messages.window_opened(window)
        log_event("info", "Check-in window opened", challenge_id=window.challenge_id,
                  event_type="checkin_window.opened", extra={"windowNumber": window.window_number})
        return True, [
            Effect(
                type="checkin_window.opened",
                payload={"challengeId": window.challenge_id, "windowId": window.id, "number": window.window_number},
                messages=[OutboundMessage(challenge.chat_id, text)]
                + [OutboundMessage(p.user_id, text) for p in active],
            )
        ]

    def open_due_windows(self) -> PhaseResult:
        with self.store.transaction() as uow:
            due = uow.windows.list_due_to_open(self.clock.now())
        return run_isolated("open", due, self._open_window)

    # Remind -----------------------------------------------------------
    def _remind_window(self, window: CheckinWindow) -> Tuple[bool, List[Effect]]:
        with self.store.transaction() as uow:
            # Stamped even when nobody is missing, so the reminder never repeats
            if not uow.windows.stamp_reminder(window.id, self.clock.now()):
                return False, []
            challenge = uow.challenges.get(window.challenge_id)
            submitted = uow.checkins.participant_ids_for_window(window.id)
            missing = [
                p for p in uow.participants.list_for_challenge(window.challenge_id, "active")
                if p.id not in submitted
            ]

        reminder = messages.window_reminder(window)
        return True, [
            Effect(
                type="checkin_window.reminder",
                payload={"challengeId": window.challenge_id, "windowId": window.id, "missing": [p.id for p in missing]},
                messages=[OutboundMessage(p.user_id, reminder) for p in missing]
                + [OutboundMessage(challenge.chat_id, messages.window_reminder_group(window, missing))],
            )
        ]

    def send_due_reminders(self) -> PhaseResult:
        threshold = self.clock.now() + timedelta(hours=self.config.REMINDER_HOURS_BEFORE_CLOSE)
        with self.store.transaction() as uow:
            due = uow.windows.list_due_for_reminder(threshold)
        return run_isolated("reminder", due, self._remind_window)

    # Close ------------------------------------------------------------
    def _close_window(self, window: CheckinWindow) -> Tuple[bool, List[Effect]]:
        with self.store.transaction() as uow:
            if not uow.windows.update_status(window.id, "closed", expected="open"):
                return False, []
            challenge = uow.challenges.get(window.challenge_id)
            submitted = uow.checkins.participant_ids_for_window(window.id)
            skipped: List[Participant] = []
            disqualified: List[Participant] = []
            for participant in uow.participants.list_for_challenge(window.challenge_id, "active"):
                if participant.id in submitted:
                    continue
                skipped.append(participant)
                skips = uow.participants.record_skipped_checkin(participant.id)
                if skips > challenge.max_skips and uow.participants.update_status(
                    participant.id, "disqualified", expected="active"
                ):
                    disqualified.append(participant)

        log_event("info", "Check-in window closed", challenge_id=window.challenge_id,
                  event_type="checkin_window.closed",
                  extra={"windowNumber": window.window_number, "skipped": len(skipped),
                         "disqualified": len(disqualified)})
        notices = [OutboundMessage(challenge.chat_id, messages.window_closed(window, len(submitted), skipped, disqualified))]
        notices += [OutboundMessage(p.user_id, messages.disqualified(challenge.max_skips)) for p in disqualified]
        return True, [
            Effect(
                type="checkin_window.closed",
                payload={
                    "challengeId": window.challenge_id,
                    "windowId": window.id,
                    "skipped": [p.id for p in skipped],
                    "disqualified": [p.id for p in disqualified],
                },
                messages=notices,
            )
        ]

    def close_due_windows(self) -> PhaseResult:
        with self.store.transaction() as uow:
            due = uow.windows.list_due_to_close(self.clock.now())
        return run_isolated("close", due, self._close_window)

    # Participant actions ----------------------------------------------
    def request_checkin(self, window_id: int, user_id: int) -> Participant:
        """Validate and record the group-to-private handoff for a check-in."""
        with self.store.transaction() as uow:
            window = uow.windows.get(window_id)
            if window is None:
                raise NotFoundError(f"Check-in window {window_id} not found")
            if window.status != "open":
                raise GuardViolationError("window_not_open", "This check-in is not open")
            participant = uow.participants.find(window.challenge_id, user_id)
            if participant is None or participant.status != "active":
                raise GuardViolationError("participant_not_active", "Only active participants can check in")
            if uow.checkins.find(participant.id, window_id) is not None:
                raise GuardViolationError("already_submitted", "You already submitted this check-in")
            uow.participants.update_fields(
                participant.id,
                pending_checkin_window_id=window_id,
                pending_checkin_requested_at=self.clock.now(),
            )
            return uow.participants.get(participant.id)

    def submit_checkin(
        self, window_id: int, user_id: int, submission: CheckinSubmission
    ) -> Tuple[Optional[Checkin], List[Effect]]:
        """
        Record a check-in.

        Returns (None, []) when the participant already submitted for this window;
        counters only move when the insert actually happened.
        """
        if submission.weight <= 0 or submission.waist <= 0:
            raise ValidationError("Weight and waist must be positive")
        if not all((submission.photo_front_id, submission.photo_left_id,
                    submission.photo_right_id, submission.photo_back_id)):
            raise ValidationError("All four photos are required")

        now = self.clock.now()
        try:
            with self.store.transaction() as uow:
                window = uow.windows.get(window_id)
                if window is None:
                    raise NotFoundError(f"Check-in window {window_id} not found")
                if window.status != "open":
                    raise GuardViolationError("window_not_open", "This check-in is not open")
                participant = uow.participants.find(window.challenge_id, user_id)
                if participant is None or participant.status != "active":
                    raise GuardViolationError("participant_not_active", "Only active participants can check in")

                checkin = uow.checkins.insert_if_absent(
                    participant.id,
                    window_id,
                    weight=submission.weight,
                    waist=submission.waist,
                    photo_front_id=submission.photo_front_id,
                    photo_left_id=submission.photo_left_id,
                    photo_right_id=submission.photo_right_id,
                    photo_back_id=submission.photo_back_id,
                    submitted_at=now,
                )
                if checkin is None:
                    return None, []
                uow.participants.record_completed_checkin(participant.id)
        except IntegrityError:
            return None, []

        log_event("info", "Check-in submitted", challenge_id=window.challenge_id, user_id=user_id,
                  event_type="checkin.submitted", extra={"windowNumber": window.window_number})
        self.record_advice(checkin.id)
        return checkin, [
            Effect(
                type="checkin.submitted",
                payload={"challengeId": window.challenge_id, "windowId": window_id, "checkinId": checkin.id},
                messages=[OutboundMessage(user_id, messages.checkin_received(window))],
            )
        ]

    # Advice -----------------------------------------------------------
    def _advice_params(self, checkin_id: int) -> Optional[CheckinAdviceParams]:
        with self.store.transaction() as uow:
            checkin = uow.checkins.get(checkin_id)
            participant = uow.participants.get(checkin.participant_id)
            challenge = uow.challenges.get(participant.challenge_id)
            window = uow.windows.get(checkin.window_id)
            goal = uow.goals.get_for_participant(participant.id)
            history = [c for c in uow.checkins.list_for_participant(participant.id) if c.id != checkin.id]
            numbers = {w.id: w.window_number for w in uow.windows.list_for_challenge(challenge.id)}
            chosen = set(uow.commitments.template_ids_for_participant(participant.id))
            commitments = [t.name for t in uow.commitments.list_active_templates() if t.id in chosen]

        if participant.start_weight is None or participant.start_waist is None or not participant.height:
            return None
        return CheckinAdviceParams(
            track=participant.track or "cut",
            height=participant.height,
            target_weight=goal.target_weight if goal else None,
            target_waist=goal.target_waist if goal else None,
            duration_months=duration_to_months(challenge.duration_value, challenge.duration_unit),
            start_weight=participant.start_weight,
            start_waist=participant.start_waist,
            current_weight=checkin.weight,
            current_waist=checkin.waist,
            checkin_number=window.window_number,
            total_checkins=participant.total_checkins,
            completed_checkins=participant.completed_checkins,
            previous=[(numbers.get(c.window_id), c.weight, c.waist) for c in history],
            commitments=commitments,
        )

    def record_advice(self, checkin_id: int) -> Optional[CheckinAdvice]:
        """Ask the advisor about a check-in and store the answer. Failures store nothing."""
        try:
            params = self._advice_params(checkin_id)
            if params is None:
                return None
            advice = self.advisor.get_checkin_advice(params)
            with self.store.transaction() as uow:
                checkin = uow.checkins.get(checkin_id)
                uow.recommendations.create(checkin_id, checkin.participant_id, advice, self.clock.now())
        except Exception:
            log_event("warning", "Check-in advice unavailable", error_code="advisor_error",
                      event_type="checkin.advice", extra={"checkinId": checkin_id}, exc_info=True)
            return None
        return advice
