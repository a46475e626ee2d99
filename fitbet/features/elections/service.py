"""
Bank Holder election lifecycle.

start -> votes -> finalize. Finalization is triggered by the last eligible vote
or by the tick after the election timeout; both paths go through
``finalize_election``, whose ``in_progress -> completed`` compare-and-swap makes
sure only one caller assigns the Bank Holder.
"""

from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from fitbet.core.clock import Clock, SystemClock
from fitbet.core.config import Settings, settings as default_settings
from fitbet.core.errors import GuardViolationError, NotFoundError, PermissionError
from fitbet.core.logging import log_event
from fitbet.features.elections.engine import eligible_participants, select_winner
from fitbet.features.jobs.phases import PhaseResult, run_isolated
from fitbet.features.notifications import messages
from fitbet.features.store.persistence import EntityStore, UnitOfWork
from fitbet.models.challenge import Challenge
from fitbet.models.effects import Effect, OutboundMessage
from fitbet.models.election import BankHolderElection, BankHolderVote, ElectionOutcome
from fitbet.models.participant import Participant

MIN_ELECTION_PARTICIPANTS = 2


def payment_prompts(uow: UnitOfWork, challenge: Challenge, holder: Participant) -> List[OutboundMessage]:
    """Ask unpaid participants to pay, and the Bank Holder to confirm already-marked payments."""
    prompts = []
    for participant in uow.participants.list_for_challenge(challenge.id):
        if participant.status == "pending_payment":
            prompts.append(OutboundMessage(participant.user_id, messages.onboarding_completed(challenge)))
        elif participant.status == "payment_marked":
            prompts.append(OutboundMessage(holder.user_id, messages.payment_marked(participant, challenge)))
    return prompts


class ElectionService:
    def __init__(self, store: EntityStore, clock: Optional[Clock] = None, config: Optional[Settings] = None):
        self.store = store
        self.clock = clock or SystemClock()
        self.config = config or default_settings

    def start_election(
        self, challenge_id: int, initiated_by: int, *, implicit: bool = False
    ) -> Tuple[Optional[BankHolderElection], List[Effect]]:
        """
        Open a Bank Holder vote.

        Explicit starts come from the creator and raise on every unmet guard.
        Implicit starts (first marked payment) are no-ops when a guard fails.
        """
        now = self.clock.now()
        try:
            with self.store.transaction() as uow:
                challenge = uow.challenges.get(challenge_id)
                if challenge is None:
                    raise NotFoundError(f"Challenge {challenge_id} not found")
                if not implicit and challenge.creator_id != initiated_by:
                    raise PermissionError("not_creator", "Only the challenge creator can start the election")
                if challenge.bank_holder_id is not None:
                    raise GuardViolationError("bank_holder_already_set")
                if not challenge.accepts_participants:
                    raise GuardViolationError("challenge_not_open")

                candidates = eligible_participants(uow.participants.list_for_challenge(challenge_id))
                if len(candidates) < MIN_ELECTION_PARTICIPANTS:
                    raise GuardViolationError("not_enough_participants")

                election = uow.elections.get_for_challenge(challenge_id)
                if election is None:
                    election = uow.elections.create(challenge_id, initiated_by, now)
                elif election.status == "in_progress":
                    raise GuardViolationError("election_in_progress")
                elif not uow.elections.reopen(election.id, initiated_by, now):
                    raise GuardViolationError("election_closed")
                else:
                    election = uow.elections.get(election.id)
        except (GuardViolationError, IntegrityError):
            # IntegrityError: a concurrent starter created the row first
            if implicit:
                return None, []
            raise

        log_event("info", "Bank Holder election started", challenge_id=challenge_id,
                  user_id=initiated_by, event_type="election.started")
        effect = Effect(
            type="election.started",
            payload={"challengeId": challenge_id, "electionId": election.id, "implicit": implicit},
            messages=[OutboundMessage(challenge.chat_id, messages.election_started(candidates))],
        )
        return election, [effect]

    def cast_vote(
        self, challenge_id: int, voter_user_id: int, candidate_user_id: int
    ) -> Tuple[BankHolderVote, List[Effect]]:
        now = self.clock.now()
        try:
            with self.store.transaction() as uow:
                election = uow.elections.get_for_challenge(challenge_id)
                if election is None:
                    raise NotFoundError(f"No election for challenge {challenge_id}")
                if election.status != "in_progress":
                    raise GuardViolationError("election_closed")

                voter = uow.participants.find(challenge_id, voter_user_id)
                if voter is None or not eligible_participants([voter]):
                    raise GuardViolationError("voter_not_eligible")
                candidate = uow.participants.find(challenge_id, candidate_user_id)
                if candidate is None or not eligible_participants([candidate]):
                    raise GuardViolationError("candidate_not_eligible")
                if uow.votes.find(election.id, voter_user_id) is not None:
                    raise GuardViolationError("already_voted")

                vote = uow.votes.create(election.id, voter_user_id, candidate_user_id, now)
        except IntegrityError:
            raise GuardViolationError("already_voted")

        effects = [
            Effect(
                type="election.vote_cast",
                payload={"electionId": election.id, "voterId": voter_user_id},
                messages=[OutboundMessage(voter_user_id, messages.vote_recorded(candidate))],
            )
        ]

        # Last-vote check runs after our own write; finalize is CAS-guarded
        with self.store.transaction() as uow:
            eligible = eligible_participants(uow.participants.list_for_challenge(challenge_id))
            all_voted = uow.votes.count_for_election(election.id) >= len(eligible)
        if all_voted:
            _, finalize_effects = self.finalize_election(election.id)
            effects.extend(finalize_effects)

        return vote, effects

    def finalize_election(self, election_id: int) -> Tuple[Optional[ElectionOutcome], List[Effect]]:
        """
        Close the election and assign the Bank Holder.

        Returns (None, []) when another caller already finalized it.
        """
        now = self.clock.now()
        with self.store.transaction() as uow:
            if not uow.elections.update_status(election_id, "completed", expected="in_progress", completed_at=now):
                return None, []

            election = uow.elections.get(election_id)
            challenge = uow.challenges.get(election.challenge_id)
            if challenge is None or challenge.bank_holder_id is not None:
                return None, []

            eligible = eligible_participants(uow.participants.list_for_challenge(challenge.id))
            votes = uow.votes.list_for_election(election_id)
            outcome = select_winner(eligible, votes, fallback_user_id=challenge.creator_id)
            if outcome is None:
                log_event("warning", "Election closed without eligible candidates",
                          challenge_id=challenge.id, event_type="election.empty")
                return None, [
                    Effect(
                        type="election.empty",
                        payload={"challengeId": challenge.id, "electionId": election_id},
                        messages=[OutboundMessage(challenge.chat_id, messages.election_without_candidates())],
                    )
                ]

            winner = uow.participants.find(challenge.id, outcome.winner_id)
            uow.challenges.assign_bank_holder(challenge.id, winner.user_id, winner.username)
            prompts = payment_prompts(uow, challenge, winner)

        log_event("info", "Bank Holder elected", challenge_id=challenge.id, user_id=winner.user_id,
                  event_type="election.completed", extra={"maxVotes": outcome.max_votes})
        effect = Effect(
            type="election.completed",
            payload={
                "challengeId": challenge.id,
                "electionId": election_id,
                "winnerId": outcome.winner_id,
                "maxVotes": outcome.max_votes,
            },
            messages=[OutboundMessage(challenge.chat_id, messages.bank_holder_elected(winner, outcome.max_votes))]
            + prompts,
        )
        return outcome, [effect]

    def finalize_stale_elections(self) -> PhaseResult:
        """Tick phase: finalize elections older than the timeout."""
        cutoff = self.clock.now() - timedelta(hours=self.config.ELECTION_TIMEOUT_HOURS)
        with self.store.transaction() as uow:
            stale = uow.elections.list_stale(cutoff)
        return run_isolated("election_timeout", stale, lambda e: self.finalize_election(e.id))
