"""
Bank Holder Election Engine

Pure, deterministic winner selection. No I/O.

Rules:
- Only votes for eligible candidates are counted
- Highest tally wins; ties go to the smallest user id
- With no counted votes, the fallback user wins if eligible,
  otherwise the smallest eligible user id
- No eligible participants -> no winner
"""

from typing import Iterable, Optional

from fitbet.models.election import BankHolderVote, ElectionOutcome
from fitbet.models.participant import Participant

# Participants that never finished onboarding can neither vote nor be elected
INELIGIBLE_STATUSES = ("onboarding", "dropped")


def eligible_participants(participants: Iterable[Participant]) -> list:
    return [p for p in participants if p.status not in INELIGIBLE_STATUSES]


def select_winner(
    participants: Iterable[Participant],
    votes: Iterable[BankHolderVote],
    fallback_user_id: Optional[int] = None,
) -> Optional[ElectionOutcome]:
    """
    Pick the Bank Holder from eligible participants and their votes.

    Args:
        participants: Eligible participants (callers filter with eligible_participants)
        votes: Votes cast in the election
        fallback_user_id: Winner when nobody received a counted vote (usually the creator)

    Returns:
        ElectionOutcome with winner id and max tally, or None when nobody is eligible
    """
    eligible_ids = {p.user_id for p in participants}
    if not eligible_ids:
        return None

    tally = {user_id: 0 for user_id in eligible_ids}
    for vote in votes:
        if vote.voted_for_id in tally:
            tally[vote.voted_for_id] += 1

    max_votes = max(tally.values())
    if max_votes == 0 and fallback_user_id in eligible_ids:
        return ElectionOutcome(winner_id=fallback_user_id, max_votes=0)

    top_candidates = [user_id for user_id, count in tally.items() if count == max_votes]
    return ElectionOutcome(winner_id=min(top_candidates), max_votes=max_votes)
