import pytest

from fitbet.tests.mocks import CHAT_ID, CREATOR_ID
from fitbet.core.errors import GuardViolationError, PermissionError


@pytest.fixture
def voters(scenario):
    """A draft challenge with three onboarded participants (user ids 1, 2, 3)."""
    challenge = scenario.create()
    players = {uid: scenario.onboard(challenge.id, uid) for uid in (1, 2, 3)}
    return challenge, players


def test_only_creator_starts_election(voters, elections):
    challenge, _ = voters
    with pytest.raises(PermissionError) as exc:
        elections.start_election(challenge.id, 2)
    assert exc.value.reason == "not_creator"


def test_election_needs_two_eligible_participants(scenario, elections):
    challenge = scenario.create()
    scenario.onboard(challenge.id, 1)
    scenario.join(challenge.id, 2)

    with pytest.raises(GuardViolationError) as exc:
        elections.start_election(challenge.id, CREATOR_ID)
    assert exc.value.reason == "not_enough_participants"


def test_second_start_is_rejected(voters, elections):
    challenge, _ = voters
    election, effects = elections.start_election(challenge.id, CREATOR_ID)
    assert election.status == "in_progress"
    assert effects[0].messages[0].recipient == CHAT_ID

    with pytest.raises(GuardViolationError) as exc:
        elections.start_election(challenge.id, CREATOR_ID)
    assert exc.value.reason == "election_in_progress"


def test_last_vote_finalizes(voters, elections, scenario):
    challenge, _ = voters
    elections.start_election(challenge.id, CREATOR_ID)

    _, effects = elections.cast_vote(challenge.id, 1, 2)
    assert [e.type for e in effects] == ["election.vote_cast"]
    elections.cast_vote(challenge.id, 2, 2)
    _, effects = elections.cast_vote(challenge.id, 3, 1)

    assert [e.type for e in effects] == ["election.vote_cast", "election.completed"]
    assert effects[1].payload["winnerId"] == 2
    assert effects[1].payload["maxVotes"] == 2

    updated = scenario.challenge(challenge.id)
    assert updated.bank_holder_id == 2
    assert updated.bank_holder_username == "user2"
    assert updated.status == "pending_payments"
    # Everyone still owing a payment is prompted
    prompted = {m.recipient for m in effects[1].messages}
    assert {1, 2, 3} <= prompted


def test_vote_guards(voters, elections, scenario):
    challenge, _ = voters
    scenario.join(challenge.id, 4)
    elections.start_election(challenge.id, CREATOR_ID)

    with pytest.raises(GuardViolationError) as exc:
        elections.cast_vote(challenge.id, 4, 1)
    assert exc.value.reason == "voter_not_eligible"

    with pytest.raises(GuardViolationError) as exc:
        elections.cast_vote(challenge.id, 1, 4)
    assert exc.value.reason == "candidate_not_eligible"

    elections.cast_vote(challenge.id, 1, 2)
    with pytest.raises(GuardViolationError) as exc:
        elections.cast_vote(challenge.id, 1, 3)
    assert exc.value.reason == "already_voted"


def test_finalize_runs_once(voters, elections, scenario):
    """Whoever finalizes second gets a no-op, and later votes are refused."""
    challenge, _ = voters
    election, _ = elections.start_election(challenge.id, CREATOR_ID)
    elections.cast_vote(challenge.id, 1, 3)

    outcome, effects = elections.finalize_election(election.id)
    assert outcome.winner_id == 3
    assert len(effects) == 1

    assert elections.finalize_election(election.id) == (None, [])
    with pytest.raises(GuardViolationError) as exc:
        elections.cast_vote(challenge.id, 2, 2)
    assert exc.value.reason == "election_closed"
    assert scenario.challenge(challenge.id).bank_holder_id == 3


def test_stale_election_is_finalized_by_timeout(voters, elections, clock, scenario):
    challenge, _ = voters
    election, _ = elections.start_election(challenge.id, CREATOR_ID)

    clock.advance(hours=23)
    assert elections.finalize_stale_elections().changed == []

    clock.advance(hours=2)
    result = elections.finalize_stale_elections()

    assert result.changed == [election.id]
    # Nobody voted: the creator is the fallback
    assert scenario.challenge(challenge.id).bank_holder_id == CREATOR_ID
    assert elections.finalize_stale_elections().changed == []


def test_start_after_bank_holder_is_set(voters, elections, lifecycle):
    challenge, _ = voters
    lifecycle.assign_bank_holder(challenge.id, CREATOR_ID, 2)

    with pytest.raises(GuardViolationError) as exc:
        elections.start_election(challenge.id, CREATOR_ID)
    assert exc.value.reason == "bank_holder_already_set"
    # Implicit starts swallow the guard
    assert elections.start_election(challenge.id, 2, implicit=True) == (None, [])


def test_direct_assignment_closes_running_election(voters, elections, lifecycle, store):
    challenge, _ = voters
    election, _ = elections.start_election(challenge.id, CREATOR_ID)

    lifecycle.assign_bank_holder(challenge.id, CREATOR_ID, 3)

    with store.transaction() as uow:
        assert uow.elections.get(election.id).status == "completed"
    assert elections.finalize_election(election.id) == (None, [])
