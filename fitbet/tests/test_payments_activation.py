from datetime import timedelta

import pytest

from fitbet.tests.mocks import CREATOR_ID
from fitbet.core.errors import GuardViolationError, PermissionError
from fitbet.features.jobs.runner import run_tick


def test_payment_flow_marks_then_confirms(scenario, lifecycle, store):
    challenge = scenario.create()
    holder = scenario.onboard(challenge.id, 1)
    player = scenario.onboard(challenge.id, 2)
    lifecycle.assign_bank_holder(challenge.id, CREATOR_ID, holder.user_id)

    payment, effects = lifecycle.mark_paid(player.id, player.user_id)
    assert payment.status == "marked_paid"
    assert scenario.participant(player.id).status == "payment_marked"
    # The Bank Holder is asked to confirm
    assert [m.recipient for m in effects[0].messages] == [holder.user_id]

    payment, effects = lifecycle.confirm_payment(player.id, holder.user_id)
    assert payment.status == "confirmed"
    assert payment.confirmed_by == holder.user_id
    assert scenario.participant(player.id).status == "active"
    assert effects[0].type == "payment.confirmed"


def test_mark_paid_guards(scenario, lifecycle):
    challenge = scenario.create()
    scenario.onboard(challenge.id, 1)
    player = scenario.onboard(challenge.id, 2)
    lifecycle.assign_bank_holder(challenge.id, CREATOR_ID, 1)

    with pytest.raises(PermissionError) as exc:
        lifecycle.mark_paid(player.id, 1)
    assert exc.value.reason == "not_participant"

    lifecycle.mark_paid(player.id, player.user_id)
    with pytest.raises(GuardViolationError) as exc:
        lifecycle.mark_paid(player.id, player.user_id)
    assert exc.value.reason == "payment_not_pending"


def test_only_bank_holder_confirms(scenario, lifecycle):
    challenge = scenario.create()
    scenario.onboard(challenge.id, 1)
    player = scenario.onboard(challenge.id, 2)
    lifecycle.assign_bank_holder(challenge.id, CREATOR_ID, 1)

    with pytest.raises(GuardViolationError) as exc:
        lifecycle.confirm_payment(player.id, 1)
    assert exc.value.reason == "payment_not_marked"

    lifecycle.mark_paid(player.id, player.user_id)
    with pytest.raises(PermissionError) as exc:
        lifecycle.confirm_payment(player.id, player.user_id)
    assert exc.value.reason == "not_bank_holder"


def test_first_marked_payment_without_bank_holder_starts_election(scenario, lifecycle, store):
    challenge = scenario.create()
    first = scenario.onboard(challenge.id, 1)
    scenario.onboard(challenge.id, 2)

    _, effects = lifecycle.mark_paid(first.id, first.user_id)

    assert [e.type for e in effects] == ["payment.marked", "election.started"]
    with store.transaction() as uow:
        assert uow.elections.get_for_challenge(challenge.id).status == "in_progress"


def test_lonely_participant_does_not_start_election(scenario, lifecycle, store):
    challenge = scenario.create()
    only = scenario.onboard(challenge.id, 1)

    _, effects = lifecycle.mark_paid(only.id, only.user_id)

    assert [e.type for e in effects] == ["payment.marked"]
    with store.transaction() as uow:
        assert uow.elections.get_for_challenge(challenge.id) is None


def test_activation_waits_for_every_confirmation(scenario, lifecycle):
    """The challenge stays in pending_payments until nobody owes a payment."""
    challenge = scenario.create(duration_value=1)
    players = [scenario.onboard(challenge.id, uid) for uid in (1, 2, 3)]
    lifecycle.assign_bank_holder(challenge.id, CREATOR_ID, 1)

    scenario.pay(players[0], 1)
    scenario.pay(players[1], 1)
    lifecycle.mark_paid(players[2].id, players[2].user_id)

    assert scenario.challenge(challenge.id).status == "pending_payments"
    assert scenario.windows(challenge.id) == []
    assert lifecycle.check_activation(challenge.id) == (False, [])

    _, effects = lifecycle.confirm_payment(players[2].id, 1)

    activated = scenario.challenge(challenge.id)
    assert activated.status == "active"
    assert activated.started_at == scenario.clock.now()
    assert activated.ends_at == activated.compute_ends_at(activated.started_at)
    assert [e.type for e in effects] == ["payment.confirmed", "challenge.activated"]
    assert len(scenario.windows(challenge.id)) == 2


def test_onboarding_participant_blocks_activation_until_dropped(scenario, lifecycle, store, config, clock):
    """Dropping the last unfinished onboarding lets the tick start a fully paid challenge."""
    challenge = scenario.create(duration_value=1)
    players = [scenario.onboard(challenge.id, uid) for uid in (1, 2)]
    straggler = scenario.join(challenge.id, 3)
    lifecycle.assign_bank_holder(challenge.id, CREATOR_ID, 1)
    for player in players:
        scenario.pay(player, 1)

    assert scenario.challenge(challenge.id).status == "pending_payments"

    report = run_tick(clock.now() + timedelta(hours=49), store, config=config)

    assert report.phase("onboarding_timeout").changed == [straggler.id]
    assert scenario.participant(straggler.id).status == "dropped"
    assert scenario.challenge(challenge.id).status == "active"
    assert scenario.windows(challenge.id)
    assert "challenge.activated" in [e.type for e in report.effects]

    # A second tick does not activate again
    again = run_tick(clock.now() + timedelta(hours=50), store, config=config)
    assert "challenge.activated" not in [e.type for e in again.effects]


def test_activation_happens_once(scenario, lifecycle):
    challenge, _ = scenario.active_challenge(user_ids=(1, 2), duration_value=1)
    windows = scenario.windows(challenge.id)

    assert lifecycle.check_activation(challenge.id) == (False, [])
    assert scenario.windows(challenge.id) == windows


def test_direct_bank_holder_assignment_guards(scenario, lifecycle):
    challenge = scenario.create()
    scenario.onboard(challenge.id, 1)
    scenario.join(challenge.id, 2)

    with pytest.raises(PermissionError):
        lifecycle.assign_bank_holder(challenge.id, 2, 1)
    with pytest.raises(GuardViolationError) as exc:
        lifecycle.assign_bank_holder(challenge.id, CREATOR_ID, 2)
    assert exc.value.reason == "candidate_not_eligible"

    assigned, _ = lifecycle.assign_bank_holder(challenge.id, CREATOR_ID, 1)
    assert assigned.bank_holder_id == 1
    assert assigned.status == "pending_payments"

    with pytest.raises(GuardViolationError) as exc:
        lifecycle.assign_bank_holder(challenge.id, CREATOR_ID, 1)
    assert exc.value.reason == "bank_holder_already_set"
