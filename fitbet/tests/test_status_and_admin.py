import pytest

from fitbet.tests.mocks import CHAT_ID
from fitbet.core.errors import NotFoundError, PermissionError
from fitbet.features.status.service import get_challenge_status


def test_status_without_challenge(store):
    with pytest.raises(NotFoundError):
        get_challenge_status(store, CHAT_ID)


def test_status_of_draft_challenge(scenario, store):
    challenge = scenario.create(chat_title="Gym crew")
    scenario.onboard(challenge.id, 1)
    scenario.join(challenge.id, 2)

    status = get_challenge_status(store, CHAT_ID)

    assert status["challenge_id"] == challenge.id
    assert status["status"] == "draft"
    assert status["chat_title"] == "Gym crew"
    assert status["bank_holder"] is None
    assert status["participants"]["total"] == 2
    assert status["participants"]["by_status"] == {"pending_payment": 1, "onboarding": 1}
    assert status["payments"]["pending"] == 1
    assert status["open_window"] is None


def test_status_shows_open_window(scenario, store, clock, checkins):
    challenge, _ = scenario.active_challenge(duration_value=1)
    window = scenario.windows(challenge.id)[0]
    clock.current = window.opens_at
    checkins.open_due_windows()

    status = get_challenge_status(store, CHAT_ID)

    assert status["status"] == "active"
    assert status["bank_holder"]["user_id"] == 1
    assert status["payments"]["confirmed"] == 3
    assert status["windows_total"] == 2
    assert status["open_window"]["number"] == 1
    assert status["open_window"]["submitted"] == 0


def test_admin_reset_requires_admin(lifecycle):
    with pytest.raises(PermissionError) as exc:
        lifecycle.admin_reset(1)
    assert exc.value.reason == "not_admin"


def test_admin_reset_wipes_and_reseeds(scenario, lifecycle, store):
    challenge = scenario.create()
    scenario.onboard(challenge.id, 1)

    counts = lifecycle.admin_reset(999)

    assert counts["challenges"] == 1
    assert counts["participants"] == 1
    assert counts["commitment_templates"] == 10
    assert counts["commitment_templates_seeded"] == 10
    with store.transaction() as uow:
        assert uow.challenges.find_open_for_chat(CHAT_ID) is None
        assert len(uow.commitments.list_active_templates()) == 10
