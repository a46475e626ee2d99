from datetime import timedelta

from fitbet.tests.mocks import CHAT_ID
from fitbet.features.checkins.service import CheckinService
from fitbet.features.jobs.runner import PHASE_ORDER, run_tick, run_tick_and_dispatch
from fitbet.features.notifications.notifier import RecordingNotifier


def test_phase_order():
    assert PHASE_ORDER == ("open", "reminder", "close", "finale", "election_timeout", "onboarding_timeout")


def test_quiet_tick_changes_nothing(store, config, clock):
    report = run_tick(clock.now(), store, config=config)

    assert [p.phase for p in report.phases] == list(PHASE_ORDER)
    assert report.effects == []
    assert report.failures == 0


def test_one_tick_catches_up_in_order(scenario, store, config):
    """A tick long after the end opens, closes and finalizes everything in one pass."""
    challenge, players = scenario.active_challenge(duration_value=1)

    report = run_tick(challenge.ends_at + timedelta(days=9), store, config=config)

    assert len(report.phase("open").changed) == 2
    assert len(report.phase("reminder").changed) == 2
    assert len(report.phase("close").changed) == 2
    assert report.phase("finale").changed == [challenge.id]
    assert scenario.challenge(challenge.id).status == "completed"
    for participant in players.values():
        refreshed = scenario.participant(participant.id)
        # Two skips stay within the default allowance of two
        assert refreshed.skipped_checkins == 2
        assert refreshed.status == "completed"

    again = run_tick(challenge.ends_at + timedelta(days=9), store, config=config)
    assert again.effects == []


def test_failing_record_does_not_stop_the_phase(scenario, store, config, monkeypatch):
    broken, _ = scenario.active_challenge(chat_id=-1, duration_value=1)
    healthy, _ = scenario.active_challenge(chat_id=-2, user_ids=(4, 5), creator_id=4, duration_value=1)
    broken_window = scenario.windows(broken.id)[0]
    healthy_window = scenario.windows(healthy.id)[0]

    original = CheckinService._open_window

    def flaky(self, window):
        if window.challenge_id == broken.id:
            raise RuntimeError("boom")
        return original(self, window)

    monkeypatch.setattr(CheckinService, "_open_window", flaky)

    report = run_tick(broken_window.opens_at, store, config=config)

    assert report.phase("open").failed == [broken_window.id]
    assert report.phase("open").changed == [healthy_window.id]
    assert report.failures == 1
    assert [p.phase for p in report.phases] == list(PHASE_ORDER)
    assert scenario.windows(broken.id)[0].status == "scheduled"
    assert scenario.windows(healthy.id)[0].status == "open"


def test_onboarding_and_election_timeouts_run_in_tick(scenario, elections, store, config, clock):
    challenge = scenario.create()
    scenario.onboard(challenge.id, 1)
    scenario.onboard(challenge.id, 2)
    stuck = scenario.join(challenge.id, 3)
    election, _ = elections.start_election(challenge.id, 1)

    report = run_tick(clock.now() + timedelta(hours=49), store, config=config)

    assert report.phase("election_timeout").changed == [election.id]
    assert report.phase("onboarding_timeout").changed == [stuck.id]
    assert scenario.challenge(challenge.id).bank_holder_id == 1


def test_failed_delivery_does_not_abort_dispatch(scenario, store, config):
    challenge, _ = scenario.active_challenge(duration_value=1)
    window = scenario.windows(challenge.id)[0]
    notifier = RecordingNotifier(fail_for={CHAT_ID})

    report, deliveries = run_tick_and_dispatch(window.opens_at, store, notifier, config=config)

    assert len(report.phase("open").changed) == 1
    failed = [d for d in deliveries if not d.ok]
    assert [d.recipient for d in failed] == [CHAT_ID]
    assert sorted(to for to, _ in notifier.sent) == [1, 2, 3]
