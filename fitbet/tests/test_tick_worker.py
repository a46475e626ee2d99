from fitbet.features.notifications.notifier import RecordingNotifier
from fitbet.workers.tick_worker import _process_once


def test_process_once_reports_changes(scenario, store, clock):
    challenge, _ = scenario.active_challenge(duration_value=1)
    notifier = RecordingNotifier()

    assert _process_once(store, notifier, clock=clock) == 0

    clock.current = scenario.windows(challenge.id)[0].opens_at
    assert _process_once(store, notifier, clock=clock) == 1
    assert len(notifier.sent) == 4
