# fitbet/conftest.py
import pytest

from fitbet.core.clock import FixedClock
from fitbet.core.config import Settings
from fitbet.core.database import build_engine, create_all_tables
from fitbet.features.checkins.service import CheckinService
from fitbet.features.commitments.catalog import seed_commitments
from fitbet.features.elections.service import ElectionService
from fitbet.features.lifecycle.service import LifecycleService
from fitbet.features.notifications.notifier import RecordingNotifier
from fitbet.features.store.persistence import EntityStore
from fitbet.tests.mocks import CHAT_ID, CREATOR_ID, START


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test (StaticPool keeps one connection)."""
    engine = build_engine("sqlite://")
    create_all_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    store = EntityStore(engine)
    with store.transaction() as uow:
        seed_commitments(uow)
    return store


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def config():
    # Ignore any local .env so defaults are predictable
    return Settings(_env_file=None, ADMIN_USER_ID=999, BOT_TOKEN=None, GROQ_API_KEY=None)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def elections(store, clock, config):
    return ElectionService(store, clock, config)


@pytest.fixture
def lifecycle(store, clock, config, elections):
    return LifecycleService(store, clock, config=config, elections=elections)


@pytest.fixture
def checkins(store, clock, config):
    return CheckinService(store, clock, config=config)


class Scenario:
    """Drives challenges through the lifecycle for tests that need a later state."""

    def __init__(self, store, clock, lifecycle, elections, checkins):
        self.store = store
        self.clock = clock
        self.lifecycle = lifecycle
        self.elections = elections
        self.checkins = checkins

    def create(self, chat_id=CHAT_ID, creator_id=CREATOR_ID, stake=1000.0, **kwargs):
        challenge, _ = self.lifecycle.create_challenge(
            chat_id=chat_id, creator_id=creator_id, stake_amount=stake, **kwargs
        )
        return challenge

    def join(self, challenge_id, user_id):
        participant, _ = self.lifecycle.join_challenge(
            challenge_id, user_id, username=f"user{user_id}", first_name=f"User{user_id}"
        )
        return participant

    def fill_onboarding(self, participant_id, track="cut", weight=100.0, waist=100.0, height=180.0,
                        target_weight=90.0, target_waist=90.0):
        pid = participant_id
        self.lifecycle.save_onboarding_data(pid, track=track, start_weight=weight, start_waist=waist, height=height)
        self.lifecycle.save_onboarding_data(
            pid,
            start_photo_front_id=f"{pid}/start/front.jpg",
            start_photo_left_id=f"{pid}/start/left.jpg",
            start_photo_right_id=f"{pid}/start/right.jpg",
            start_photo_back_id=f"{pid}/start/back.jpg",
        )
        self.lifecycle.set_goal(pid, target_weight, target_waist)
        templates = self.lifecycle.list_commitment_templates()
        self.lifecycle.choose_commitments(pid, [templates[0].id, templates[1].id])

    def onboard(self, challenge_id, user_id, **metrics):
        participant = self.join(challenge_id, user_id)
        self.fill_onboarding(participant.id, **metrics)
        participant, _ = self.lifecycle.complete_onboarding(participant.id)
        return participant

    def pay(self, participant, holder_id):
        self.lifecycle.mark_paid(participant.id, participant.user_id)
        _, effects = self.lifecycle.confirm_payment(participant.id, holder_id)
        return effects

    def active_challenge(self, user_ids=(1, 2, 3), holder_id=None, **challenge_kwargs):
        """Create, onboard everyone, assign a Bank Holder, pay and confirm. Returns (challenge, participants)."""
        challenge = self.create(**challenge_kwargs)
        participants = {uid: self.onboard(challenge.id, uid) for uid in user_ids}
        holder = holder_id or user_ids[0]
        self.lifecycle.assign_bank_holder(challenge.id, challenge.creator_id, holder)
        for participant in participants.values():
            self.pay(participant, holder)
        with self.store.transaction() as uow:
            challenge = uow.challenges.get(challenge.id)
            participants = {p.user_id: p for p in uow.participants.list_for_challenge(challenge.id)}
        return challenge, participants

    def participant(self, participant_id):
        with self.store.transaction() as uow:
            return uow.participants.get(participant_id)

    def challenge(self, challenge_id):
        with self.store.transaction() as uow:
            return uow.challenges.get(challenge_id)

    def windows(self, challenge_id):
        with self.store.transaction() as uow:
            return uow.windows.list_for_challenge(challenge_id)


@pytest.fixture
def scenario(store, clock, lifecycle, elections, checkins):
    return Scenario(store, clock, lifecycle, elections, checkins)
