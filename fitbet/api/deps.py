"""Request-scoped dependencies. Tests replace them through ``app.dependency_overrides``."""

from functools import lru_cache

from fitbet.core.clock import Clock, SystemClock
from fitbet.features.advisor.service import AdvisoryOracle, get_advisor
from fitbet.features.notifications.notifier import Notifier, TelegramNotifier
from fitbet.features.store.persistence import EntityStore


@lru_cache(maxsize=1)
def _default_store() -> EntityStore:
    return EntityStore()


@lru_cache(maxsize=1)
def _default_notifier() -> TelegramNotifier:
    return TelegramNotifier()


def get_store() -> EntityStore:
    return _default_store()


def get_clock() -> Clock:
    return SystemClock()


def get_notifier() -> Notifier:
    return _default_notifier()


def get_advisory_oracle() -> AdvisoryOracle:
    return get_advisor()
