"""Deliver the messages attached to effects, after their transaction has committed."""

import logging
from typing import Iterable, List

from fitbet.core.logging import log_event
from fitbet.features.notifications.notifier import Notifier
from fitbet.models.effects import DeliveryResult, Effect

logger = logging.getLogger("fitbet")


def dispatch_effects(notifier: Notifier, effects: Iterable[Effect]) -> List[DeliveryResult]:
    """
    Send every message of every effect, one recipient at a time.

    Failures are returned and logged per recipient; they never raise.
    """
    results: List[DeliveryResult] = []
    for effect in effects:
        for message in effect.messages:
            try:
                result = notifier.notify(message.recipient, message.text)
            except Exception as e:
                result = DeliveryResult(recipient=message.recipient, ok=False, error=str(e))

            if not result.ok:
                log_event(
                    "warning",
                    "Notification delivery failed",
                    event_type=effect.type,
                    user_id=message.recipient,
                    error_code="notify_failed",
                    extra={"error": result.error},
                )
            results.append(result)
    return results
