"""
fitbet/features/notifications/notifier.py

Outbound chat messages. Every send returns a DeliveryResult; nothing raises to
the caller, so a blocked user or a Telegram outage never aborts a transition.
"""

import logging
from typing import List, Optional, Protocol

import httpx

from fitbet.core.config import settings
from fitbet.models.effects import DeliveryResult

logger = logging.getLogger("fitbet")


class Notifier(Protocol):
    def notify(self, recipient: int, message: str) -> DeliveryResult:
        ...


class TelegramNotifier:
    """Bot API ``sendMessage`` over httpx."""

    def __init__(
        self,
        bot_token: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.bot_token = bot_token or settings.BOT_TOKEN
        self.api_base = (api_base or settings.TELEGRAM_API_BASE).rstrip("/")
        self.client = client or httpx.Client(timeout=timeout or settings.NOTIFY_TIMEOUT_SECONDS)

    def notify(self, recipient: int, message: str) -> DeliveryResult:
        if not self.bot_token:
            return DeliveryResult(recipient=recipient, ok=False, error="bot_token_missing")

        url = f"{self.api_base}/bot{self.bot_token}/sendMessage"
        try:
            response = self.client.post(
                url,
                json={"chat_id": recipient, "text": message, "parse_mode": "Markdown"},
            )
            response.raise_for_status()
            body = response.json()
            if not body.get("ok", False):
                return DeliveryResult(
                    recipient=recipient, ok=False, error=body.get("description", "telegram_error")
                )
            return DeliveryResult(recipient=recipient, ok=True)
        except httpx.HTTPStatusError as e:
            return DeliveryResult(
                recipient=recipient, ok=False, error=f"http_{e.response.status_code}"
            )
        except httpx.HTTPError as e:
            return DeliveryResult(recipient=recipient, ok=False, error=type(e).__name__)

    def close(self) -> None:
        self.client.close()


class RecordingNotifier:
    """In-memory notifier for tests and dry runs. ``fail_for`` simulates blocked recipients."""

    def __init__(self, fail_for: Optional[set] = None):
        self.sent: List[tuple] = []
        self.fail_for = set(fail_for or ())

    def notify(self, recipient: int, message: str) -> DeliveryResult:
        if recipient in self.fail_for:
            return DeliveryResult(recipient=recipient, ok=False, error="blocked")
        self.sent.append((recipient, message))
        return DeliveryResult(recipient=recipient, ok=True)

    def messages_for(self, recipient: int) -> List[str]:
        return [text for to, text in self.sent if to == recipient]
