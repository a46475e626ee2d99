import httpx

from fitbet.features.notifications.dispatch import dispatch_effects
from fitbet.features.notifications.notifier import TelegramNotifier
from fitbet.models.effects import DeliveryResult, Effect, OutboundMessage


def _notifier(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return TelegramNotifier(bot_token="123:abc", api_base="https://telegram.test", client=client)


def test_send_message_success():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = request.read()
        return httpx.Response(200, json={"ok": True, "result": {}})

    result = _notifier(handler).notify(42, "hello")

    assert result == DeliveryResult(recipient=42, ok=True)
    assert seen["url"] == "https://telegram.test/bot123:abc/sendMessage"
    assert b'"chat_id":42' in seen["body"].replace(b" ", b"")


def test_http_error_is_reported_not_raised():
    result = _notifier(lambda request: httpx.Response(403, json={"ok": False})).notify(42, "hi")
    assert not result.ok
    assert result.error == "http_403"


def test_api_level_error_is_reported():
    handler = lambda request: httpx.Response(200, json={"ok": False, "description": "chat not found"})
    result = _notifier(handler).notify(42, "hi")
    assert result.error == "chat not found"


def test_transport_error_is_reported():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    result = _notifier(handler).notify(42, "hi")
    assert not result.ok
    assert result.error == "ConnectError"


def test_missing_token_short_circuits():
    def handler(request):
        raise AssertionError("no request expected")

    notifier = _notifier(handler)
    notifier.bot_token = None
    assert notifier.notify(42, "hi").error == "bot_token_missing"


def test_dispatch_continues_after_failures():
    class Flaky:
        def __init__(self):
            self.delivered = []

        def notify(self, recipient, message):
            if recipient == 1:
                raise RuntimeError("socket closed")
            if recipient == 2:
                return DeliveryResult(recipient=2, ok=False, error="blocked")
            self.delivered.append(recipient)
            return DeliveryResult(recipient=recipient, ok=True)

    notifier = Flaky()
    effects = [
        Effect(type="a", messages=[OutboundMessage(1, "x"), OutboundMessage(2, "y")]),
        Effect(type="b", messages=[OutboundMessage(3, "z")]),
    ]

    results = dispatch_effects(notifier, effects)

    assert [r.ok for r in results] == [False, False, True]
    assert results[0].error == "socket closed"
    assert notifier.delivered == [3]
