"""
Тесты диспетчера уведомлений
"""

import json

import httpx
import pytest

from marketplace.core.constants import NotificationChannel
from marketplace.services.notifications import (
    HttpNotificationTransport,
    Notification,
    NotificationDispatcher,
    render_template,
)
from tests.conftest import RecordingTransport


class ExplodingTransport:
    """Транспорт, который всегда падает"""

    async def send(self, notification):
        raise RuntimeError("smtp down")


def test_render_template_missing_variable():
    """Отсутствующая переменная подставляется как '-'"""
    subject, body = render_template("payout_completed", {"amount": "R 193.00", "order_short": "abcd1234"})

    assert subject == "Выплата отправлена"
    assert "R 193.00" in body
    assert "Код перевода: -." in body


def test_render_unknown_template():
    with pytest.raises(KeyError):
        render_template("birthday_greeting", {})


class TestNotificationDispatcher:
    """Тесты fire-and-forget отправки"""

    @pytest.mark.asyncio()
    async def test_dispatch_delivers_in_background(self):
        transport = RecordingTransport()
        dispatcher = NotificationDispatcher(transport)

        task = dispatcher.dispatch("order_completed", "buyer-1", {"order_short": "abcd1234"})
        assert task is not None
        await dispatcher.drain()

        assert len(transport.sent) == 1
        sent = transport.sent[0]
        assert sent.recipient == "buyer-1"
        assert sent.channel == NotificationChannel.EMAIL
        assert "#abcd1234" in sent.body
        assert dispatcher.pending == 0

    @pytest.mark.asyncio()
    async def test_unknown_template_is_dropped(self):
        transport = RecordingTransport()
        dispatcher = NotificationDispatcher(transport)

        assert dispatcher.dispatch("birthday_greeting", "buyer-1") is None
        await dispatcher.drain()
        assert transport.sent == []

    @pytest.mark.asyncio()
    async def test_unknown_channel_is_dropped(self):
        dispatcher = NotificationDispatcher(RecordingTransport())

        assert dispatcher.dispatch("order_completed", "buyer-1", channel="pigeon") is None

    @pytest.mark.asyncio()
    async def test_transport_error_is_swallowed(self):
        """Ошибка транспорта не выходит за пределы фоновой задачи"""
        dispatcher = NotificationDispatcher(ExplodingTransport())

        task = dispatcher.dispatch("order_completed", "buyer-1", {"order_short": "x"})
        await dispatcher.drain()

        assert task.done()
        assert task.exception() is None

    @pytest.mark.asyncio()
    async def test_notify_admin(self):
        transport = RecordingTransport()
        dispatcher = NotificationDispatcher(transport, admin_recipient="ops-team")

        dispatcher.notify_admin("payout_failed", {"order_short": "x", "attempts": 3, "error": "boom"})
        await dispatcher.drain()

        assert transport.sent[0].recipient == "ops-team"
        assert "3 попыток" in transport.sent[0].body


def _notification() -> Notification:
    return Notification(
        template="order_completed",
        recipient="buyer-1",
        channel=NotificationChannel.SMS,
        subject="Заказ завершён",
        body="Заказ #abcd1234 завершён.",
    )


class TestHttpNotificationTransport:
    """Тесты HTTP транспорта уведомлений"""

    @pytest.mark.asyncio()
    async def test_payload(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(202, json={"id": "n-1"})

        transport = HttpNotificationTransport(
            "https://notify.test/",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        assert await transport.send(_notification())
        assert captured["url"] == "https://notify.test/notifications"
        assert captured["body"] == {
            "template": "order_completed",
            "recipient": "buyer-1",
            "channel": "sms",
            "subject": "Заказ завершён",
            "body": "Заказ #abcd1234 завершён.",
        }

    @pytest.mark.asyncio()
    async def test_client_error_is_not_delivered(self):
        transport = HttpNotificationTransport(
            "https://notify.test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(400))),
        )

        assert not await transport.send(_notification())
