import json

import httpx
import pytest
import respx
from prometheus_client import CollectorRegistry

from cachewatch.dispatcher import AlertDispatcher
from cachewatch.metrics import MonitorMetrics
from cachewatch.models import Notice
from cachewatch.notifier.log import LogNoticeSender
from cachewatch.notifier.webhook import WebhookNoticeSender

WEBHOOK_URL = "https://hooks.example.test/notify"


class TestWebhookNoticeSender:
    @pytest.mark.asyncio
    @respx.mock
    async def test_posts_notice_as_json(self) -> "None":
        route = respx.post(WEBHOOK_URL).mock(return_value=httpx.Response(204))

        sender = WebhookNoticeSender(WEBHOOK_URL)
        ok = await sender.send("warning", "Cache anomaly (hit-rate cliff)", "body")
        await sender.close()

        assert ok is True
        assert route.call_count == 1
        payload = json.loads(route.calls.last.request.content)
        assert payload == {
            "level": "warning",
            "title": "Cache anomaly (hit-rate cliff)",
            "body": "body",
        }

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_2xx_is_not_delivered(self) -> "None":
        respx.post(WEBHOOK_URL).mock(return_value=httpx.Response(500))

        sender = WebhookNoticeSender(WEBHOOK_URL)
        ok = await sender.send("error", "t", "b")
        await sender.close()

        assert ok is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error_propagates(self) -> "None":
        respx.post(WEBHOOK_URL).mock(side_effect=httpx.ConnectError("refused"))

        sender = WebhookNoticeSender(WEBHOOK_URL)
        with pytest.raises(httpx.ConnectError):
            await sender.send("error", "t", "b")
        await sender.close()

    def test_name(self) -> "None":
        assert WebhookNoticeSender(WEBHOOK_URL).name == "webhook"

    @respx.mock
    def test_sync_deliveries_share_one_client(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        route = respx.post(WEBHOOK_URL).mock(return_value=httpx.Response(204))

        sender = WebhookNoticeSender(WEBHOOK_URL)
        dispatcher = AlertDispatcher(sender, MonitorMetrics(registry=registry))
        try:
            for title in ("first", "second"):
                dispatcher.deliver(Notice(level="warning", title=title, body="b"))
                dispatcher.flush(timeout=5)
        finally:
            dispatcher.close(timeout=5)

        assert route.call_count == 2
        titles = [json.loads(call.request.content)["title"] for call in route.calls]
        assert titles == ["first", "second"]
        assert (
            registry.get_sample_value(
                "cachewatch_notice_failures_total", {"level": "warning"}
            )
            is None
        )


class TestLogNoticeSender:
    @pytest.mark.asyncio
    async def test_always_delivers(self) -> "None":
        sender = LogNoticeSender()
        assert await sender.send("warning", "t", "b") is True
        assert await sender.send("error", "t", "b") is True
        assert sender.name == "log"
