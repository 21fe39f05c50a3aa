"""Tests for webhook notifications using an httpx mock transport."""

from __future__ import annotations

import httpx
import orjson
import pytest

from auctioneer.notifications.dispatcher import AUCTION_FINALIZED, WebhookNotifier


class TestWebhookNotifier:
    @pytest.mark.asyncio
    async def test_posts_event_envelope(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = WebhookNotifier("https://hooks.example/auction", client=client)

        delivered = await notifier.notify(AUCTION_FINALIZED, {"game_id": "g1", "winners_assigned": 2})
        await notifier.close()

        assert delivered is True
        assert str(seen[0].url) == "https://hooks.example/auction"
        body = orjson.loads(seen[0].content)
        assert body["type"] == AUCTION_FINALIZED
        assert body["payload"] == {"game_id": "g1", "winners_assigned": 2}
        assert body["sent_at"].endswith("Z")

    @pytest.mark.asyncio
    async def test_server_error_is_reported_not_raised(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        notifier = WebhookNotifier("https://hooks.example/auction", client=client)

        assert await notifier.notify(AUCTION_FINALIZED, {}) is False
        await notifier.close()

    @pytest.mark.asyncio
    async def test_connection_error_is_reported_not_raised(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        notifier = WebhookNotifier("https://hooks.example/auction", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        assert await notifier.notify(AUCTION_FINALIZED, {}) is False
        await notifier.close()

    @pytest.mark.asyncio
    async def test_without_url_nothing_is_sent(self):
        def handler(request):
            raise AssertionError("no request expected")

        notifier = WebhookNotifier(None, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        assert await notifier.notify(AUCTION_FINALIZED, {}) is False
        await notifier.close()
