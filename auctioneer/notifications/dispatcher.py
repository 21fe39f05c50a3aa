"""Fire-and-forget webhook notifications."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..transport.canonical_json import canonical_dumps
from ..transport.timestamps import format_timestamp, utcnow

logger = logging.getLogger(__name__)

AUCTION_FINALIZED = "auction_finalized"
POINTS_APPLIED = "points_applied"


class WebhookNotifier:
    def __init__(
        self,
        webhook_url: str | None,
        *,
        timeout_ms: int = 2000,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout_ms / 1000
        self._client = client or httpx.AsyncClient()

    async def close(self) -> None:
        await self._client.aclose()

    async def notify(self, event_type: str, payload: dict[str, Any]) -> bool:
        """POST the event; delivery failures are logged and reported as False."""
        if not self._webhook_url:
            logger.debug("No webhook configured, dropping %s notification", event_type)
            return False
        body = {"type": event_type, "sent_at": format_timestamp(utcnow()), "payload": payload}
        try:
            response = await self._client.post(
                self._webhook_url,
                content=canonical_dumps(body),
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Notification %s failed: %s", event_type, exc)
            return False
        return True
