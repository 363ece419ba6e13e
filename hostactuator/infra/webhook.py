"""Best-effort delivery of wake notifications to a local webhook."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class WakeNotifier:
    """Posts wake events to ``http://localhost:<port>/hooks/wake``.

    One attempt per event, no retry. Failures are logged and dropped.
    """

    def __init__(
        self,
        port: int | None,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._port = port
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def url(self) -> str | None:
        if not self._port:
            return None
        return f"http://localhost:{self._port}/hooks/wake"

    async def deliver(self, text: str, source: str, ts: Any) -> bool:
        url = self.url
        if url is None:
            logger.warning("Received wake but no webhook port configured, dropping")
            return False

        try:
            response = await self._client.post(
                url, json={"text": text, "source": source, "ts": ts}
            )
        except httpx.HTTPError as e:
            logger.error("Wake delivery failed to %s: %s", url, e)
            return False

        logger.info("Wake delivered to %s: %s", url, response.status_code)
        return response.is_success

    async def close(self) -> None:
        await self._client.aclose()
