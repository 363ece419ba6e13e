"""Tests for wake webhook delivery."""

from __future__ import annotations

import json

import httpx
import pytest

from hostactuator.infra.webhook import WakeNotifier


def _notifier(handler, port=18789):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WakeNotifier(port, client=client)


class TestWakeNotifier:
    @pytest.mark.asyncio
    async def test_url(self):
        enabled = WakeNotifier(18789)
        disabled = WakeNotifier(None)
        assert enabled.url == "http://localhost:18789/hooks/wake"
        assert disabled.url is None
        await enabled.close()
        await disabled.close()

    @pytest.mark.asyncio
    async def test_posts_event(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, str(request.url), json.loads(request.content)))
            return httpx.Response(200)

        notifier = _notifier(handler)
        assert await notifier.deliver("wake up", "slack", "2024-01-01T00:00:00Z")
        await notifier.close()

        assert seen == [(
            "POST",
            "http://localhost:18789/hooks/wake",
            {"text": "wake up", "source": "slack", "ts": "2024-01-01T00:00:00Z"},
        )]

    @pytest.mark.asyncio
    async def test_no_port_drops(self):
        calls = []
        notifier = _notifier(lambda r: calls.append(r) or httpx.Response(200), port=None)
        assert await notifier.deliver("x", "y", "z") is False
        assert calls == []
        await notifier.close()

    @pytest.mark.asyncio
    async def test_server_error_reported(self):
        notifier = _notifier(lambda r: httpx.Response(500))
        assert await notifier.deliver("x", "y", "z") is False
        await notifier.close()

    @pytest.mark.asyncio
    async def test_connection_error_swallowed(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        notifier = _notifier(handler)
        assert await notifier.deliver("x", "y", "z") is False
        await notifier.close()
