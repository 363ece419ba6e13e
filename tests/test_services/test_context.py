"""Tests for ActuatorContext wiring."""

from __future__ import annotations

import pytest

from hostactuator.config import ActuatorConfig, BrokerConfig, ReconnectConfig, WebhookConfig
from hostactuator.context import ActuatorContext


@pytest.fixture
def config(tmp_path):
    return ActuatorConfig(
        actuator_id="box-1",
        cwd=str(tmp_path),
        broker=BrokerConfig(url="http://127.0.0.1:9", token="t"),
        reconnect=ReconnectConfig(max_attempts=3),
        webhook=WebhookConfig(port=18789),
    )


class TestActuatorContext:
    def test_single_registry_shared(self, config):
        ctx = ActuatorContext(config)
        assert ctx.shell.registry is ctx.registry
        assert ctx.sessions._registry is ctx.registry

    def test_lazy_singletons(self, config):
        ctx = ActuatorContext(config)
        assert ctx.router is ctx.router
        assert ctx.files is ctx.files

    def test_root_from_config(self, config, tmp_path):
        ctx = ActuatorContext(config)
        assert ctx.root == str(tmp_path.resolve())
        assert ctx.files.root == str(tmp_path.resolve())

    def test_execution_limits_applied(self, config):
        config.execution.max_timeout = 42
        ctx = ActuatorContext(config)
        assert ctx.shell.max_timeout == 42

    @pytest.mark.asyncio
    async def test_connection_configuration(self, config):
        ctx = ActuatorContext(config)
        conn = ctx.connection
        assert "actuator_id=box-1" in conn.url
        assert conn.url.startswith("ws://127.0.0.1:9/ws?")
        assert ctx.wake.url == "http://localhost:18789/hooks/wake"
        await ctx.close()

    @pytest.mark.asyncio
    async def test_start_requires_broker_url(self, config):
        config.broker.url = ""
        ctx = ActuatorContext(config)
        with pytest.raises(ValueError, match="Broker URL"):
            await ctx.start()
        await ctx.close()

    @pytest.mark.asyncio
    async def test_start_requires_token(self, config):
        config.broker.token = ""
        ctx = ActuatorContext(config)
        with pytest.raises(ValueError, match="Broker token"):
            await ctx.start()
        await ctx.close()
