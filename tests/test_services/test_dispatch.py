"""Tests for CommandRouter capability dispatch."""

from __future__ import annotations

import pytest

from hostactuator.infra.broker.protocol import CommandDelivery
from hostactuator.infra.files import FileExecutor
from hostactuator.infra.process_registry import ProcessRegistry
from hostactuator.infra.shell import ShellExecutor
from hostactuator.models.outcome import ResultStatus
from hostactuator.services.dispatch import BRAIN_MODE_ERROR, CommandRouter
from hostactuator.services.session_controller import SessionController


@pytest.fixture
def registry():
    reg = ProcessRegistry()
    yield reg
    reg.close()


def _router(registry, root, brain_mode=False):
    return CommandRouter(
        ShellExecutor(registry, str(root)),
        SessionController(registry),
        FileExecutor(root),
        brain_mode=brain_mode,
    )


@pytest.fixture
def router(registry, tmp_path):
    return _router(registry, tmp_path)


async def _route(router, capability, payload, in_flight=None):
    delivery = CommandDelivery(id="cmd-1", capability=capability, payload=payload)
    return [r async for r in router.route(delivery, in_flight if in_flight is not None else {})]


class TestExec:
    @pytest.mark.asyncio
    async def test_exec(self, router):
        results = await _route(router, "exec", {"command": "echo hi"})
        assert len(results) == 1
        assert results[0].id == "cmd-1"
        assert results[0].status is ResultStatus.COMPLETED
        assert results[0].result["stdout"] == "hi\n"
        assert results[0].result["exitCode"] == 0

    @pytest.mark.asyncio
    async def test_legacy_shell(self, router):
        results = await _route(router, "actuator/shell", {"command": "echo legacy"})
        assert results[0].status is ResultStatus.COMPLETED
        assert results[0].result["stdout"] == "legacy\n"

    @pytest.mark.asyncio
    async def test_missing_command(self, router):
        results = await _route(router, "exec", {})
        assert results[0].status is ResultStatus.FAILED
        assert results[0].result == {"error": "No command specified"}

    @pytest.mark.asyncio
    async def test_background_yields_running_then_final(self, router):
        results = await _route(router, "exec", {"command": "sleep 0.5", "yieldMs": 50})
        assert [r.status for r in results] == [ResultStatus.RUNNING, ResultStatus.COMPLETED]
        assert results[0].result["sessionId"] == results[1].result["sessionId"]

    @pytest.mark.asyncio
    async def test_registers_cancel_action(self, router):
        in_flight = {}
        delivery = CommandDelivery(id="cmd-9", capability="exec", payload={"command": "sleep 30", "background": True})
        results = router.route(delivery, in_flight)
        first = await results.__anext__()
        assert first.status is ResultStatus.RUNNING
        assert "cmd-9" in in_flight

        in_flight["cmd-9"]()
        final = await results.__anext__()
        assert final.status is ResultStatus.FAILED
        await results.aclose()

    @pytest.mark.asyncio
    async def test_cancel_before_spawn_completes(self, router):
        class CancelOnRegister(dict):
            def __setitem__(self, key, action):
                super().__setitem__(key, action)
                action()

        results = await _route(router, "exec", {"command": "sleep 30"}, CancelOnRegister())
        assert [r.status for r in results] == [ResultStatus.FAILED]
        assert results[0].result["exitCode"] == 1


class TestOtherCapabilities:
    @pytest.mark.asyncio
    async def test_unsupported(self, router):
        results = await _route(router, "teleport", {})
        assert results[0].status is ResultStatus.FAILED
        assert results[0].result == {"error": "Unsupported capability: teleport"}

    @pytest.mark.asyncio
    async def test_process_list(self, router, registry):
        registry.create("x", "/")
        results = await _route(router, "process", {"action": "list"})
        assert results[0].status is ResultStatus.COMPLETED
        assert len(results[0].result["sessions"]) == 1

    @pytest.mark.asyncio
    async def test_process_failure(self, router):
        results = await _route(router, "process", {"action": "poll", "sessionId": "nope"})
        assert results[0].status is ResultStatus.FAILED
        assert results[0].result == {"error": "Session not found: nope"}

    @pytest.mark.asyncio
    async def test_write_then_read_then_edit(self, router, tmp_path):
        write = await _route(router, "write", {"path": "dir/f.txt", "content": "abc"})
        assert write[0].status is ResultStatus.COMPLETED
        assert write[0].result == {}

        read = await _route(router, "read", {"path": "dir/f.txt"})
        assert read[0].result == {"content": "abc", "linesRead": 1, "truncated": False}

        edit = await _route(router, "edit", {"path": "dir/f.txt", "oldText": "b", "newText": "XY"})
        assert edit[0].status is ResultStatus.COMPLETED
        assert (tmp_path / "dir" / "f.txt").read_text() == "aXYc"

    @pytest.mark.asyncio
    async def test_read_outside_root(self, router):
        results = await _route(router, "read", {"path": "../../etc/passwd"})
        assert results[0].status is ResultStatus.FAILED
        assert "outside root directory" in results[0].result["error"]


class TestBrainMode:
    @pytest.mark.asyncio
    async def test_refuses_everything(self, registry, tmp_path):
        router = _router(registry, tmp_path, brain_mode=True)
        results = await _route(router, "exec", {"command": "echo hi"})
        assert results[0].status is ResultStatus.FAILED
        assert results[0].result == {"error": BRAIN_MODE_ERROR}
        assert registry.list() == []
