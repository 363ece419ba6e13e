"""Tests for the process registry."""

from __future__ import annotations

import asyncio
import signal
import subprocess
from concurrent.futures import ThreadPoolExecutor

import pytest

from hostactuator.infra.process_registry import ProcessRegistry
from hostactuator.models.session import TAIL_CHARS


@pytest.fixture
def registry():
    reg = ProcessRegistry()
    yield reg
    reg.close()


class TestCreate:
    def test_create_registers_session(self, registry):
        session = registry.create("echo hi", "/tmp")
        assert len(session.id) == 8
        assert session.id.isalnum()
        assert session.id == session.id.lower()
        assert registry.get(session.id) is session
        assert session.pid is None
        assert session.exited is False

    def test_ids_unique_under_concurrency(self, registry):
        with ThreadPoolExecutor(max_workers=16) as pool:
            sessions = list(pool.map(lambda i: registry.create(f"cmd {i}", "/"), range(10_000)))
        ids = {s.id for s in sessions}
        assert len(ids) == 10_000
        assert len(registry.list()) == 10_000

    def test_regenerates_on_collision(self, registry, monkeypatch):
        slugs = iter(["dupedupe", "dupedupe", "freshone"])
        monkeypatch.setattr(ProcessRegistry, "_new_slug", staticmethod(lambda: next(slugs)))
        first = registry.create("a", "/")
        second = registry.create("b", "/")
        assert first.id == "dupedupe"
        assert second.id == "freshone"

    def test_get_unknown(self, registry):
        assert registry.get("missing") is None

    def test_list_is_snapshot(self, registry):
        registry.create("a", "/")
        snapshot = registry.list()
        registry.create("b", "/")
        assert len(snapshot) == 1
        assert len(registry.list()) == 2


class TestOutput:
    def test_append_and_tail(self, registry):
        session = registry.create("x", "/")
        assert registry.append_output(session.id, "hello ")
        assert registry.append_output(session.id, "world")
        assert session.aggregated == "hello world"
        assert registry.tail(session.id) == "hello world"

    def test_tail_is_last_4000_chars(self, registry):
        session = registry.create("x", "/")
        registry.append_output(session.id, "a" * 5000 + "b" * TAIL_CHARS)
        assert session.tail == "b" * TAIL_CHARS
        assert len(session.aggregated) == 5000 + TAIL_CHARS

    def test_aggregate_cap_keeps_trailing_chars(self):
        registry = ProcessRegistry(max_output_chars=200_000)
        session = registry.create("x", "/")
        registry.append_output(session.id, "A" * 199_990)
        registry.append_output(session.id, "B" * 20)
        assert len(session.aggregated) == 200_000
        assert session.aggregated.startswith("A" * 199_980)
        assert session.aggregated.endswith("B" * 20)

    def test_append_after_exit_ignored(self, registry):
        session = registry.create("x", "/")
        registry.append_output(session.id, "before")
        registry.mark_exited(session.id, 0)
        assert registry.append_output(session.id, "after") is False
        assert session.aggregated == "before"

    def test_append_unknown_session(self, registry):
        assert registry.append_output("missing", "data") is False
        assert registry.tail("missing") == ""


class TestLifecycle:
    def test_attach(self, registry):
        session = registry.create("x", "/")
        stdin = object()
        assert registry.attach(session.id, 1234, stdin)
        assert session.pid == 1234
        assert session.stdin is stdin

    def test_mark_exited_first_write_wins(self, registry):
        session = registry.create("x", "/")
        registry.attach(session.id, 1234, object())
        assert registry.mark_exited(session.id, 1, "SIGTERM") is True
        assert registry.mark_exited(session.id, 0, None) is False
        assert session.exited is True
        assert session.exit_code == 1
        assert session.exit_signal == "SIGTERM"
        assert session.stdin is None

    def test_mark_backgrounded(self, registry):
        session = registry.create("x", "/")
        assert registry.mark_backgrounded(session.id)
        assert session.backgrounded is True
        assert registry.mark_backgrounded("missing") is False


class TestKill:
    def test_kill_without_pid(self, registry):
        session = registry.create("x", "/")
        assert registry.kill(session.id) is False

    def test_kill_unknown_session(self, registry):
        assert registry.kill("missing") is False

    def test_kill_vanished_process(self, registry):
        proc = subprocess.Popen(["true"])
        proc.wait()
        session = registry.create("true", "/")
        registry.attach(session.id, proc.pid, None)
        assert registry.kill(session.id) is False

    @pytest.mark.asyncio
    async def test_kill_sends_sigterm(self, registry):
        proc = await asyncio.create_subprocess_exec("sleep", "30")
        session = registry.create("sleep 30", "/")
        registry.attach(session.id, proc.pid, None)

        assert registry.kill(session.id) is True
        returncode = await asyncio.wait_for(proc.wait(), timeout=5)
        assert returncode == -signal.SIGTERM

    @pytest.mark.asyncio
    async def test_kill_escalates_to_sigkill(self):
        registry = ProcessRegistry(kill_grace=0.2)
        proc = await asyncio.create_subprocess_exec(
            "sh", "-c", "trap '' TERM; sleep 30",
        )
        # give the shell a moment to install the trap
        await asyncio.sleep(0.2)
        session = registry.create("stubborn", "/")
        registry.attach(session.id, proc.pid, None)

        assert registry.kill(session.id) is True
        returncode = await asyncio.wait_for(proc.wait(), timeout=5)
        assert returncode == -signal.SIGKILL
        registry.close()

    @pytest.mark.asyncio
    async def test_exit_cancels_escalation(self):
        registry = ProcessRegistry(kill_grace=0.1)
        proc = await asyncio.create_subprocess_exec("sleep", "30")
        session = registry.create("sleep 30", "/")
        registry.attach(session.id, proc.pid, None)
        registry.kill(session.id)
        await proc.wait()
        registry.mark_exited(session.id, None, "SIGTERM")
        assert registry._escalations == {}
