"""Session controller: process actions (list, poll, log, write, send-keys, kill)."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from hostactuator.infra.keys import key_sequence
from hostactuator.infra.process_registry import ProcessRegistry
from hostactuator.models.payloads import ProcessAction, ProcessPayload
from hostactuator.models.session import ProcessSession

logger = logging.getLogger(__name__)


@dataclass
class ProcessActionResult:
    """Result of a process action; which data fields are set depends on the action."""

    success: bool
    sessions: list[dict] | None = None
    session: dict | None = None
    tail: str | None = None
    output: str | None = None
    error: str = ""

    def to_result(self) -> dict:
        if not self.success:
            return {"error": self.error}
        return {
            "sessions": self.sessions,
            "session": self.session,
            "tail": self.tail,
            "content": self.output,
        }


def _fail(error: str) -> ProcessActionResult:
    return ProcessActionResult(success=False, error=error)


class SessionController:
    """Routes process actions onto the registry. Never raises past handle()."""

    def __init__(self, registry: ProcessRegistry) -> None:
        self._registry = registry

    async def handle(self, payload: ProcessPayload) -> ProcessActionResult:
        action = payload.action
        if action is ProcessAction.LIST:
            return self.list_sessions()

        session_id = payload.session_id
        if not session_id:
            return _fail(f"Session ID required for {action.value} action")

        if action is ProcessAction.POLL:
            return self.poll(session_id)
        if action is ProcessAction.LOG:
            return self.log(session_id, payload.offset, payload.limit)
        if action is ProcessAction.WRITE:
            return await self.write(session_id, payload.data)
        if action is ProcessAction.SEND_KEYS:
            return await self.send_keys(session_id, payload.keys)
        if action is ProcessAction.KILL:
            return self.kill(session_id)
        return _fail(f"Unknown process action: {action}")

    def list_sessions(self) -> ProcessActionResult:
        return ProcessActionResult(
            success=True,
            sessions=[s.to_info() for s in self._registry.list()],
        )

    def poll(self, session_id: str) -> ProcessActionResult:
        session = self._registry.get(session_id)
        if session is None:
            return _fail(f"Session not found: {session_id}")
        return ProcessActionResult(success=True, session=session.to_info(), tail=session.tail)

    def log(
        self, session_id: str, offset: int | None = None, limit: int | None = None
    ) -> ProcessActionResult:
        """Full aggregated output, optionally windowed by 1-based line offset."""
        session = self._registry.get(session_id)
        if session is None:
            return _fail(f"Session not found: {session_id}")

        output = session.aggregated
        if offset is not None or limit is not None:
            lines = output.split("\n")
            start = max(0, (offset or 1) - 1)
            end = start + limit if limit is not None else len(lines)
            output = "\n".join(lines[start:end])

        return ProcessActionResult(success=True, session=session.to_info(), output=output)

    async def write(self, session_id: str, data: str | None) -> ProcessActionResult:
        if data is None:
            return _fail("Data required for write action")

        session = self._registry.get(session_id)
        if session is None:
            return _fail(f"Session not found: {session_id}")
        if session.exited:
            return _fail("Cannot write to exited process")
        if session.stdin is None:
            return _fail("Session stdin not available")

        try:
            await self._write_input(session, data)
        except (OSError, RuntimeError) as e:
            return _fail(f"Failed to write to session: {e}")
        return ProcessActionResult(success=True, session=session.to_info())

    async def send_keys(
        self, session_id: str, keys: tuple[str, ...] | None
    ) -> ProcessActionResult:
        if not keys:
            return _fail("Keys required for send-keys action")

        session = self._registry.get(session_id)
        if session is None:
            return _fail(f"Session not found: {session_id}")
        if session.exited:
            return _fail("Cannot send keys to exited process")
        if session.stdin is None:
            return _fail("Session stdin not available")

        try:
            for key in keys:
                await self._write_input(session, key_sequence(key))
        except (OSError, RuntimeError) as e:
            return _fail(f"Failed to send keys to session: {e}")
        return ProcessActionResult(success=True, session=session.to_info())

    def kill(self, session_id: str) -> ProcessActionResult:
        session = self._registry.get(session_id)
        if session is None:
            return _fail(f"Session not found: {session_id}")
        if session.exited:
            return _fail("Process already exited")

        logger.info("Kill requested for session %s", session_id)
        if not self._registry.kill(session_id):
            return _fail("Failed to kill process (may have already exited)")
        return ProcessActionResult(success=True, session=session.to_info())

    @staticmethod
    async def _write_input(session: ProcessSession, data: str) -> None:
        stdin = session.stdin
        if stdin is None:
            raise RuntimeError("Session stdin not available")
        stdin.write(data.encode())
        await stdin.drain()
