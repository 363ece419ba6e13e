"""Process registry: in-memory table of shell sessions with output buffering."""

from __future__ import annotations

import asyncio
import logging
import os
import secrets
import signal
import string
import threading

from hostactuator.models.session import (
    MAX_OUTPUT_CHARS,
    TAIL_CHARS,
    InputHandle,
    ProcessSession,
)

logger = logging.getLogger(__name__)

KILL_GRACE_SECONDS = 5.0

_SLUG_ALPHABET = string.ascii_lowercase + string.digits
_SLUG_LENGTH = 8


class ProcessRegistry:
    """Tracks active and backgrounded shell sessions.

    Every mutation touches a single record, so no cross-record locking is
    needed. The lock only guards id generation + insertion.
    """

    def __init__(
        self,
        max_output_chars: int = MAX_OUTPUT_CHARS,
        kill_grace: float = KILL_GRACE_SECONDS,
    ) -> None:
        self._sessions: dict[str, ProcessSession] = {}
        self._lock = threading.Lock()
        self._max_output_chars = max_output_chars
        self._kill_grace = kill_grace
        self._escalations: dict[str, asyncio.TimerHandle] = {}

    def create(self, command: str, cwd: str) -> ProcessSession:
        """Register a new session with empty output."""
        with self._lock:
            session_id = self._new_slug()
            while session_id in self._sessions:
                session_id = self._new_slug()
            session = ProcessSession(
                id=session_id,
                command=command,
                cwd=cwd,
                max_output_chars=self._max_output_chars,
            )
            self._sessions[session_id] = session
        logger.debug("Registered session %s: %s", session_id, command[:100])
        return session

    def get(self, session_id: str) -> ProcessSession | None:
        return self._sessions.get(session_id)

    def list(self) -> list[ProcessSession]:
        return list(self._sessions.values())

    def attach(self, session_id: str, pid: int | None, stdin: InputHandle | None) -> bool:
        """Record the spawned process for a session."""
        session = self._sessions.get(session_id)
        if session is None or session.exited:
            return False
        session.pid = pid
        session.stdin = stdin
        return True

    def mark_backgrounded(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.backgrounded = True
        return True

    def mark_exited(
        self,
        session_id: str,
        exit_code: int | None = None,
        exit_signal: str | None = None,
    ) -> bool:
        """Mark a session exited. First call wins; later calls are no-ops."""
        session = self._sessions.get(session_id)
        if session is None or session.exited:
            return False
        session.exited = True
        session.exit_code = exit_code
        session.exit_signal = exit_signal
        session.stdin = None
        handle = self._escalations.pop(session_id, None)
        if handle is not None:
            handle.cancel()
        logger.debug(
            "Session %s exited (code=%s, signal=%s)", session_id, exit_code, exit_signal
        )
        return True

    def append_output(self, session_id: str, data: str) -> bool:
        """Append output, keeping only the most recent max_output_chars."""
        session = self._sessions.get(session_id)
        if session is None or session.exited:
            return False

        combined = session.aggregated + data
        if len(combined) > session.max_output_chars:
            combined = combined[-session.max_output_chars:]
        session.aggregated = combined
        session.tail = combined[-TAIL_CHARS:]
        return True

    def tail(self, session_id: str) -> str:
        session = self._sessions.get(session_id)
        return session.tail if session else ""

    def kill(self, session_id: str) -> bool:
        """SIGTERM the session's process, escalating to SIGKILL after a grace period.

        Returns False if there is no pid or the process is already gone.
        """
        session = self._sessions.get(session_id)
        if session is None or not session.pid:
            return False

        try:
            os.kill(session.pid, signal.SIGTERM)
        except (ProcessLookupError, PermissionError):
            logger.info("Session %s (pid=%s) already gone", session_id, session.pid)
            return False

        logger.info("Sent SIGTERM to session %s (pid=%s)", session_id, session.pid)
        self._schedule_escalation(session)
        return True

    def close(self) -> None:
        """Cancel pending SIGKILL escalations."""
        for handle in self._escalations.values():
            handle.cancel()
        self._escalations.clear()

    def _schedule_escalation(self, session: ProcessSession) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No event loop; cannot escalate kill for session %s", session.id)
            return
        previous = self._escalations.pop(session.id, None)
        if previous is not None:
            previous.cancel()
        self._escalations[session.id] = loop.call_later(
            self._kill_grace, self._force_kill, session.id
        )

    def _force_kill(self, session_id: str) -> None:
        self._escalations.pop(session_id, None)
        session = self._sessions.get(session_id)
        if session is None or session.exited or not session.pid:
            return
        try:
            os.kill(session.pid, signal.SIGKILL)
            logger.warning(
                "Session %s did not exit within %.0fs, sent SIGKILL",
                session_id, self._kill_grace,
            )
        except (ProcessLookupError, PermissionError):
            pass

    @staticmethod
    def _new_slug() -> str:
        return "".join(secrets.choice(_SLUG_ALPHABET) for _ in range(_SLUG_LENGTH))
