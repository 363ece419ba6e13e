"""Command outcome models shared by executors and the broker connection."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ResultStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    RUNNING = "running"

    @property
    def is_terminal(self) -> bool:
        return self is not ResultStatus.RUNNING


@dataclass(frozen=True)
class ExecOutcome:
    """One reportable state of a shell run: yielded, finished, or errored."""

    status: ResultStatus
    stdout: str = ""
    stderr: str = ""
    session_id: str | None = None
    pid: int | None = None
    exit_code: int | None = None
    duration_ms: int | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_result(self) -> dict:
        """Wire payload for the command_result message."""
        if self.status is ResultStatus.RUNNING:
            return {
                "sessionId": self.session_id,
                "pid": self.pid,
                "stdout": self.stdout,
                "stderr": self.stderr,
            }
        if self.error is not None:
            return {
                "error": self.error,
                "stdout": self.stdout,
                "stderr": self.stderr,
                "sessionId": self.session_id,
                "pid": self.pid,
            }
        return {
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exitCode": self.exit_code,
            "durationMs": self.duration_ms,
            "sessionId": self.session_id,
            "pid": self.pid,
        }
