"""Process session domain model."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Protocol

MAX_OUTPUT_CHARS = 200_000
TAIL_CHARS = 4000


class InputHandle(Protocol):
    """Writable side of a running process (pipe or PTY master)."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ProcessSession:
    """Registry record for one spawned shell command.

    Mutated only through ProcessRegistry; callers outside the registry
    should treat it as read-only.
    """

    id: str
    command: str
    cwd: str
    pid: int | None = None
    started_at: int = field(default_factory=_now_ms)
    exited: bool = False
    exit_code: int | None = None
    exit_signal: str | None = None
    backgrounded: bool = False
    aggregated: str = ""
    tail: str = ""
    max_output_chars: int = MAX_OUTPUT_CHARS
    stdin: InputHandle | None = field(default=None, repr=False)

    def to_info(self) -> dict:
        """Public projection sent to the broker. Never includes output."""
        return {
            "id": self.id,
            "command": self.command,
            "pid": self.pid,
            "startedAt": self.started_at,
            "cwd": self.cwd,
            "exited": self.exited,
            "exitCode": self.exit_code,
            "exitSignal": self.exit_signal,
            "backgrounded": self.backgrounded,
        }
