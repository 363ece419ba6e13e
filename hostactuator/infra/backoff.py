"""Reconnection scheduling with exponential backoff + jitter."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable

logger = logging.getLogger(__name__)


class ReconnectScheduler:
    """Decides when the next reconnection attempt runs.

    ``max_attempts=None`` means unbounded.
    """

    def __init__(
        self,
        base_ms: float = 1000,
        max_ms: float = 30_000,
        max_attempts: int | None = None,
    ) -> None:
        self._base_ms = base_ms
        self._max_ms = max_ms
        self._max_attempts = max_attempts
        self._attempt = 0
        self._timer: asyncio.TimerHandle | None = None

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def next_delay_ms(self) -> float:
        """Delay for the current attempt number, jitter included."""
        delay = self._base_ms * (2 ** self._attempt) + random.uniform(0, 1000)
        return min(delay, self._max_ms)

    def schedule(self, fn: Callable[[], None]) -> bool:
        """Arm a timer that calls ``fn``. Returns False once the ceiling is hit."""
        if self._max_attempts is not None and self._attempt >= self._max_attempts:
            return False

        delay = self.next_delay_ms()
        self._attempt += 1
        logger.info("Reconnect attempt %d in %dms", self._attempt, round(delay))

        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay / 1000, self._fire, fn)
        return True

    def reset(self) -> None:
        self._attempt = 0
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def destroy(self) -> None:
        self.reset()

    def _fire(self, fn: Callable[[], None]) -> None:
        self._timer = None
        fn()
