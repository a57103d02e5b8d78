"""Reconnection policy.

Fixed delay, single pending attempt. Only transport failures schedule a
reconnect; gateway-reported errors never do. Each reconnect replays the whole
handshake, there is no session resumption.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 3.0


class ReconnectionPolicy:
    """Schedules at most one delayed reconnection attempt at a time."""

    def __init__(
        self,
        reconnect: Callable[[], Awaitable[object]],
        delay: float = DEFAULT_RECONNECT_DELAY,
    ) -> None:
        self._reconnect = reconnect
        self.delay = delay
        self._enabled = True
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self.attempts = 0

    @property
    def pending(self) -> bool:
        return self._task is not None

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        """Allow scheduling again (after a manual connect)."""
        self._enabled = True

    def reset(self) -> None:
        """Drop any pending attempt but stay enabled (before a manual reconnect)."""
        self._enabled = True
        self._generation += 1
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def schedule(self) -> bool:
        """Schedule a reconnect after ``delay`` seconds.

        Returns:
            False if disabled or an attempt is already pending
        """
        if not self._enabled:
            logger.debug("Reconnect disabled, not scheduling")
            return False
        if self._task is not None:
            logger.debug("Reconnect already pending")
            return False

        logger.info(f"Will reconnect in {self.delay:g}s")
        self._task = asyncio.create_task(self._fire(self._generation))
        return True

    def cancel(self) -> None:
        """Disable reconnection and drop any pending attempt."""
        self._enabled = False
        self._generation += 1
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def aclose(self) -> None:
        """Cancel and wait for a pending attempt to unwind."""
        task = self._task
        self.cancel()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _fire(self, generation: int) -> None:
        await asyncio.sleep(self.delay)
        if generation != self._generation or not self._enabled:
            return
        self._task = None
        self.attempts += 1
        logger.info(f"Reconnecting (attempt {self.attempts})")
        try:
            await self._reconnect()
        except Exception:
            logger.exception("Reconnect attempt failed")
