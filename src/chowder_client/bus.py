"""Notification channel - ordered fan-out of notifications to the application.

A single channel per client instance. Publishing is synchronous and preserves
order: every subscriber sees notifications in publish order, and streams
(``async for n in channel.stream()``) get their own queue.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from .notifications import Notification, NotificationType

logger = logging.getLogger(__name__)

NotificationCallback = Callable[[Notification], None]


class NotificationChannel:
    """Ordered pub/sub for Notification objects."""

    def __init__(self) -> None:
        self._subscribers: list[NotificationCallback] = []
        self._streams: list[asyncio.Queue[Notification | None]] = []
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers) + len(self._streams)

    def publish(self, notification: Notification) -> None:
        """Deliver a notification to every subscriber and stream."""
        if self._closed:
            return

        # Copy to tolerate unsubscribe during delivery
        for callback in list(self._subscribers):
            try:
                callback(notification)
            except Exception:
                if notification.type != NotificationType.LOG:
                    logger.exception(f"Error in subscriber for {notification.type.value}")

        for queue in list(self._streams):
            queue.put_nowait(notification)

    def subscribe(self, callback: NotificationCallback) -> Callable[[], None]:
        """Register a callback. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def stream(self) -> AsyncIterator[Notification]:
        """Yield notifications until the channel is closed.

        Usage:
            async for notification in channel.stream():
                print(notification.type)
        """
        queue: asyncio.Queue[Notification | None] = asyncio.Queue()
        self._streams.append(queue)
        try:
            while True:
                notification = await queue.get()
                if notification is None:
                    break
                yield notification
        finally:
            if queue in self._streams:
                self._streams.remove(queue)

    def close(self) -> None:
        """End all streams. Further publishes are ignored."""
        if self._closed:
            return
        self._closed = True
        for queue in list(self._streams):
            queue.put_nowait(None)


class NotificationLogHandler(logging.Handler):
    """Forward log records to the channel as LOG notifications.

    Usage:
        handler = NotificationLogHandler(channel)
        logging.getLogger("chowder_client").addHandler(handler)
    """

    def __init__(self, channel: NotificationChannel, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._channel = channel

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            self._channel.publish(Notification.log(message, level=record.levelname.lower()))
        except Exception:
            self.handleError(record)
