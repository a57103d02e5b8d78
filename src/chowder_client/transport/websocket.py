"""WebSocket transport session.

Owns the socket to the gateway. After the socket opens it only listens: the
gateway speaks first with a ``connect.challenge`` event. Every inbound
message is parsed and awaited through the listener before the next receive,
so frame order is preserved end to end.

All callbacks run on the event loop that called connect(); that loop is the
only context allowed to touch session state.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any
from urllib.parse import urlsplit

import websockets
from websockets.exceptions import ConnectionClosed, InvalidURI, WebSocketException

from ..errors import ProtocolError, TransportError
from ..protocol.frames import describe_frame, parse_frame
from .base import TransportListener, TrustPolicy, default_trust_policy
from .reconnect import ReconnectionPolicy

logger = logging.getLogger(__name__)


def build_gateway_url(address: str, client_id: str) -> str:
    """Normalize the configured address into the socket URL.

    Trailing slashes are dropped and ``/?client=<id>`` is appended unless the
    address already carries a query string. http(s) schemes map to ws(s).
    """
    url = address.strip().rstrip("/")
    if url.startswith("http://"):
        url = "ws://" + url[len("http://") :]
    elif url.startswith("https://"):
        url = "wss://" + url[len("https://") :]
    if "?" not in url:
        url = f"{url}/?client={client_id}"
    return url


class WebSocketTransportSession:
    """Client-side WebSocket connection to the gateway."""

    def __init__(
        self,
        address: str,
        client_id: str = "cli",
        trust_policy: TrustPolicy | None = None,
        reconnection: ReconnectionPolicy | None = None,
        open_timeout: float = 10.0,
        ping_interval: float | None = 30.0,
        ping_timeout: float | None = 10.0,
    ) -> None:
        self.url = build_gateway_url(address, client_id)
        self._trust_policy = trust_policy or default_trust_policy
        self.reconnection = reconnection
        self._open_timeout = open_timeout
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout

        self._listener: TransportListener | None = None
        self._ws: Any = None  # websockets ClientConnection
        self._reader_task: asyncio.Task[None] | None = None
        self._should_reconnect = True
        # Bumped per socket; a close is reported once per generation.
        self._generation = 0
        self._closed_generation = -1

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    def set_listener(self, listener: TransportListener) -> None:
        self._listener = listener

    def _connect_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "open_timeout": self._open_timeout,
            "ping_interval": self._ping_interval,
            "ping_timeout": self._ping_timeout,
        }
        parts = urlsplit(self.url)
        if parts.scheme == "wss" and parts.hostname:
            context = self._trust_policy(parts.hostname)
            if context is not None:
                kwargs["ssl"] = context
        return kwargs

    async def connect(self) -> bool:
        """Open the socket and start the receive loop."""
        if self._ws is not None:
            logger.debug("Connect skipped, socket already exists")
            return True

        self._should_reconnect = True
        if self.reconnection is not None:
            self.reconnection.enable()

        self._generation += 1
        generation = self._generation
        logger.info(f"Connecting to {self.url}")

        try:
            ws = await websockets.connect(self.url, **self._connect_kwargs())
        except InvalidURI as e:
            # Not recoverable by retrying
            raise TransportError(f"Invalid gateway URL: {self.url}") from e
        except (OSError, TimeoutError, WebSocketException) as e:
            logger.warning(f"Connect failed: {e}")
            await self._handle_closed(generation, TransportError(f"Connect failed: {e}"))
            return False

        if generation != self._generation or not self._should_reconnect:
            # Torn down while the handshake was in flight
            await ws.close()
            return False

        self._ws = ws
        logger.info("Socket open, waiting for challenge")
        self._reader_task = asyncio.create_task(self._receive_loop(ws, generation))
        return True

    async def send_text(self, text: str) -> None:
        if self._ws is None:
            raise TransportError("Not connected")
        try:
            await self._ws.send(text)
        except (ConnectionClosed, OSError) as e:
            raise TransportError(f"Send failed: {e}") from e

    async def reset(self) -> None:
        """Drop the socket and reader without reporting a close."""
        self._generation += 1
        await self._teardown()

    async def disconnect(self) -> None:
        """Close for good. The only path that permanently stops the loop."""
        logger.info("Manual disconnect")
        self._should_reconnect = False
        if self.reconnection is not None:
            self.reconnection.cancel()
        self._generation += 1
        await self._teardown()

    async def _teardown(self) -> None:
        task, self._reader_task = self._reader_task, None
        ws, self._ws = self._ws, None

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()

    async def _receive_loop(self, ws: Any, generation: int) -> None:
        error: Exception | None = None
        try:
            async for raw in ws:
                try:
                    frame = parse_frame(raw)
                except ProtocolError as e:
                    logger.warning(f"Dropping malformed frame: {e}")
                    continue

                summary = describe_frame(frame)
                if summary:
                    logger.debug(f"recv {summary}")

                if self._listener is not None:
                    try:
                        await self._listener.frame_received(frame)
                    except Exception:
                        logger.exception(f"Error handling frame: {summary}")
            logger.warning(f"Socket closed: code={ws.close_code} reason={ws.close_reason or 'none'}")
        except asyncio.CancelledError:
            raise
        except (ConnectionClosed, OSError) as e:
            logger.warning(f"Receive failed: {e}")
            error = TransportError(f"Receive failed: {e}")

        if generation == self._generation:
            self._ws = None
            self._reader_task = None
        await self._handle_closed(generation, error)

    async def _handle_closed(self, generation: int, error: Exception | None) -> None:
        if generation != self._generation or self._closed_generation == generation:
            return
        self._closed_generation = generation

        if self._listener is not None:
            await self._listener.transport_closed(error)

        if self._should_reconnect and self.reconnection is not None:
            self.reconnection.schedule()
