"""In-memory transport for tests and embedding.

Records outbound frames and lets callers inject inbound ones. No I/O.

Usage:
    transport = MockTransport()
    client = GatewaySession(config, transport=transport)
    await client.connect()
    await transport.inject({"type": "event", "event": "connect.challenge", "payload": {"nonce": "n"}})
    assert transport.sent[0]["method"] == "connect"
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ..errors import ProtocolError, TransportError
from ..protocol.frames import parse_frame
from .base import TransportListener
from .reconnect import ReconnectionPolicy

logger = logging.getLogger(__name__)


class MockTransport:
    """Transport that talks to the test instead of a socket."""

    def __init__(self, reconnection: ReconnectionPolicy | None = None, fail_connect: bool = False) -> None:
        self.reconnection = reconnection
        self.fail_connect = fail_connect
        self.fail_send = False
        self.sent: list[dict[str, Any]] = []
        self.connect_calls = 0
        self._listener: TransportListener | None = None
        self._open = False
        self._should_reconnect = True

    @property
    def is_open(self) -> bool:
        return self._open

    def set_listener(self, listener: TransportListener) -> None:
        self._listener = listener

    @property
    def sent_methods(self) -> list[str]:
        return [frame.get("method", "") for frame in self.sent]

    def last_request(self, method: str) -> dict[str, Any] | None:
        for frame in reversed(self.sent):
            if frame.get("method") == method:
                return frame
        return None

    async def connect(self) -> bool:
        if self._open:
            return True
        self._should_reconnect = True
        if self.reconnection is not None:
            self.reconnection.enable()
        self.connect_calls += 1
        if self.fail_connect:
            await self._closed(TransportError("Connect failed: mock"))
            return False
        self._open = True
        return True

    async def send_text(self, text: str) -> None:
        if not self._open:
            raise TransportError("Not connected")
        if self.fail_send:
            raise TransportError("Send failed: mock")
        self.sent.append(json.loads(text))

    async def reset(self) -> None:
        self._open = False

    async def disconnect(self) -> None:
        self._should_reconnect = False
        if self.reconnection is not None:
            self.reconnection.cancel()
        self._open = False

    async def inject(self, frame: dict[str, Any] | str) -> None:
        """Deliver an inbound frame as if it came off the wire."""
        raw = frame if isinstance(frame, str) else json.dumps(frame)
        try:
            parsed = parse_frame(raw)
        except ProtocolError as e:
            logger.warning(f"Dropping malformed frame: {e}")
            return
        if self._listener is not None:
            await self._listener.frame_received(parsed)

    async def drop(self, error: Exception | None = None) -> None:
        """Simulate the connection failing."""
        if not self._open:
            return
        self._open = False
        await self._closed(error or TransportError("Receive failed: mock"))

    async def _closed(self, error: Exception | None) -> None:
        if self._listener is not None:
            await self._listener.transport_closed(error)
        if self._should_reconnect and self.reconnection is not None:
            self.reconnection.schedule()
