"""Unit tests for the WebSocket transport session and helpers."""

from __future__ import annotations

import asyncio
import ssl
from unittest.mock import AsyncMock, patch

import pytest
from websockets.exceptions import InvalidURI

from chowder_client.errors import TransportError
from chowder_client.transport.base import AnyFrame, Transport, default_trust_policy, suffix_trust_policy
from chowder_client.transport.mock import MockTransport
from chowder_client.transport.reconnect import ReconnectionPolicy
from chowder_client.transport.websocket import WebSocketTransportSession, build_gateway_url


class FakeSocket:
    """Stands in for a websockets client connection."""

    def __init__(self, messages: list[str | bytes] | None = None, hang: bool = False) -> None:
        self._messages = list(messages or [])
        self._hang = hang
        self.sent: list[str] = []
        self.closed = False
        self.close_code = 1000
        self.close_reason = ""

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self._messages:
            yield message
        if self._hang:
            await asyncio.Event().wait()

    async def send(self, text: str) -> None:
        self.sent.append(text)

    async def close(self) -> None:
        self.closed = True


class Listener:
    """Records what the transport reports."""

    def __init__(self) -> None:
        self.frames: list[AnyFrame] = []
        self.closed: list[Exception | None] = []

    async def frame_received(self, frame: AnyFrame) -> None:
        self.frames.append(frame)

    async def transport_closed(self, error: Exception | None) -> None:
        self.closed.append(error)


# =============================================================================
# URL and trust helpers
# =============================================================================


class TestBuildGatewayUrl:
    """Tests for build_gateway_url."""

    def test_appends_client_query(self) -> None:
        assert build_gateway_url("wss://gw.example.ts.net", "cli") == "wss://gw.example.ts.net/?client=cli"

    def test_strips_trailing_slash(self) -> None:
        assert build_gateway_url("wss://gw.example.com/", "cli") == "wss://gw.example.com/?client=cli"

    def test_keeps_existing_query(self) -> None:
        assert build_gateway_url("ws://localhost:18789/?client=web", "cli") == "ws://localhost:18789/?client=web"

    def test_maps_http_schemes(self) -> None:
        assert build_gateway_url("https://gw.example.com", "cli") == "wss://gw.example.com/?client=cli"
        assert build_gateway_url("http://localhost:18789", "cli") == "ws://localhost:18789/?client=cli"


class TestTrustPolicy:
    """Tests for TLS trust policies."""

    def test_default_policy(self) -> None:
        assert default_trust_policy("gw.example.com") is None

    def test_suffix_match_accepts_presented_cert(self) -> None:
        policy = suffix_trust_policy([".ts.net"])

        context = policy("gateway.tail1234.ts.net")

        assert isinstance(context, ssl.SSLContext)
        assert context.verify_mode == ssl.CERT_NONE
        assert not context.check_hostname

    def test_suffix_match_is_case_insensitive(self) -> None:
        assert suffix_trust_policy([".TS.NET"])("Gateway.ts.net") is not None

    def test_other_hosts_use_default(self) -> None:
        assert suffix_trust_policy([".ts.net"])("example.com") is None

    def test_empty_suffixes(self) -> None:
        assert suffix_trust_policy([])("gateway.ts.net") is None


# =============================================================================
# WebSocketTransportSession
# =============================================================================


class TestWebSocketTransportSession:
    """Tests for the socket lifecycle and receive loop."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(WebSocketTransportSession("ws://localhost"), Transport)
        assert isinstance(MockTransport(), Transport)

    @pytest.mark.asyncio
    async def test_connect_only_listens(self) -> None:
        """Opening the socket sends nothing."""
        socket = FakeSocket(hang=True)
        transport = WebSocketTransportSession("ws://localhost:18789")
        transport.set_listener(Listener())

        with patch("chowder_client.transport.websocket.websockets.connect", AsyncMock(return_value=socket)) as connect:
            assert await transport.connect()

        assert connect.await_args.args[0] == "ws://localhost:18789/?client=cli"
        assert transport.is_open
        assert socket.sent == []
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self) -> None:
        socket = FakeSocket(hang=True)
        transport = WebSocketTransportSession("ws://localhost")

        with patch("chowder_client.transport.websocket.websockets.connect", AsyncMock(return_value=socket)) as connect:
            await transport.connect()
            assert await transport.connect()

        assert connect.await_count == 1
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_frames_delivered_in_order(self) -> None:
        """Malformed frames are dropped; the rest arrive in receive order."""
        socket = FakeSocket(
            [
                '{"type": "event", "event": "agent", "payload": {"seq": 1}}',
                "not json",
                b'{"type": "event", "event": "chat", "payload": {"seq": 2}}',
            ]
        )
        listener = Listener()
        transport = WebSocketTransportSession("ws://localhost")
        transport.set_listener(listener)

        with patch("chowder_client.transport.websocket.websockets.connect", AsyncMock(return_value=socket)):
            await transport.connect()
            reader = transport._reader_task
            assert reader is not None
            await reader

        assert [frame.event for frame in listener.frames] == ["agent", "chat"]  # type: ignore[union-attr]
        assert listener.closed == [None]
        assert not transport.is_open

    @pytest.mark.asyncio
    async def test_close_schedules_reconnect(self) -> None:
        reconnect = AsyncMock()
        policy = ReconnectionPolicy(reconnect, delay=0.01)
        transport = WebSocketTransportSession("ws://localhost", reconnection=policy)
        transport.set_listener(Listener())

        with patch("chowder_client.transport.websocket.websockets.connect", AsyncMock(return_value=FakeSocket())):
            await transport.connect()
            await transport._reader_task  # type: ignore[misc]

        assert policy.pending
        await asyncio.sleep(0.05)
        reconnect.assert_awaited_once()
        policy.cancel()

    @pytest.mark.asyncio
    async def test_connect_failure_reports_and_schedules(self) -> None:
        listener = Listener()
        policy = ReconnectionPolicy(AsyncMock(), delay=10)
        transport = WebSocketTransportSession("ws://localhost", reconnection=policy)
        transport.set_listener(listener)

        with patch(
            "chowder_client.transport.websocket.websockets.connect",
            AsyncMock(side_effect=OSError("connection refused")),
        ):
            assert not await transport.connect()

        assert len(listener.closed) == 1
        assert isinstance(listener.closed[0], TransportError)
        assert policy.pending
        await policy.aclose()

    @pytest.mark.asyncio
    async def test_invalid_uri_raises(self) -> None:
        transport = WebSocketTransportSession("not a url")

        with patch(
            "chowder_client.transport.websocket.websockets.connect",
            AsyncMock(side_effect=InvalidURI("not a url", "bad")),
        ):
            with pytest.raises(TransportError):
                await transport.connect()

    @pytest.mark.asyncio
    async def test_manual_disconnect_does_not_reconnect(self) -> None:
        """Only a manual disconnect stops reconnection for good."""
        socket = FakeSocket(hang=True)
        listener = Listener()
        policy = ReconnectionPolicy(AsyncMock(), delay=0.01)
        transport = WebSocketTransportSession("ws://localhost", reconnection=policy)
        transport.set_listener(listener)

        with patch("chowder_client.transport.websocket.websockets.connect", AsyncMock(return_value=socket)):
            await transport.connect()
        await transport.disconnect()

        assert socket.closed
        assert not transport.is_open
        assert not policy.pending
        assert not policy.enabled
        assert listener.closed == []

    @pytest.mark.asyncio
    async def test_send_text(self) -> None:
        socket = FakeSocket(hang=True)
        transport = WebSocketTransportSession("ws://localhost")

        with pytest.raises(TransportError):
            await transport.send_text("{}")

        with patch("chowder_client.transport.websocket.websockets.connect", AsyncMock(return_value=socket)):
            await transport.connect()
        await transport.send_text('{"type": "req"}')

        assert socket.sent == ['{"type": "req"}']
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_wss_uses_trust_policy(self) -> None:
        transport = WebSocketTransportSession("wss://gw.tail1.ts.net", trust_policy=suffix_trust_policy([".ts.net"]))

        with patch(
            "chowder_client.transport.websocket.websockets.connect",
            AsyncMock(return_value=FakeSocket(hang=True)),
        ) as connect:
            await transport.connect()

        assert isinstance(connect.await_args.kwargs["ssl"], ssl.SSLContext)
        await transport.disconnect()


# =============================================================================
# MockTransport
# =============================================================================


class TestMockTransport:
    """Tests for the in-memory transport."""

    @pytest.mark.asyncio
    async def test_records_sent_frames(self) -> None:
        transport = MockTransport()
        await transport.connect()
        await transport.send_text('{"type": "req", "id": "req-1", "method": "ping", "params": {}}')

        assert transport.sent_methods == ["ping"]
        assert transport.last_request("ping")["id"] == "req-1"  # type: ignore[index]
        assert transport.last_request("other") is None

    @pytest.mark.asyncio
    async def test_inject_drops_malformed(self) -> None:
        listener = Listener()
        transport = MockTransport()
        transport.set_listener(listener)

        await transport.inject("garbage")
        await transport.inject({"type": "event", "event": "tick"})

        assert len(listener.frames) == 1

    @pytest.mark.asyncio
    async def test_drop_schedules_reconnect(self) -> None:
        policy = ReconnectionPolicy(AsyncMock(), delay=10)
        listener = Listener()
        transport = MockTransport(reconnection=policy)
        transport.set_listener(listener)
        await transport.connect()

        await transport.drop()

        assert not transport.is_open
        assert isinstance(listener.closed[0], TransportError)
        assert policy.pending
        await policy.aclose()
