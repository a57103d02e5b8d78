"""Protocol client - handshake, request ids and response handling.

Sits between the transport and the session. The gateway speaks first:

    <- event connect.challenge {nonce}
    -> req connect {minProtocol, maxProtocol, client, role, scopes, auth, ...}
    <- res ok {type: "hello-ok", protocol: 3}

Only after hello-ok may anything else be sent. Every other event frame is
handed to the event sink unchanged.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from ..config import GatewayConfig
from ..errors import GatewayError, TransportError
from ..notifications import Notification
from ..state import ConnectionState, SessionState
from ..transport.base import AnyFrame, Transport
from .frames import EventFrame, RequestFrame, ResponseFrame

logger = logging.getLogger(__name__)

CHALLENGE_EVENT = "connect.challenge"
HELLO_OK = "hello-ok"
OPERATOR_ROLE = "operator"
OPERATOR_SCOPES = ("operator.read", "operator.write")

NotificationSink = Callable[[Notification], Awaitable[None]]
EventSink = Callable[[EventFrame], Awaitable[None]]


async def _discard_notification(notification: Notification) -> None:
    return None


async def _discard_event(frame: EventFrame) -> None:
    return None


class ProtocolClient:
    """Drives the connect handshake and owns outbound requests.

    Implements the transport listener protocol.

    Args:
        config: Gateway configuration (address, token, client descriptor)
        transport: Transport to talk through
        state: Shared session state (created if omitted)
        notify: Awaited with every notification this client produces
        on_event: Awaited with every non-handshake event frame
    """

    def __init__(
        self,
        config: GatewayConfig,
        transport: Transport,
        state: SessionState | None = None,
        notify: NotificationSink | None = None,
        on_event: EventSink | None = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.state = state or SessionState()
        self._notify = notify or _discard_notification
        self._on_event = on_event or _discard_event
        transport.set_listener(self)

    @property
    def is_connected(self) -> bool:
        return self.state.is_connected

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> bool:
        """Open the transport and wait (asynchronously) for the challenge.

        Returns:
            True if the socket opened; the handshake completes later
        """
        if self.transport.is_open:
            logger.debug("Connect skipped, transport already open")
            return True

        self.state.reset()
        opened = await self.transport.connect()
        if opened and self.state.connection == ConnectionState.DISCONNECTED:
            self.state.socket_opened()
        return opened

    async def reconnect(self) -> bool:
        """Discard the transport and handshake state, then connect again."""
        logger.info("Reconnecting: full handshake replay")
        was_connected = self.state.connection != ConnectionState.DISCONNECTED
        await self.transport.reset()
        self.state.reset()
        if was_connected:
            await self._notify(Notification.disconnected())
        return await self.connect()

    async def disconnect(self) -> None:
        """Close permanently. No reconnection follows."""
        await self.transport.disconnect()
        was_connected = self.state.connection != ConnectionState.DISCONNECTED
        self.state.mark_disconnected()
        if was_connected:
            await self._notify(Notification.disconnected())

    # =========================================================================
    # Outbound
    # =========================================================================

    async def send(self, method: str, params: dict[str, Any] | None = None) -> bool:
        """Send a request. Dropped unless the handshake has completed.

        Returns:
            True if the frame was written to the transport
        """
        if not self.state.is_connected:
            logger.warning(f"Not connected, dropping {method}")
            return False

        request = RequestFrame.create(self.state.next_request_id(), method, params)
        try:
            await self.transport.send_text(request.to_json())
        except TransportError as e:
            logger.error(f"Send {method} id={request.id} failed: {e}")
            await self._notify(Notification.error(e))
            return False

        logger.debug(f"Sent {method} id={request.id}")
        return True

    async def send_chat(self, message: str) -> bool:
        """Send one chat turn to the active session."""
        logger.info(f"Sending chat.send ({len(message)} chars)")
        return await self.send(
            "chat.send",
            {
                "message": message,
                "sessionKey": self.config.session_key,
                "idempotencyKey": str(uuid.uuid4()),
            },
        )

    def connect_params(self) -> dict[str, Any]:
        """Parameters of the ``connect`` request."""
        config = self.config
        return {
            "minProtocol": config.min_protocol,
            "maxProtocol": config.max_protocol,
            "client": {
                "id": config.client_id,
                "version": config.client_version,
                "platform": config.client_platform,
                "mode": config.client_mode,
            },
            "role": OPERATOR_ROLE,
            "scopes": list(OPERATOR_SCOPES),
            "auth": {"token": config.auth_token},
            "locale": config.locale,
            "userAgent": config.user_agent,
        }

    # =========================================================================
    # Transport listener
    # =========================================================================

    async def frame_received(self, frame: AnyFrame) -> None:
        if isinstance(frame, EventFrame):
            if frame.event == CHALLENGE_EVENT:
                await self._handle_challenge(frame)
            else:
                await self._on_event(frame)
        elif isinstance(frame, ResponseFrame):
            await self._handle_response(frame)
        else:
            logger.debug(f"Ignoring gateway request {frame.method}")

    async def transport_closed(self, error: Exception | None) -> None:
        logger.info(f"Transport closed{f': {error}' if error else ''}")
        self.state.mark_disconnected()
        await self._notify(Notification.disconnected())
        if error is not None:
            await self._notify(Notification.error(error))

    # =========================================================================
    # Handshake
    # =========================================================================

    async def _handle_challenge(self, frame: EventFrame) -> None:
        if self.state.connection != ConnectionState.AWAITING_CHALLENGE:
            logger.info(f"Ignoring challenge in state {self.state.connection.value}")
            return

        nonce = frame.payload.get("nonce")
        if not isinstance(nonce, str) or not nonce:
            logger.warning("connect.challenge missing nonce")
            return

        logger.info(f"Received challenge nonce={nonce[:8]}...")
        request = RequestFrame.create(self.state.next_request_id(), "connect", self.connect_params())
        try:
            await self.transport.send_text(request.to_json())
        except TransportError as e:
            logger.error(f"Sending connect failed: {e}")
            return

        self.state.challenge_answered()
        logger.info("Connect request sent, waiting for hello-ok")

    async def _handle_response(self, frame: ResponseFrame) -> None:
        if not frame.ok:
            error = GatewayError(frame.error_message, code=frame.error_code)
            logger.error(f"res error id={frame.id}: {error}")
            await self._notify(Notification.error(error))
            return

        if frame.payload_type == HELLO_OK:
            if self.state.connection != ConnectionState.AWAITING_HELLO_OK:
                logger.warning(f"Unexpected hello-ok in state {self.state.connection.value}")
                return
            protocol = (frame.payload or {}).get("protocol")
            protocol = protocol if isinstance(protocol, int) else None
            self.state.hello_ok(protocol)
            logger.info(f"hello-ok: protocol={protocol} id={frame.id}")
            await self._notify(Notification.connected(protocol))
            return

        logger.debug(f"res ok id={frame.id} payloadType={frame.payload_type}")
