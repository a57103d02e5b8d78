"""Session state for one client instance.

Connection state, the request-id counter, the negotiated protocol version and
the workspace sync state live together here. Other components read the
fields but change them only through the transition methods below.
"""

from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    """Handshake state machine."""

    DISCONNECTED = "disconnected"
    AWAITING_CHALLENGE = "awaiting_challenge"
    AWAITING_HELLO_OK = "awaiting_hello_ok"
    CONNECTED = "connected"


class SyncState(str, Enum):
    """Workspace sync flow currently in flight."""

    IDLE = "idle"
    READING = "reading"
    WRITING = "writing"


# Forward-only; any state may fall back to DISCONNECTED.
_ALLOWED_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.AWAITING_CHALLENGE}),
    ConnectionState.AWAITING_CHALLENGE: frozenset({ConnectionState.AWAITING_HELLO_OK}),
    ConnectionState.AWAITING_HELLO_OK: frozenset({ConnectionState.CONNECTED}),
    ConnectionState.CONNECTED: frozenset(),
}


class SessionState:
    """Mutable state shared by the protocol client and the sync orchestrator."""

    def __init__(self) -> None:
        self._connection = ConnectionState.DISCONNECTED
        self._next_request_id = 1
        self._protocol_version: int | None = None
        self._sync = SyncState.IDLE

    @property
    def connection(self) -> ConnectionState:
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection == ConnectionState.CONNECTED

    @property
    def protocol_version(self) -> int | None:
        return self._protocol_version

    @property
    def sync(self) -> SyncState:
        return self._sync

    # -- connection transitions -------------------------------------------

    def _advance(self, target: ConnectionState) -> None:
        if target not in _ALLOWED_TRANSITIONS[self._connection]:
            raise ValueError(f"Illegal connection transition: {self._connection.value} -> {target.value}")
        self._connection = target

    def reset(self) -> None:
        """Forget everything about the previous connection."""
        self._connection = ConnectionState.DISCONNECTED
        self._next_request_id = 1
        self._protocol_version = None

    def socket_opened(self) -> None:
        self._advance(ConnectionState.AWAITING_CHALLENGE)

    def challenge_answered(self) -> None:
        self._advance(ConnectionState.AWAITING_HELLO_OK)

    def hello_ok(self, protocol_version: int | None) -> None:
        self._advance(ConnectionState.CONNECTED)
        self._protocol_version = protocol_version

    def mark_disconnected(self) -> None:
        self._connection = ConnectionState.DISCONNECTED

    def next_request_id(self) -> str:
        """Allocate the next request id (``req-1``, ``req-2``, ...)."""
        request_id = self._next_request_id
        self._next_request_id += 1
        return f"req-{request_id}"

    # -- sync transitions -------------------------------------------------

    def begin_sync(self, target: SyncState) -> bool:
        """Enter a sync flow. Returns False if another flow is active."""
        if target == SyncState.IDLE:
            raise ValueError("begin_sync needs READING or WRITING")
        if self._sync != SyncState.IDLE:
            return False
        self._sync = target
        return True

    def end_sync(self) -> None:
        self._sync = SyncState.IDLE
