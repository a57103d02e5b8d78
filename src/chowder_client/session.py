"""Gateway session - the application-facing client.

Wires the pieces together for one logical session:

    transport -> ProtocolClient -> EventRouter -> dispatch
                                                   |- WorkspaceSyncOrchestrator (may consume)
                                                   |- ActivityTracker + transcript
                                                   '- NotificationChannel (application)

Every notification goes through ``_dispatch`` in receive order, on the event
loop that called connect().

Usage:
    config = load_config()
    async with GatewaySession(config) as session:
        await session.send_message("hello")
        async for notification in session.notifications():
            ...
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .activity import ActivityTracker, AgentActivity
from .bus import NotificationCallback, NotificationChannel
from .config import GatewayConfig
from .errors import ChowderError
from .notifications import Notification, NotificationType
from .protocol.client import ProtocolClient
from .protocol.frames import EventFrame
from .router import EventRouter
from .state import SessionState
from .storage import CHAT_HISTORY_KEY, IDENTITY_KEY, PROFILE_KEY, JsonFileStore, KeyValueStore, MemoryStore
from .transport.base import Transport
from .transport.reconnect import ReconnectionPolicy
from .transport.websocket import WebSocketTransportSession
from .workspace.documents import IdentityRecord, ProfileRecord
from .workspace.sync import WorkspaceSyncOrchestrator

logger = logging.getLogger(__name__)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """One entry of the local transcript."""

    role: MessageRole
    content: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class GatewaySession:
    """Persistent connection to one gateway session.

    Args:
        config: Gateway configuration
        transport: Transport to use (a WebSocket transport is built from config if omitted)
        store: Local cache for transcript and workspace documents
        channel: Notification channel (created if omitted)
        clock: Monotonic clock for the activity tracker
    """

    def __init__(
        self,
        config: GatewayConfig,
        transport: Transport | None = None,
        store: KeyValueStore | None = None,
        channel: NotificationChannel | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.state = SessionState()
        self.channel = channel or NotificationChannel()
        self.store: KeyValueStore = store if store is not None else MemoryStore()

        self.reconnection = ReconnectionPolicy(self._reconnect_after_failure, delay=config.reconnect_delay)
        if transport is None:
            transport = WebSocketTransportSession(
                config.gateway_url,
                client_id=config.client_id,
                trust_policy=config.trust_policy(),
                reconnection=self.reconnection,
            )
        elif hasattr(transport, "reconnection") and transport.reconnection is None:
            transport.reconnection = self.reconnection
        self.transport = transport

        self.protocol = ProtocolClient(
            config,
            transport,
            state=self.state,
            notify=self._dispatch,
            on_event=self._on_event,
        )
        self.router = EventRouter(config.session_key)
        self.activity_tracker = ActivityTracker(
            min_label_duration=config.min_label_duration,
            clock=clock,
            on_change=self._activity_changed,
        )
        self.sync = WorkspaceSyncOrchestrator(
            self.state,
            send=self.protocol.send_chat,
            emit=self._dispatch,
            timeout=config.sync_timeout,
            on_idle=self._flush_pending,
        )

        self._messages: list[ChatMessage] = self._load_messages()
        self._identity = self._load_document(IDENTITY_KEY, IdentityRecord)
        self._profile = self._load_document(PROFILE_KEY, ProfileRecord)
        self._is_loading = False
        # User messages held back while a sync turn owns the chat channel
        self._pending: list[str] = []

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def is_connected(self) -> bool:
        return self.state.is_connected

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def identity(self) -> IdentityRecord:
        return self._identity

    @property
    def profile(self) -> ProfileRecord:
        return self._profile

    @property
    def activity(self) -> AgentActivity | None:
        return self.activity_tracker.current

    @property
    def last_activity(self) -> AgentActivity | None:
        return self.activity_tracker.last_completed

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> bool:
        """Open the connection. The handshake completes asynchronously.

        Raises:
            ChowderError: If gateway URL or token is missing
        """
        if not self.config.is_configured:
            raise ChowderError("Gateway URL and auth token are required")
        logger.info(f"Connecting session {self.config.session_key}")
        return await self.protocol.connect()

    async def reconnect(self) -> bool:
        """Drop the connection and replay the full handshake.

        Any failure reconnect still waiting to fire is dropped.
        """
        self.reconnection.reset()
        await self._abandon_connection()
        if self._is_loading:
            self._end_turn()
        return await self.protocol.reconnect()

    async def disconnect(self) -> None:
        """Close for good; no reconnection follows."""
        await self.protocol.disconnect()
        await self._abandon_connection()
        if self._is_loading:
            self._end_turn()

    async def close(self) -> None:
        """Disconnect and end all notification streams."""
        await self.disconnect()
        await self.reconnection.aclose()
        self.channel.close()

    async def __aenter__(self) -> GatewaySession:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _reconnect_after_failure(self) -> None:
        await self.protocol.reconnect()

    async def _abandon_connection(self) -> None:
        await self.sync.reset()
        if self._pending:
            logger.warning(f"Dropping {len(self._pending)} queued message(s)")
            self._pending.clear()

    # =========================================================================
    # Chat
    # =========================================================================

    async def send_message(self, text: str) -> bool:
        """Start a user turn.

        Returns:
            False if the text is empty, a turn is in progress, or not connected
        """
        text = text.strip()
        if not text:
            return False
        if self._is_loading:
            logger.info("Turn in progress, not sending")
            return False
        if not self.is_connected:
            logger.warning("Not connected, not sending")
            return False

        self._messages.append(ChatMessage(role=MessageRole.USER, content=text))
        self._messages.append(ChatMessage(role=MessageRole.ASSISTANT, content=""))
        self._is_loading = True
        self.activity_tracker.start_turn()
        self.channel.publish(Notification.turn_started())

        if self.sync.is_active:
            logger.info("Workspace sync in progress, queueing message")
            self._pending.append(text)
            return True

        await self.protocol.send_chat(text)
        return True

    async def _flush_pending(self) -> None:
        while self._pending and not self.sync.is_active and self.is_connected:
            text = self._pending.pop(0)
            logger.info("Sending queued message")
            await self.protocol.send_chat(text)

    def clear_history(self) -> None:
        self._messages.clear()
        self.store.delete(CHAT_HISTORY_KEY)

    # =========================================================================
    # Workspace
    # =========================================================================

    async def sync_workspace(self) -> bool:
        """Read IDENTITY.md and USER.md from the gateway."""
        return await self.sync.read()

    async def save_workspace(self, identity: IdentityRecord, profile: ProfileRecord) -> bool:
        """Update the local cache and write both documents to the gateway."""
        await self._dispatch(Notification.identity_updated(identity))
        await self._dispatch(Notification.profile_updated(profile))
        return await self.sync.write(identity, profile)

    # =========================================================================
    # Notifications
    # =========================================================================

    def notifications(self) -> AsyncIterator[Notification]:
        return self.channel.stream()

    def subscribe(self, callback: NotificationCallback) -> Callable[[], None]:
        return self.channel.subscribe(callback)

    async def _on_event(self, frame: EventFrame) -> None:
        for notification in self.router.route(frame):
            await self._dispatch(notification)

    async def _dispatch(self, notification: Notification) -> None:
        if await self.sync.observe(notification):
            return

        kind = notification.type

        if kind == NotificationType.TEXT_DELTA:
            self.activity_tracker.text_delta()
            last = self._trailing_assistant()
            if last is not None:
                last.content += notification.text

        elif kind == NotificationType.THINKING_DELTA:
            self.activity_tracker.thinking_delta(notification.text)

        elif kind == NotificationType.TOOL_EVENT:
            self.activity_tracker.tool_event(notification.data.get("name", "tool"), notification.data.get("argument"))

        elif kind == NotificationType.FINAL_TEXT:
            last = self._trailing_assistant()
            if self._is_loading and last is not None and not last.content:
                last.content = notification.text

        elif kind == NotificationType.TURN_FINISHED:
            if not self._is_loading:
                logger.debug("Turn finished with no turn in progress")
                return
            self._end_turn()

        elif kind == NotificationType.ERROR:
            last = self._trailing_assistant()
            if last is not None and not last.content:
                last.content = f"Error: {notification.data.get('message', 'unknown error')}"
            if self._is_loading:
                self._end_turn()

        elif kind == NotificationType.IDENTITY_UPDATED:
            self._identity = notification.data["identity"]
            self.store.save(IDENTITY_KEY, self._identity.model_dump())

        elif kind == NotificationType.PROFILE_UPDATED:
            self._profile = notification.data["profile"]
            self.store.save(PROFILE_KEY, self._profile.model_dump())

        self.channel.publish(notification)

        if kind == NotificationType.FINAL_TEXT and self._is_loading:
            # The final reply ends the turn even if no lifecycle end follows
            self._end_turn()
            self.channel.publish(Notification.turn_finished())
        elif kind == NotificationType.CONNECTED and self.config.sync_workspace:
            await self.sync.enable_verbose_reporting()
        elif kind == NotificationType.DISCONNECTED:
            await self._abandon_connection()

    def _activity_changed(self, activity: AgentActivity | None) -> None:
        self.channel.publish(Notification.activity_updated(activity))

    def _end_turn(self) -> None:
        self._is_loading = False
        self.activity_tracker.finish_turn()
        self._save_messages()

    def _trailing_assistant(self) -> ChatMessage | None:
        if self._messages and self._messages[-1].role == MessageRole.ASSISTANT:
            return self._messages[-1]
        return None

    # =========================================================================
    # Local cache
    # =========================================================================

    def _save_messages(self) -> None:
        try:
            self.store.save(CHAT_HISTORY_KEY, [m.model_dump(mode="json") for m in self._messages])
        except OSError as e:
            logger.warning(f"Failed to save chat history: {e}")

    def _load_messages(self) -> list[ChatMessage]:
        data = self.store.load(CHAT_HISTORY_KEY)
        if not isinstance(data, list):
            return []
        try:
            return [ChatMessage.model_validate(item) for item in data]
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable chat history: {e.error_count()} error(s)")
            return []

    def _load_document(self, key: str, record: type[Any]) -> Any:
        data = self.store.load(key)
        if not isinstance(data, dict):
            return record()
        try:
            return record.model_validate(data)
        except ValidationError:
            logger.warning(f"Ignoring unreadable {key}")
            return record()


def create_session(config: GatewayConfig, persist: bool = True) -> GatewaySession:
    """Build a WebSocket-backed session, caching under the configured storage dir.

    Args:
        config: Gateway configuration
        persist: Cache to disk (False keeps everything in memory)
    """
    store: KeyValueStore = JsonFileStore(config.resolved_storage_dir()) if persist else MemoryStore()
    return GatewaySession(config, store=store)
