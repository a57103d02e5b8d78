"""Chowder client - session layer for an agent gateway.

Keeps a WebSocket connection to the gateway, performs the challenge
handshake, exchanges chat turns, keeps IDENTITY.md and USER.md in sync and
derives a live activity feed from the event stream.
"""

from .activity import ActivityStep, ActivityTracker, AgentActivity, StepKind, label_for_tool
from .bus import NotificationChannel, NotificationLogHandler
from .config import CLIENT_VERSION, GatewayConfig, load_config
from .errors import ChowderError, GatewayError, ProtocolError, SyncParseError, TransportError
from .notifications import Notification, NotificationType
from .session import ChatMessage, GatewaySession, MessageRole, create_session
from .state import ConnectionState, SessionState, SyncState
from .tool_summary import parse_tool_summary
from .workspace import IdentityRecord, ProfileRecord

__version__ = CLIENT_VERSION

__all__ = [
    "ActivityStep",
    "ActivityTracker",
    "AgentActivity",
    "ChatMessage",
    "ChowderError",
    "ConnectionState",
    "GatewayConfig",
    "GatewayError",
    "GatewaySession",
    "IdentityRecord",
    "MessageRole",
    "Notification",
    "NotificationChannel",
    "NotificationLogHandler",
    "NotificationType",
    "ProfileRecord",
    "ProtocolError",
    "SessionState",
    "StepKind",
    "SyncParseError",
    "SyncState",
    "TransportError",
    "__version__",
    "create_session",
    "label_for_tool",
    "load_config",
    "parse_tool_summary",
]
