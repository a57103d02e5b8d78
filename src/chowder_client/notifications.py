"""Notifications delivered to the application.

Every observable thing the client does (connection changes, streamed text,
tool activity, workspace document updates, errors) becomes one Notification.
Notifications travel over a single ordered channel (see bus.py), so the
application sees them in exactly the order the frames arrived.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .activity import AgentActivity
    from .workspace.documents import IdentityRecord, ProfileRecord


class NotificationType(str, Enum):
    """All notification kinds."""

    # Connection
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"

    # Turn content
    TEXT_DELTA = "text.delta"
    FINAL_TEXT = "final.text"
    THINKING_DELTA = "thinking.delta"
    TOOL_EVENT = "tool.event"

    # Turn lifecycle
    TURN_STARTED = "turn.started"
    TURN_FINISHED = "turn.finished"
    ACTIVITY_UPDATED = "activity.updated"

    # Workspace documents
    IDENTITY_UPDATED = "identity.updated"
    PROFILE_UPDATED = "profile.updated"

    # Diagnostics
    ERROR = "error"
    LOG = "log"


class Notification(BaseModel):
    """One notification for the application.

    Example:
        {"type": "tool.event", "data": {"name": "read", "argument": "IDENTITY.md"}}
    """

    type: NotificationType
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def text(self) -> str:
        """Text carried by delta/final notifications ('' otherwise)."""
        value = self.data.get("text", "")
        return value if isinstance(value, str) else ""

    @classmethod
    def create(cls, notification_type: NotificationType, data: dict[str, Any] | None = None) -> Notification:
        return cls(type=notification_type, data=data or {})

    # =========================================================================
    # Factory methods
    # =========================================================================

    @classmethod
    def connected(cls, protocol_version: int | None) -> Notification:
        return cls.create(NotificationType.CONNECTED, {"protocol": protocol_version})

    @classmethod
    def disconnected(cls) -> Notification:
        return cls.create(NotificationType.DISCONNECTED)

    @classmethod
    def text_delta(cls, delta: str) -> Notification:
        return cls.create(NotificationType.TEXT_DELTA, {"text": delta})

    @classmethod
    def final_text(cls, text: str) -> Notification:
        return cls.create(NotificationType.FINAL_TEXT, {"text": text})

    @classmethod
    def thinking_delta(cls, delta: str) -> Notification:
        return cls.create(NotificationType.THINKING_DELTA, {"text": delta})

    @classmethod
    def tool_event(cls, name: str, argument: str | None) -> Notification:
        return cls.create(NotificationType.TOOL_EVENT, {"name": name, "argument": argument})

    @classmethod
    def turn_started(cls) -> Notification:
        return cls.create(NotificationType.TURN_STARTED)

    @classmethod
    def turn_finished(cls, aborted: bool = False) -> Notification:
        return cls.create(NotificationType.TURN_FINISHED, {"aborted": aborted})

    @classmethod
    def activity_updated(cls, activity: AgentActivity | None) -> Notification:
        label = activity.current_label if activity else ""
        return cls.create(NotificationType.ACTIVITY_UPDATED, {"label": label, "activity": activity})

    @classmethod
    def identity_updated(cls, identity: IdentityRecord) -> Notification:
        return cls.create(NotificationType.IDENTITY_UPDATED, {"identity": identity})

    @classmethod
    def profile_updated(cls, profile: ProfileRecord) -> Notification:
        return cls.create(NotificationType.PROFILE_UPDATED, {"profile": profile})

    @classmethod
    def error(cls, error: Exception) -> Notification:
        return cls.create(NotificationType.ERROR, {"error": error, "message": str(error)})

    @classmethod
    def log(cls, message: str, level: str = "info") -> Notification:
        return cls.create(NotificationType.LOG, {"message": message, "level": level})
