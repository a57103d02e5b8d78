"""Event router - turns gateway event frames into notifications.

Two event families matter:

- ``agent`` events: ``{stream, sessionKey, data}`` with stream one of
  assistant / thinking / tool / lifecycle.
- ``chat`` events: ``{state, sessionKey, message | errorMessage}`` with state
  one of delta / final / aborted / error.

The gateway broadcasts to every connected client, so anything tagged with a
different session key is dropped before it can have any effect. Keepalive
events (tick/health) are dropped too.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import GatewayError
from .notifications import Notification
from .protocol.frames import EventFrame
from .tool_summary import parse_tool_summary
from .workspace.documents import IDENTITY_FILENAME, PROFILE_FILENAME, IdentityRecord, ProfileRecord

logger = logging.getLogger(__name__)

# Session-scoped event families.
SCOPED_EVENTS = frozenset({"agent", "chat"})

# Field precedence for tool events. Gateways have shipped each of these.
TOOL_NAME_FIELDS = ("name", "toolName", "tool")
TOOL_ARGS_FIELDS = ("args", "params", "input")
# Where the "argument" shown to the user comes from, first match wins.
# ("args", key) looks inside the decoded args, ("data", key) at the top level.
TOOL_ARGUMENT_FIELDS = (
    ("args", "path"),
    ("args", "file_path"),
    ("data", "path"),
    ("args", "command"),
    ("args", "query"),
    ("args", "url"),
)
# Only these can name the file a write targets.
TOOL_PATH_FIELDS = (("args", "path"), ("args", "file_path"), ("data", "path"))
DEFAULT_TOOL_NAME = "tool"


@dataclass(frozen=True)
class ToolCall:
    """Partial, typed view of an agent/tool event."""

    name: str
    argument: str | None = None
    args: Mapping[str, Any] = field(default_factory=dict)
    path: str | None = None

    @property
    def content(self) -> str | None:
        value = self.args.get("content")
        return value if isinstance(value, str) else None


def _first_of(data: Mapping[str, Any], keys: tuple[str, ...], kind: type) -> Any:
    for key in keys:
        value = data.get(key)
        if isinstance(value, kind) and value:
            return value
    return None


def decode_tool_call(data: Mapping[str, Any]) -> ToolCall:
    """Decode the ``data`` of an agent/tool event.

    Name comes from the first non-empty string among TOOL_NAME_FIELDS
    (defaulting to "tool"), args from the first mapping among
    TOOL_ARGS_FIELDS, the argument from TOOL_ARGUMENT_FIELDS and the target
    file from TOOL_PATH_FIELDS.
    """
    name = _first_of(data, TOOL_NAME_FIELDS, str) or DEFAULT_TOOL_NAME
    args = _first_of(data, TOOL_ARGS_FIELDS, dict) or {}

    def lookup(fields: tuple[tuple[str, str], ...]) -> str | None:
        for source, key in fields:
            value = (args if source == "args" else data).get(key)
            if isinstance(value, str) and value:
                return value
        return None

    return ToolCall(name=name, argument=lookup(TOOL_ARGUMENT_FIELDS), args=args, path=lookup(TOOL_PATH_FIELDS))


def extract_text(value: Any) -> str | None:
    """Extract displayable text from a chat message payload.

    Accepts a plain string, a mapping with ``text`` / ``delta`` / ``content``
    string keys, or a structured message whose ``content`` is a list of
    ``{"type": "text", "text": ...}`` blocks.
    """
    if isinstance(value, str):
        return value or None
    if not isinstance(value, Mapping):
        return None

    for key in ("text", "delta", "content"):
        candidate = value.get(key)
        if isinstance(candidate, str) and candidate:
            return candidate

    blocks = value.get("content")
    if isinstance(blocks, list):
        texts = [
            block["text"]
            for block in blocks
            if isinstance(block, Mapping) and block.get("type") == "text" and isinstance(block.get("text"), str)
        ]
        joined = "".join(texts)
        return joined or None
    return None


class EventRouter:
    """Interprets event frames for one active session."""

    def __init__(self, session_key: str) -> None:
        self.session_key = session_key

    def accepts(self, frame: EventFrame) -> bool:
        """Whether the frame survives keepalive and session filtering."""
        if frame.is_keepalive:
            return False
        if frame.event in SCOPED_EVENTS:
            key = frame.session_key
            if key is not None and key != self.session_key:
                return False
        return True

    def route(self, frame: EventFrame) -> list[Notification]:
        """Translate one event frame into zero or more notifications, in order."""
        if not self.accepts(frame):
            return []

        if frame.event == "agent":
            return self._route_agent(frame.payload)
        if frame.event == "chat":
            return self._route_chat(frame.payload)
        if frame.event == "error":
            message = frame.payload.get("message")
            message = message if isinstance(message, str) and message else "Unknown gateway error"
            logger.error(f"Gateway error event: {message}")
            return [Notification.error(GatewayError(message))]

        logger.debug(f"Unhandled event: {frame.event}")
        return []

    # -- agent events -----------------------------------------------------

    def _route_agent(self, payload: Mapping[str, Any]) -> list[Notification]:
        stream = payload.get("stream")
        data = payload.get("data")
        if not isinstance(data, Mapping):
            data = {}

        if stream == "assistant":
            # data.text is cumulative; only the delta is forwarded
            delta = data.get("delta")
            if isinstance(delta, str) and delta:
                return [Notification.text_delta(delta)]
            return []

        if stream == "thinking":
            delta = data.get("delta")
            if isinstance(delta, str) and delta:
                return [Notification.thinking_delta(delta)]
            return []

        if stream == "tool":
            return self._route_tool(data)

        if stream == "lifecycle":
            phase = data.get("phase")
            if phase in ("end", "done"):
                logger.debug(f"Agent lifecycle: {phase}")
                return [Notification.turn_finished()]
            return []

        return []

    def _route_tool(self, data: Mapping[str, Any]) -> list[Notification]:
        logger.debug(f"Tool event data keys: {sorted(data.keys())}")
        call = decode_tool_call(data)
        notifications = [Notification.tool_event(call.name, call.argument)]

        # Writes to the workspace documents update the cache directly.
        content = call.content
        if call.name == "write" and call.path and content is not None:
            if call.path.endswith(IDENTITY_FILENAME):
                identity = IdentityRecord.from_markdown(content)
                logger.info(f"Observed write to {IDENTITY_FILENAME} (name={identity.name!r})")
                notifications.append(Notification.identity_updated(identity))
            elif call.path.endswith(PROFILE_FILENAME):
                profile = ProfileRecord.from_markdown(content)
                logger.info(f"Observed write to {PROFILE_FILENAME} (name={profile.name!r})")
                notifications.append(Notification.profile_updated(profile))

        return notifications

    # -- chat events ------------------------------------------------------

    def _route_chat(self, payload: Mapping[str, Any]) -> list[Notification]:
        state = payload.get("state")

        if state == "delta":
            # Text reaches the user through agent/assistant; chat deltas only
            # matter when they are verbose tool summaries.
            text = extract_text(payload.get("message"))
            if text:
                parsed = parse_tool_summary(text)
                if parsed is not None:
                    name, argument = parsed
                    logger.debug(f"Verbose tool summary: {name} {argument or ''}")
                    return [Notification.tool_event(name, argument)]
            return []

        if state == "final":
            text = extract_text(payload.get("message"))
            if text:
                return [Notification.final_text(text)]
            logger.warning("chat final without extractable text")
            return []

        if state == "aborted":
            logger.warning("Chat aborted")
            return [Notification.turn_finished(aborted=True)]

        if state == "error":
            message = payload.get("errorMessage")
            message = message if isinstance(message, str) and message else "Chat error"
            logger.error(f"Chat error: {message}")
            return [Notification.error(GatewayError(message))]

        return []
