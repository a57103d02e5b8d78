"""Wire frames for the gateway protocol.

Every message on the socket is a JSON object tagged by ``type``:

    {"type": "req", "id": "req-1", "method": "chat.send", "params": {...}}
    {"type": "res", "id": "req-1", "ok": true, "payload": {...}}
    {"type": "res", "id": "req-1", "ok": false, "error": {"code": "...", "message": "..."}}
    {"type": "event", "event": "agent", "payload": {...}, "seq": 12}

Frames are the only unit of exchange. Anything that does not decode into one
of the three shapes raises ProtocolError; callers log and drop it.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from ..errors import ProtocolError

# Periodic gateway events that carry nothing for the client.
KEEPALIVE_EVENTS = frozenset({"tick", "health"})


class FrameType(str, Enum):
    """Frame discriminator values."""

    REQUEST = "req"
    RESPONSE = "res"
    EVENT = "event"


class RequestFrame(BaseModel):
    """A request from client to gateway (server-initiated requests are rare)."""

    model_config = ConfigDict(extra="allow")

    type: Literal["req"] = "req"
    id: str
    method: str
    params: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(cls, request_id: str, method: str, params: dict[str, Any] | None = None) -> RequestFrame:
        """Factory method for outbound requests."""
        return cls(id=request_id, method=method, params=params or {})

    def to_json(self) -> str:
        """Serialize for the wire."""
        return self.model_dump_json()


class ResponseError(BaseModel):
    """Error body of a failed response."""

    model_config = ConfigDict(extra="allow")

    code: str | int | None = None
    message: str | None = None


class ResponseFrame(BaseModel):
    """A response to one of our requests."""

    model_config = ConfigDict(extra="allow")

    type: Literal["res"] = "res"
    id: str | int | None = None
    ok: bool = False
    payload: dict[str, Any] | None = None
    error: ResponseError | str | None = None

    @property
    def payload_type(self) -> str | None:
        """The payload discriminator (``hello-ok`` for the handshake reply)."""
        if not self.payload:
            return None
        value = self.payload.get("type", self.payload.get("kind"))
        return value if isinstance(value, str) else None

    @property
    def error_code(self) -> str:
        if isinstance(self.error, ResponseError) and self.error.code is not None:
            return str(self.error.code)
        return "unknown"

    @property
    def error_message(self) -> str:
        if isinstance(self.error, ResponseError) and self.error.message:
            return self.error.message
        if isinstance(self.error, str) and self.error:
            return self.error
        return "Request failed"


class EventFrame(BaseModel):
    """A server-pushed event."""

    model_config = ConfigDict(extra="allow")

    type: Literal["event"] = "event"
    event: str
    payload: dict[str, Any] = Field(default_factory=dict)
    seq: int | None = None

    @field_validator("payload", mode="before")
    @classmethod
    def _default_payload(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def session_key(self) -> str | None:
        value = self.payload.get("sessionKey")
        return value if isinstance(value, str) else None

    @property
    def is_keepalive(self) -> bool:
        return self.event in KEEPALIVE_EVENTS


Frame = Annotated[RequestFrame | ResponseFrame | EventFrame, Field(discriminator="type")]

_FRAME_ADAPTER: TypeAdapter[RequestFrame | ResponseFrame | EventFrame] = TypeAdapter(Frame)


def parse_frame(raw: str | bytes) -> RequestFrame | ResponseFrame | EventFrame:
    """Decode one wire message into a frame.

    Raises:
        ProtocolError: If the message is not JSON or not a known frame shape
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Frame is not UTF-8: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"Frame is not a JSON object: {type(data).__name__}")

    try:
        return _FRAME_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid frame ({data.get('type', '?')}): {e.error_count()} error(s)") from e


def describe_frame(frame: RequestFrame | ResponseFrame | EventFrame) -> str | None:
    """One-line summary of a frame for logs, e.g. ``event agent/assistant seq=12``.

    Returns None for keepalive events.
    """
    if isinstance(frame, EventFrame):
        if frame.is_keepalive:
            return None
        stream = frame.payload.get("stream")
        state = frame.payload.get("state")
        summary = f"event {frame.event}"
        if isinstance(stream, str):
            summary += f"/{stream}"
        if isinstance(state, str):
            summary += f"/{state}"
        if frame.seq is not None:
            summary += f" seq={frame.seq}"
        return summary
    if isinstance(frame, ResponseFrame):
        return f"res {'ok' if frame.ok else 'err'} id={frame.id}"
    return f"req {frame.method} id={frame.id}"
