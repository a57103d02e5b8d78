"""Error taxonomy for the gateway client.

- TransportError: connect/send/receive failures. Recovered by reconnecting.
- ProtocolError: malformed or incomplete frames. The frame is dropped.
- GatewayError: failures reported by the gateway. Surfaced to the application.
- SyncParseError: workspace sync response could not be decoded. Logged only.
"""

from __future__ import annotations


class ChowderError(Exception):
    """Base class for all client errors."""


class TransportError(ChowderError):
    """The underlying connection failed."""


class ProtocolError(ChowderError):
    """A frame could not be decoded or is missing required fields."""


class GatewayError(ChowderError):
    """An error reported by the gateway (``res`` with ``ok=false`` or an error event)."""

    def __init__(self, message: str, code: str | None = None) -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}" if code else message)


class SyncParseError(ChowderError):
    """Neither sync parsing strategy recovered any document content."""
