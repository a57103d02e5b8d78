"""Gateway wire protocol.

The frame codec lives here; the handshake client is in ``protocol.client``.
"""

from .frames import (
    EventFrame,
    FrameType,
    RequestFrame,
    ResponseError,
    ResponseFrame,
    describe_frame,
    parse_frame,
)

__all__ = [
    "EventFrame",
    "FrameType",
    "RequestFrame",
    "ResponseError",
    "ResponseFrame",
    "describe_frame",
    "parse_frame",
]
