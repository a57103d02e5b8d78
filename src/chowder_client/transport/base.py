"""Transport abstractions.

A transport owns one raw bidirectional connection. It never interprets
frames: it hands each parsed frame to its listener (the protocol client) and
tells the listener, exactly once per connection, when the connection is gone.
"""

from __future__ import annotations

import logging
import ssl
from collections.abc import Callable, Iterable
from typing import Protocol, runtime_checkable

from ..protocol.frames import EventFrame, RequestFrame, ResponseFrame

logger = logging.getLogger(__name__)

AnyFrame = RequestFrame | ResponseFrame | EventFrame

# host -> SSL context to use for it, or None for default verification
TrustPolicy = Callable[[str], ssl.SSLContext | None]


class TransportListener(Protocol):
    """Receives inbound traffic from a transport."""

    async def frame_received(self, frame: AnyFrame) -> None:
        """Handle one frame. The next receive waits until this returns."""
        ...

    async def transport_closed(self, error: Exception | None) -> None:
        """The connection is gone (called once per connection)."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Protocol for client transports."""

    @property
    def is_open(self) -> bool:
        """Whether a connection currently exists."""
        ...

    def set_listener(self, listener: TransportListener) -> None: ...

    async def connect(self) -> bool:
        """Open the connection. No-op if one already exists.

        Returns:
            True if a connection is open afterwards
        """
        ...

    async def send_text(self, text: str) -> None:
        """Send one frame.

        Raises:
            TransportError: If not connected or the send fails
        """
        ...

    async def reset(self) -> None:
        """Drop the current connection without disabling reconnection."""
        ...

    async def disconnect(self) -> None:
        """Close permanently; no further reconnection."""
        ...


def default_trust_policy(host: str) -> ssl.SSLContext | None:
    """Standard certificate verification for every host."""
    return None


def suffix_trust_policy(suffixes: Iterable[str], cafile: str | None = None) -> TrustPolicy:
    """Custom trust for hosts ending with one of ``suffixes``.

    Matching hosts are verified against ``cafile`` when given. Without a CA
    file, their certificates are accepted as presented (private tailnet and
    self-hosted gateways). Other hosts get default verification.

    Args:
        suffixes: Host suffixes, e.g. [".ts.net"]
        cafile: Optional PEM bundle of trusted roots for matching hosts
    """
    suffix_list = tuple(s.lower() for s in suffixes if s)

    def policy(host: str) -> ssl.SSLContext | None:
        if not suffix_list or not host.lower().endswith(suffix_list):
            return None
        if cafile:
            logger.info(f"Using custom CA bundle for {host}")
            return ssl.create_default_context(cafile=cafile)
        logger.info(f"Trusting presented certificate for {host}")
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    return policy
