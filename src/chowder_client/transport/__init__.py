"""Transports for the gateway connection."""

from .base import Transport, TransportListener, TrustPolicy, default_trust_policy, suffix_trust_policy
from .mock import MockTransport
from .reconnect import ReconnectionPolicy
from .websocket import WebSocketTransportSession, build_gateway_url

__all__ = [
    "MockTransport",
    "ReconnectionPolicy",
    "Transport",
    "TransportListener",
    "TrustPolicy",
    "WebSocketTransportSession",
    "build_gateway_url",
    "default_trust_policy",
    "suffix_trust_policy",
]
