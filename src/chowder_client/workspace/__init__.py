"""Workspace documents and the chat-driven sync that keeps them current."""

from .documents import IDENTITY_FILENAME, PROFILE_FILENAME, IdentityRecord, ProfileRecord
from .sync import SyncDocuments, WorkspaceSyncOrchestrator, parse_sync_response

__all__ = [
    "IDENTITY_FILENAME",
    "PROFILE_FILENAME",
    "IdentityRecord",
    "ProfileRecord",
    "SyncDocuments",
    "WorkspaceSyncOrchestrator",
    "parse_sync_response",
]
