"""Workspace sync over the chat channel.

The gateway exposes no file API, so IDENTITY.md and USER.md are read and
written by asking the agent, through ordinary ``chat.send`` turns, to do it.
Those turns must stay invisible: while a flow is active, every text,
thinking and tool notification of the turn is consumed here instead of
reaching the transcript.

Flows (at most one at a time, a second request is rejected, not queued):

    enable_verbose_reporting()  IDLE -> WRITING -> IDLE, then chains into read()
    read()                      IDLE -> READING -> IDLE
    write(identity, profile)    IDLE -> WRITING -> IDLE

A flow completes on the turn's final text, a gateway error, an aborted turn,
or the timeout. Disconnect resets it.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import yaml

from ..errors import GatewayError, SyncParseError
from ..notifications import Notification, NotificationType
from ..state import SessionState, SyncState
from .documents import IdentityRecord, ProfileRecord

logger = logging.getLogger(__name__)

IDENTITY_MARKER = "---IDENTITY---"
USER_MARKER = "---USER---"
END_MARKER = "---END---"

VERBOSE_DIRECTIVE = "/verbose on"
DEFAULT_SYNC_TIMEOUT = 120.0

READ_INSTRUCTION = (
    "[workspace sync] Read IDENTITY.md and USER.md from your workspace and reply with their raw "
    "contents in exactly this format, with nothing before or after:\n"
    f"{IDENTITY_MARKER}\n"
    "<contents of IDENTITY.md>\n"
    f"{USER_MARKER}\n"
    "<contents of USER.md>\n"
    f"{END_MARKER}"
)

WRITE_INSTRUCTION = (
    "[workspace sync] Replace the contents of IDENTITY.md and USER.md in your workspace with the "
    'documents below. Use the write tool once per file, then reply only with "done".\n'
    "\n"
    "IDENTITY.md:\n"
    "```markdown\n"
    "{identity}"
    "```\n"
    "\n"
    "USER.md:\n"
    "```markdown\n"
    "{profile}"
    "```"
)

# Consumed while a flow is active
_SUPPRESSED = frozenset(
    {
        NotificationType.TEXT_DELTA,
        NotificationType.THINKING_DELTA,
        NotificationType.TOOL_EVENT,
        NotificationType.FINAL_TEXT,
        NotificationType.TURN_FINISHED,
    }
)


@dataclass(frozen=True)
class SyncDocuments:
    """Raw markdown recovered from a read response ('' when absent)."""

    identity: str = ""
    profile: str = ""

    def is_empty(self) -> bool:
        return not self.identity and not self.profile


def write_instruction(identity: IdentityRecord, profile: ProfileRecord) -> str:
    return WRITE_INSTRUCTION.format(identity=identity.to_markdown(), profile=profile.to_markdown())


def _slice_markers(text: str) -> SyncDocuments | None:
    start = text.find(IDENTITY_MARKER)
    middle = text.find(USER_MARKER, start + len(IDENTITY_MARKER)) if start >= 0 else -1
    if start < 0 or middle < 0:
        return None
    end = text.find(END_MARKER, middle + len(USER_MARKER))
    if end < 0:
        end = len(text)
    return SyncDocuments(
        identity=text[start + len(IDENTITY_MARKER) : middle].strip(),
        profile=text[middle + len(USER_MARKER) : end].strip(),
    )


def _strip_fences(text: str) -> str:
    return "\n".join(line for line in text.splitlines() if not line.strip().startswith("```")).strip()


def _decode_structured(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return None


def _as_markdown(value: Any, record: type[IdentityRecord] | type[ProfileRecord]) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, Mapping):
        document = record.from_mapping(value)
        return "" if document.is_empty() else document.to_markdown().strip()
    return ""


def _parse_structured(text: str) -> SyncDocuments | None:
    data = _decode_structured(_strip_fences(text))
    if not isinstance(data, Mapping):
        return None
    user = data.get("user", data.get("profile"))
    return SyncDocuments(
        identity=_as_markdown(data.get("identity"), IdentityRecord),
        profile=_as_markdown(user, ProfileRecord),
    )


def parse_sync_response(text: str) -> SyncDocuments:
    """Recover both documents from a read response.

    Tries the delimiter markers first, then a fenced JSON or YAML mapping
    with ``identity`` and ``user`` keys.

    Raises:
        SyncParseError: If neither strategy yields any content
    """
    documents = _slice_markers(text)
    if documents is not None and not documents.is_empty():
        return documents

    documents = _parse_structured(text)
    if documents is not None and not documents.is_empty():
        return documents

    raise SyncParseError(f"No workspace documents in sync response ({len(text)} chars)")


class WorkspaceSyncOrchestrator:
    """Runs the invisible read/write flows.

    Args:
        state: Shared session state (owns the sync guard)
        send: Sends one chat message, returns False if it was not sent
        emit: Awaited with identity/profile notifications recovered by a read
        timeout: Seconds before an unanswered flow is abandoned
        on_idle: Awaited when a flow ends and nothing else is chained
    """

    def __init__(
        self,
        state: SessionState,
        send: Callable[[str], Awaitable[bool]],
        emit: Callable[[Notification], Awaitable[None]],
        timeout: float = DEFAULT_SYNC_TIMEOUT,
        on_idle: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.state = state
        self._send = send
        self._emit = emit
        self.timeout = timeout
        self.on_idle = on_idle
        self._chain_read = False
        self._generation = 0
        self._timeout_task: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def is_active(self) -> bool:
        return self.state.sync != SyncState.IDLE

    async def wait_idle(self) -> None:
        """Wait until no flow is active (including a chained read)."""
        await self._idle.wait()

    # =========================================================================
    # Flows
    # =========================================================================

    async def enable_verbose_reporting(self) -> bool:
        """Turn on verbose tool summaries, then read the documents."""
        return await self._begin(SyncState.WRITING, VERBOSE_DIRECTIVE, "enable verbose", chain_read=True)

    async def read(self) -> bool:
        return await self._begin(SyncState.READING, READ_INSTRUCTION, "read")

    async def write(self, identity: IdentityRecord, profile: ProfileRecord) -> bool:
        return await self._begin(SyncState.WRITING, write_instruction(identity, profile), "write")

    async def _begin(self, target: SyncState, message: str, name: str, chain_read: bool = False) -> bool:
        if not self.state.begin_sync(target):
            logger.info(f"Sync {name} rejected, {self.state.sync.value} already in progress")
            return False

        self._generation += 1
        self._idle.clear()
        self._chain_read = chain_read
        self._timeout_task = asyncio.create_task(self._expire(self._generation))
        logger.info(f"Sync {name} started")

        if not await self._send(message):
            logger.warning(f"Sync {name} could not be sent")
            self._chain_read = False
            await self._finish()
            return False
        return True

    # =========================================================================
    # Notification handling
    # =========================================================================

    async def observe(self, notification: Notification) -> bool:
        """Look at a routed notification.

        Returns:
            True if it belongs to the sync turn and must not reach the application
        """
        sync = self.state.sync
        if sync == SyncState.IDLE:
            return False

        kind = notification.type

        if kind == NotificationType.FINAL_TEXT:
            if sync == SyncState.READING:
                await self._apply_read(notification.text)
            else:
                logger.debug("Sync write acknowledged")
            await self._finish()
            return True

        if kind == NotificationType.TURN_FINISHED:
            if notification.data.get("aborted"):
                logger.warning(f"Sync turn aborted while {sync.value}")
                self._chain_read = False
                await self._finish()
            return True

        if kind == NotificationType.ERROR:
            error = notification.data.get("error")
            if isinstance(error, GatewayError):
                logger.warning(f"Sync {sync.value} abandoned: {error}")
                self._chain_read = False
                await self._finish()
                return True
            return False

        return kind in _SUPPRESSED

    async def _apply_read(self, text: str) -> None:
        try:
            documents = parse_sync_response(text)
        except SyncParseError as e:
            logger.warning(f"Sync read failed: {e}")
            return

        # A section with no recognizable fields ("(file not found)") keeps the cache
        identity = IdentityRecord.from_markdown(documents.identity)
        if identity.is_empty():
            logger.warning(f"Sync read: no fields in {identity.FILENAME} section")
        else:
            logger.info(f"Synced {identity.FILENAME} (name={identity.name!r})")
            await self._emit(Notification.identity_updated(identity))

        profile = ProfileRecord.from_markdown(documents.profile)
        if profile.is_empty():
            logger.warning(f"Sync read: no fields in {profile.FILENAME} section")
        else:
            logger.info(f"Synced {profile.FILENAME} (name={profile.name!r})")
            await self._emit(Notification.profile_updated(profile))

    # =========================================================================
    # Completion
    # =========================================================================

    async def _finish(self) -> None:
        self._cancel_timeout()
        self.state.end_sync()

        if self._chain_read:
            self._chain_read = False
            if await self.read():
                return

        self._idle.set()
        if self.on_idle is not None and self.state.sync == SyncState.IDLE:
            await self.on_idle()

    async def _expire(self, generation: int) -> None:
        await asyncio.sleep(self.timeout)
        if generation != self._generation or self.state.sync == SyncState.IDLE:
            return
        logger.warning(f"Sync {self.state.sync.value} timed out after {self.timeout:g}s")
        self._timeout_task = None
        self._chain_read = False
        await self._finish()

    def _cancel_timeout(self) -> None:
        self._generation += 1
        task, self._timeout_task = self._timeout_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def reset(self) -> None:
        """Abandon any flow (connection lost). on_idle is not called."""
        task = self._timeout_task
        self._cancel_timeout()
        self._chain_read = False
        self.state.end_sync()
        self._idle.set()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task
