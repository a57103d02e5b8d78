"""Unit tests for the workspace sync orchestrator and response parsing."""

from __future__ import annotations

import asyncio
import json

import pytest

from chowder_client.errors import GatewayError, SyncParseError, TransportError
from chowder_client.notifications import Notification, NotificationType
from chowder_client.state import SessionState, SyncState
from chowder_client.workspace.documents import IdentityRecord, ProfileRecord
from chowder_client.workspace.sync import (
    READ_INSTRUCTION,
    VERBOSE_DIRECTIVE,
    WorkspaceSyncOrchestrator,
    parse_sync_response,
    write_instruction,
)

# =============================================================================
# parse_sync_response
# =============================================================================


class TestParseSyncResponse:
    """Tests for both parsing strategies."""

    def test_markers(self) -> None:
        documents = parse_sync_response("---IDENTITY---\nfoo\n---USER---\nbar\n---END---")

        assert documents.identity == "foo"
        assert documents.profile == "bar"

    def test_markers_with_surrounding_prose(self) -> None:
        text = "Sure!\n---IDENTITY---\n- **Name:** Chowder\n---USER---\n- **Name:** Sam\n---END---\nAnything else?"

        documents = parse_sync_response(text)

        assert documents.identity == "- **Name:** Chowder"
        assert documents.profile == "- **Name:** Sam"

    def test_fenced_json_fallback(self) -> None:
        """Without markers, a fenced two-key document recovers the same fields."""
        text = '```json\n{"identity": "foo", "user": "bar"}\n```'

        documents = parse_sync_response(text)

        assert documents.identity == "foo"
        assert documents.profile == "bar"

    def test_fenced_yaml_fallback(self) -> None:
        text = "```yaml\nidentity: foo\nuser: bar\n```"

        documents = parse_sync_response(text)

        assert documents.identity == "foo"
        assert documents.profile == "bar"

    def test_structured_fields_rendered_to_markdown(self) -> None:
        text = json.dumps({"identity": {"name": "Chowder", "emoji": "🦦"}, "user": {"name": "Sam"}})

        documents = parse_sync_response(text)

        assert IdentityRecord.from_markdown(documents.identity).name == "Chowder"
        assert ProfileRecord.from_markdown(documents.profile).name == "Sam"

    def test_only_one_document(self) -> None:
        documents = parse_sync_response('{"identity": "foo"}')

        assert documents.identity == "foo"
        assert documents.profile == ""

    @pytest.mark.parametrize(
        "text",
        [
            "I could not find those files.",
            "---IDENTITY---\n\n---USER---\n\n---END---",
            '{"other": "value"}',
            "",
        ],
    )
    def test_nothing_recovered_raises(self, text: str) -> None:
        with pytest.raises(SyncParseError):
            parse_sync_response(text)


class TestInstructions:
    """Tests for the fixed instructions."""

    def test_read_instruction_has_markers(self) -> None:
        for marker in ("---IDENTITY---", "---USER---", "---END---"):
            assert marker in READ_INSTRUCTION

    def test_write_instruction_embeds_documents(self) -> None:
        text = write_instruction(IdentityRecord(name="Chowder"), ProfileRecord(name="Sam"))

        assert "# IDENTITY.md - Who Am I?" in text
        assert "- **Name:** Chowder" in text
        assert "# USER.md - About Your Human" in text
        assert "- **Name:** Sam" in text


# =============================================================================
# WorkspaceSyncOrchestrator
# =============================================================================


class Harness:
    """Collects what the orchestrator sends and emits."""

    def __init__(self, send_ok: bool = True) -> None:
        self.state = SessionState()
        self.sent: list[str] = []
        self.emitted: list[Notification] = []
        self.idle_calls = 0
        self.send_ok = send_ok
        self.sync = WorkspaceSyncOrchestrator(
            self.state,
            send=self.send,
            emit=self.emit,
            timeout=5.0,
            on_idle=self.on_idle,
        )

    async def send(self, message: str) -> bool:
        self.sent.append(message)
        return self.send_ok

    async def emit(self, notification: Notification) -> None:
        self.emitted.append(notification)

    async def on_idle(self) -> None:
        self.idle_calls += 1


class TestOrchestrator:
    """Tests for the read/write flows."""

    @pytest.mark.asyncio
    async def test_read_flow(self) -> None:
        """Markers in the final text update the cache and return to idle."""
        harness = Harness()

        assert await harness.sync.read()
        assert harness.sent == [READ_INSTRUCTION]
        assert harness.state.sync == SyncState.READING

        consumed = await harness.sync.observe(
            Notification.final_text("---IDENTITY---\n- **Name:** Chowder\n---USER---\n- **Name:** Sam\n---END---")
        )

        assert consumed
        assert harness.state.sync == SyncState.IDLE
        assert [n.type for n in harness.emitted] == [
            NotificationType.IDENTITY_UPDATED,
            NotificationType.PROFILE_UPDATED,
        ]
        assert harness.emitted[0].data["identity"].name == "Chowder"
        assert harness.idle_calls == 1

    @pytest.mark.asyncio
    async def test_read_suppresses_turn_content(self) -> None:
        """Nothing from the sync turn reaches the application."""
        harness = Harness()
        await harness.sync.read()

        for notification in (
            Notification.text_delta("---IDENTITY---"),
            Notification.thinking_delta("reading files"),
            Notification.tool_event("read", "IDENTITY.md"),
            Notification.turn_finished(),
        ):
            assert await harness.sync.observe(notification)

        assert harness.state.sync == SyncState.READING

    @pytest.mark.asyncio
    async def test_unparseable_read_leaves_cache(self) -> None:
        harness = Harness()
        await harness.sync.read()

        assert await harness.sync.observe(Notification.final_text("I can't find those files."))

        assert harness.emitted == []
        assert harness.state.sync == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_section_without_fields_is_not_applied(self) -> None:
        """Only sections that parse into at least one field update the cache."""
        harness = Harness()
        await harness.sync.read()

        await harness.sync.observe(
            Notification.final_text("---IDENTITY---\n(file not found)\n---USER---\n- **Name:** Sam\n---END---")
        )

        assert [n.type for n in harness.emitted] == [NotificationType.PROFILE_UPDATED]
        assert harness.state.sync == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_idle_passes_everything_through(self) -> None:
        harness = Harness()

        assert not await harness.sync.observe(Notification.text_delta("hello"))
        assert not await harness.sync.observe(Notification.final_text("hello"))

    @pytest.mark.asyncio
    async def test_second_start_rejected(self) -> None:
        harness = Harness()
        await harness.sync.read()

        assert not await harness.sync.read()
        assert not await harness.sync.write(IdentityRecord(), ProfileRecord())
        assert harness.sent == [READ_INSTRUCTION]

    @pytest.mark.asyncio
    async def test_write_flow(self) -> None:
        harness = Harness()

        assert await harness.sync.write(IdentityRecord(name="Chowder"), ProfileRecord(name="Sam"))
        assert harness.state.sync == SyncState.WRITING
        assert "- **Name:** Chowder" in harness.sent[0]

        assert await harness.sync.observe(Notification.final_text("done"))
        assert harness.state.sync == SyncState.IDLE
        assert harness.emitted == []

    @pytest.mark.asyncio
    async def test_verbose_chains_into_read(self) -> None:
        harness = Harness()

        assert await harness.sync.enable_verbose_reporting()
        assert harness.sent == [VERBOSE_DIRECTIVE]
        assert harness.state.sync == SyncState.WRITING

        assert await harness.sync.observe(Notification.final_text("Verbose logging enabled."))

        assert harness.sent == [VERBOSE_DIRECTIVE, READ_INSTRUCTION]
        assert harness.state.sync == SyncState.READING
        assert harness.idle_calls == 0

    @pytest.mark.asyncio
    async def test_gateway_error_abandons_flow(self) -> None:
        harness = Harness()
        await harness.sync.enable_verbose_reporting()

        assert await harness.sync.observe(Notification.error(GatewayError("Chat error")))

        assert harness.state.sync == SyncState.IDLE
        assert harness.sent == [VERBOSE_DIRECTIVE]
        assert harness.idle_calls == 1

    @pytest.mark.asyncio
    async def test_transport_error_not_consumed(self) -> None:
        harness = Harness()
        await harness.sync.read()

        assert not await harness.sync.observe(Notification.error(TransportError("gone")))

    @pytest.mark.asyncio
    async def test_aborted_turn_ends_flow(self) -> None:
        harness = Harness()
        await harness.sync.read()

        assert await harness.sync.observe(Notification.turn_finished(aborted=True))

        assert harness.state.sync == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_send_failure_returns_to_idle(self) -> None:
        harness = Harness(send_ok=False)

        assert not await harness.sync.read()
        assert harness.state.sync == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        harness = Harness()
        harness.sync.timeout = 0.01
        await harness.sync.read()

        await asyncio.sleep(0.05)

        assert harness.state.sync == SyncState.IDLE
        assert harness.idle_calls == 1

    @pytest.mark.asyncio
    async def test_stale_timeout_is_noop(self) -> None:
        """A timer from a completed flow does not end the next one."""
        harness = Harness()
        harness.sync.timeout = 0.03
        await harness.sync.read()
        await harness.sync.observe(Notification.final_text("---IDENTITY---\nx\n---USER---\ny"))

        harness.sync.timeout = 5.0
        await harness.sync.read()
        await asyncio.sleep(0.06)

        assert harness.state.sync == SyncState.READING

    @pytest.mark.asyncio
    async def test_wait_idle_covers_chained_read(self) -> None:
        """Waiters wake only after the read chained from verbose reporting ends."""
        harness = Harness()
        await harness.sync.enable_verbose_reporting()
        waiter = asyncio.create_task(harness.sync.wait_idle())

        await harness.sync.observe(Notification.final_text("Verbose logging enabled."))
        await asyncio.sleep(0)
        assert not waiter.done()

        await harness.sync.observe(Notification.final_text("---IDENTITY---\n- **Name:** Chowder\n---USER---\n"))
        await asyncio.wait_for(waiter, 1.0)

        assert harness.state.sync == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_wait_idle_released_by_reset(self) -> None:
        harness = Harness()
        await harness.sync.read()
        waiter = asyncio.create_task(harness.sync.wait_idle())
        await asyncio.sleep(0)

        await harness.sync.reset()

        await asyncio.wait_for(waiter, 1.0)

    @pytest.mark.asyncio
    async def test_reset(self) -> None:
        harness = Harness()
        await harness.sync.enable_verbose_reporting()

        await harness.sync.reset()

        assert harness.state.sync == SyncState.IDLE
        assert harness.idle_calls == 0
        assert harness.sent == [VERBOSE_DIRECTIVE]
