"""Unit tests for SessionState transitions."""

from __future__ import annotations

import pytest

from chowder_client.state import ConnectionState, SessionState, SyncState


class TestConnectionTransitions:
    """Tests for the handshake state machine."""

    def test_initial_state(self) -> None:
        state = SessionState()

        assert state.connection == ConnectionState.DISCONNECTED
        assert not state.is_connected
        assert state.protocol_version is None
        assert state.sync == SyncState.IDLE

    def test_forward_path(self) -> None:
        """Full handshake reaches CONNECTED and records the protocol."""
        state = SessionState()
        state.socket_opened()
        state.challenge_answered()
        state.hello_ok(3)

        assert state.is_connected
        assert state.protocol_version == 3

    def test_skipping_a_state_raises(self) -> None:
        """Transitions cannot skip the challenge."""
        state = SessionState()
        state.socket_opened()

        with pytest.raises(ValueError):
            state.hello_ok(3)

    def test_backward_transition_raises(self) -> None:
        """A connected session cannot go back to awaiting the challenge."""
        state = SessionState()
        state.socket_opened()
        state.challenge_answered()
        state.hello_ok(3)

        with pytest.raises(ValueError):
            state.socket_opened()

    def test_any_state_can_disconnect(self) -> None:
        state = SessionState()
        state.socket_opened()
        state.challenge_answered()
        state.mark_disconnected()

        assert state.connection == ConnectionState.DISCONNECTED
        state.socket_opened()
        assert state.connection == ConnectionState.AWAITING_CHALLENGE


class TestRequestIds:
    """Tests for request id allocation."""

    def test_ids_increase_from_one(self) -> None:
        state = SessionState()

        assert [state.next_request_id() for _ in range(3)] == ["req-1", "req-2", "req-3"]

    def test_reset_restarts_counter(self) -> None:
        """Every new connection starts again at req-1."""
        state = SessionState()
        state.next_request_id()
        state.next_request_id()
        state.socket_opened()

        state.reset()

        assert state.next_request_id() == "req-1"
        assert state.connection == ConnectionState.DISCONNECTED
        assert state.protocol_version is None


class TestSyncGuard:
    """Tests for the advisory sync guard."""

    def test_begin_and_end(self) -> None:
        state = SessionState()

        assert state.begin_sync(SyncState.READING)
        assert state.sync == SyncState.READING
        state.end_sync()
        assert state.sync == SyncState.IDLE

    def test_second_begin_rejected(self) -> None:
        """A second flow is rejected, not queued."""
        state = SessionState()
        state.begin_sync(SyncState.WRITING)

        assert not state.begin_sync(SyncState.READING)
        assert state.sync == SyncState.WRITING

    def test_begin_idle_raises(self) -> None:
        with pytest.raises(ValueError):
            SessionState().begin_sync(SyncState.IDLE)
