"""
Connection Recovery Tests
Tests for the connection state machine and reconnect backoff
"""

from itertools import islice
from unittest.mock import Mock

import pytest

from vehiclelink.controllers.connection_recovery import (
    Backoff,
    ConnectionEvent,
    ConnectionState,
    ConnectionStateMachine,
    next_state,
)
from vehiclelink.utils.config import ReconnectConfig


class TestTransitions:
    """Test the transition table."""

    @pytest.mark.parametrize("state, event, expected", [
        (ConnectionState.DISCONNECTED, ConnectionEvent.CONNECT_REQUEST, ConnectionState.CONNECTING),
        (ConnectionState.CONNECTING, ConnectionEvent.OPEN_SUCCESS, ConnectionState.CONNECTED),
        (ConnectionState.CONNECTING, ConnectionEvent.OPEN_FAILURE, ConnectionState.ERROR),
        (ConnectionState.CONNECTED, ConnectionEvent.HEARTBEAT, ConnectionState.STREAMING),
        (ConnectionState.STREAMING, ConnectionEvent.HEARTBEAT_TIMEOUT, ConnectionState.ERROR),
        (ConnectionState.STREAMING, ConnectionEvent.IO_ERROR, ConnectionState.ERROR),
        (ConnectionState.ERROR, ConnectionEvent.RETRY, ConnectionState.RECONNECTING),
        (ConnectionState.RECONNECTING, ConnectionEvent.OPEN_SUCCESS, ConnectionState.CONNECTED),
        (ConnectionState.RECONNECTING, ConnectionEvent.OPEN_FAILURE, ConnectionState.ERROR),
    ])
    def test_legal(self, state, event, expected):
        assert next_state(state, event) == expected

    @pytest.mark.parametrize("state, event", [
        (ConnectionState.DISCONNECTED, ConnectionEvent.HEARTBEAT),
        (ConnectionState.STREAMING, ConnectionEvent.HEARTBEAT),
        (ConnectionState.CONNECTED, ConnectionEvent.HEARTBEAT_TIMEOUT),
        (ConnectionState.ERROR, ConnectionEvent.HEARTBEAT_TIMEOUT),
        (ConnectionState.STREAMING, ConnectionEvent.CONNECT_REQUEST),
    ])
    def test_illegal_events_ignored(self, state, event):
        assert next_state(state, event) == state

    @pytest.mark.parametrize("state", list(ConnectionState))
    def test_disconnect_from_anywhere(self, state):
        assert next_state(state, ConnectionEvent.DISCONNECT_REQUEST) == ConnectionState.DISCONNECTED


class TestStateMachine:
    """Test ConnectionStateMachine."""

    def test_initial_state(self):
        assert ConnectionStateMachine().state == ConnectionState.DISCONNECTED

    def test_listeners_see_old_and_new(self):
        machine = ConnectionStateMachine()
        listener = Mock()
        machine.add_listener(listener)

        assert machine.handle(ConnectionEvent.CONNECT_REQUEST)
        listener.assert_called_once_with(ConnectionState.DISCONNECTED, ConnectionState.CONNECTING)

    def test_ignored_event_not_reported(self):
        machine = ConnectionStateMachine()
        listener = Mock()
        machine.add_listener(listener)

        assert not machine.handle(ConnectionEvent.HEARTBEAT)
        listener.assert_not_called()

    def test_failing_listener_does_not_stop_others(self):
        machine = ConnectionStateMachine()
        good = Mock()
        machine.add_listener(Mock(side_effect=RuntimeError("boom")))
        machine.add_listener(good)

        machine.handle(ConnectionEvent.CONNECT_REQUEST)

        good.assert_called_once()

    def test_remove_listener(self):
        machine = ConnectionStateMachine()
        listener = Mock()
        machine.add_listener(listener)
        machine.remove_listener(listener)

        machine.handle(ConnectionEvent.CONNECT_REQUEST)
        listener.assert_not_called()

    def test_single_timeout_transition(self):
        """Repeated timeouts after the first change nothing."""
        machine = ConnectionStateMachine()
        for event in (ConnectionEvent.CONNECT_REQUEST, ConnectionEvent.OPEN_SUCCESS,
                      ConnectionEvent.HEARTBEAT):
            machine.handle(event)

        results = [machine.handle(ConnectionEvent.HEARTBEAT_TIMEOUT) for _ in range(3)]

        assert results == [True, False, False]
        assert machine.state == ConnectionState.ERROR


class TestBackoff:
    """Test capped exponential backoff."""

    def test_sequence(self):
        backoff = Backoff(ReconnectConfig(initial_delay=1.0, multiplier=2.0, max_delay=30.0))
        assert list(islice(backoff, 7)) == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]
        assert backoff.attempts == 7

    def test_reset(self):
        backoff = Backoff(ReconnectConfig(initial_delay=0.5, multiplier=3.0, max_delay=10.0))
        backoff.next_delay()
        backoff.next_delay()

        backoff.reset()

        assert backoff.attempts == 0
        assert backoff.next_delay() == 0.5

    def test_default_config(self):
        backoff = Backoff()
        assert backoff.current_delay == 1.0
