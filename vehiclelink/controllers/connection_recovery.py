"""
Connection State Machine and Reconnect Backoff

Explicit transition table for the link's connection lifecycle plus the
capped exponential backoff used between reconnect attempts:

    DISCONNECTED -> CONNECTING -> CONNECTED -> STREAMING
                              -> ERROR -> RECONNECTING -> CONNECTED
                                                       -> ERROR (backoff grows)
    any -> DISCONNECTED (user disconnect)

ERROR is a transient fault awaiting automatic recovery; DISCONNECTED is the
user-requested rest state and is only reached explicitly.
"""

import logging
from enum import Enum, auto
from typing import Callable, List, Optional

from ..utils.config import ReconnectConfig

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection state machine states."""
    DISCONNECTED = auto()    # Not connected, not trying
    CONNECTING = auto()      # Initial open attempt
    CONNECTED = auto()       # Transport open, no vehicle heartbeat yet
    STREAMING = auto()       # Vehicle heartbeats arriving
    ERROR = auto()           # Fault, waiting for backoff
    RECONNECTING = auto()    # Reopen attempt after a fault


class ConnectionEvent(Enum):
    """Events that trigger state transitions."""
    CONNECT_REQUEST = auto()
    OPEN_SUCCESS = auto()
    OPEN_FAILURE = auto()
    HEARTBEAT = auto()
    HEARTBEAT_TIMEOUT = auto()
    IO_ERROR = auto()
    RETRY = auto()
    DISCONNECT_REQUEST = auto()


_TRANSITIONS = {
    (ConnectionState.DISCONNECTED, ConnectionEvent.CONNECT_REQUEST): ConnectionState.CONNECTING,
    (ConnectionState.CONNECTING, ConnectionEvent.OPEN_SUCCESS): ConnectionState.CONNECTED,
    (ConnectionState.CONNECTING, ConnectionEvent.OPEN_FAILURE): ConnectionState.ERROR,
    (ConnectionState.CONNECTED, ConnectionEvent.HEARTBEAT): ConnectionState.STREAMING,
    (ConnectionState.STREAMING, ConnectionEvent.HEARTBEAT_TIMEOUT): ConnectionState.ERROR,
    (ConnectionState.STREAMING, ConnectionEvent.IO_ERROR): ConnectionState.ERROR,
    (ConnectionState.CONNECTED, ConnectionEvent.IO_ERROR): ConnectionState.ERROR,
    (ConnectionState.ERROR, ConnectionEvent.RETRY): ConnectionState.RECONNECTING,
    (ConnectionState.RECONNECTING, ConnectionEvent.OPEN_SUCCESS): ConnectionState.CONNECTED,
    (ConnectionState.RECONNECTING, ConnectionEvent.OPEN_FAILURE): ConnectionState.ERROR,
}


def next_state(state: ConnectionState, event: ConnectionEvent) -> ConnectionState:
    """Calculate next state; events that are not legal in ``state`` leave it unchanged."""
    if event == ConnectionEvent.DISCONNECT_REQUEST:
        return ConnectionState.DISCONNECTED
    return _TRANSITIONS.get((state, event), state)


class ConnectionStateMachine:
    """
    Holds the current state and applies events through the transition table.

    Usage:
        machine = ConnectionStateMachine()
        machine.add_listener(lambda old, new: print(old, new))
        machine.handle(ConnectionEvent.CONNECT_REQUEST)
    """

    def __init__(self):
        self._state = ConnectionState.DISCONNECTED
        self._listeners: List[Callable[[ConnectionState, ConnectionState], None]] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    def add_listener(self, listener: Callable[[ConnectionState, ConnectionState], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[ConnectionState, ConnectionState], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def handle(self, event: ConnectionEvent) -> bool:
        """
        Apply an event.

        Returns:
            True if the state changed
        """
        old_state = self._state
        new_state = next_state(old_state, event)
        if new_state == old_state:
            logger.debug(f"Event {event.name} ignored in state {old_state.name}")
            return False

        self._state = new_state
        logger.info(f"Connection state: {old_state.name} -> {new_state.name}")

        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error(f"State change callback error: {e}")
        return True


class Backoff:
    """
    Capped exponential backoff.

    Each ``next_delay()`` returns the current delay and grows it by the
    multiplier up to ``max_delay``. ``reset()`` is called after a successful
    open.
    """

    def __init__(self, config: Optional[ReconnectConfig] = None):
        self.config = config or ReconnectConfig()
        self.attempts = 0
        self._current = self.config.initial_delay

    @property
    def current_delay(self) -> float:
        return self._current

    def next_delay(self) -> float:
        delay = self._current
        self.attempts += 1
        self._current = min(self._current * self.config.multiplier, self.config.max_delay)
        return delay

    def reset(self) -> None:
        self.attempts = 0
        self._current = self.config.initial_delay

    def __iter__(self):
        while True:
            yield self.next_delay()
