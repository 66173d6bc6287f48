"""
Communication Manager

High-level link manager that handles:
- Connection lifecycle (state machine over transport + parser + decoder)
- Automatic reconnection with capped exponential backoff
- Heartbeat watchdog and optional ground-station heartbeat
- Sequence-gap packet loss statistics
- Bounded inbound message queue (oldest dropped on overflow)
- Outbound commands and messages
"""

import asyncio
from collections import deque
from dataclasses import dataclass, replace
from typing import AsyncIterator, Callable, Dict, Optional
import logging
import time

from .protocol import Frame, encode_frame
from .frame_parser import FrameParser
from .decoder import DecodeError, UnknownMessageIdError, decode, encode_message
from .commands import Command
from .messages import (
    CommandAck,
    DecodedMessage,
    Heartbeat,
    MavAutopilot,
    MavModeFlag,
    MavState,
    MavType,
    StatusText,
)
from .transport_base import (
    TransportBase,
    TransportClosedError,
    TransportError,
    WouldBlockError,
)
from .transport_factory import transport_factory
from ..controllers.connection_recovery import (
    Backoff,
    ConnectionEvent,
    ConnectionState,
    ConnectionStateMachine,
)
from ..utils.config import LinkConfig


logger = logging.getLogger(__name__)


LOSS_WINDOW = 100


class ProtocolTimeoutError(Exception):
    """No vehicle heartbeat (or command ack) within the allowed time."""
    pass


@dataclass
class ConnectionStatistics:
    """Link statistics. Consumers always receive copies."""
    state: ConnectionState = ConnectionState.DISCONNECTED
    packets_received: int = 0
    packets_sent: int = 0
    bytes_received: int = 0
    bytes_discarded: int = 0
    frames_dropped: int = 0
    crc_errors: int = 0
    decode_errors: int = 0
    messages_dropped: int = 0
    packets_lost: int = 0
    loss_rate: float = 0.0
    last_heartbeat: Optional[float] = None  # monotonic seconds
    reconnect_attempts: int = 0
    connected_at: Optional[float] = None
    last_error: Optional[str] = None

    @property
    def time_since_heartbeat(self) -> Optional[float]:
        if self.last_heartbeat is None:
            return None
        return time.monotonic() - self.last_heartbeat


@dataclass(frozen=True)
class InboundMessage:
    """Decoded message plus the frame header it arrived with."""
    message: DecodedMessage
    system_id: int
    component_id: int
    sequence: int
    msg_id: int
    received_at: float


class SequenceTracker:
    """
    Tracks sequence continuity per (system_id, component_id).

    A gap between the expected and received sequence (mod 256) counts as
    that many lost packets. The loss rate is taken over the last ``window``
    received frames.
    """

    def __init__(self, window: int = LOSS_WINDOW):
        self._last: Dict[tuple, int] = {}
        self._window: deque = deque(maxlen=window)
        self.total_lost = 0

    def update(self, sender: tuple, sequence: int) -> int:
        """Record a frame; returns packets lost before it."""
        last = self._last.get(sender)
        self._last[sender] = sequence
        lost = 0 if last is None else (sequence - (last + 1)) % 256
        self.total_lost += lost
        self._window.append(lost)
        return lost

    @property
    def loss_rate(self) -> float:
        if not self._window:
            return 0.0
        lost = sum(self._window)
        return lost / (len(self._window) + lost)

    def reset(self) -> None:
        self._last.clear()
        self._window.clear()
        self.total_lost = 0


class CommManager:
    """
    High-level communication manager for one vehicle link.

    Example usage:
        manager = CommManager(LinkConfig(transport=UdpConfig(port=14550)))
        await manager.connect()

        async for inbound in manager.messages():
            print(inbound.message)

        await manager.send_command(ArmDisarm(arm=True))
        await manager.disconnect()
    """

    def __init__(
        self,
        config: Optional[LinkConfig] = None,
        transport_factory_fn: Optional[Callable[[], TransportBase]] = None,
    ):
        """
        Initialize communication manager.

        Args:
            config: Link configuration (default: UDP on 0.0.0.0:14550)
            transport_factory_fn: Returns a fresh transport per (re)connect;
                defaults to one built from ``config.transport``
        """
        self.config = config or LinkConfig()
        self._transport_factory = transport_factory_fn or transport_factory(self.config.transport)

        self._machine = ConnectionStateMachine()
        self._machine.add_listener(self._on_state_changed)
        self._backoff = Backoff(self.config.reconnect)

        self._state_callbacks: list[Callable[[ConnectionState], None]] = []
        self._error_callbacks: list[Callable[[Exception], None]] = []
        self._status_text_callbacks: list[Callable[[StatusText], None]] = []

        self._transport: Optional[TransportBase] = None
        self._parser = FrameParser()
        self._sequences = SequenceTracker()
        self._stats = ConnectionStatistics()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.queue_size)
        self._tx_sequence = 0
        self._vehicle: Optional[tuple] = None
        self._pending_acks: Dict[int, asyncio.Future] = {}

        self._receive_task: Optional[asyncio.Task] = None
        self._watchdog_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._recovery_task: Optional[asyncio.Task] = None
        # Bumped by disconnect() so an open still in flight knows to back out
        self._session = 0

    # ========================================================================
    # State and statistics
    # ========================================================================

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._machine.state

    @property
    def is_connected(self) -> bool:
        """Check if the transport is open."""
        return self.state in (ConnectionState.CONNECTED, ConnectionState.STREAMING)

    @property
    def is_streaming(self) -> bool:
        return self.state == ConnectionState.STREAMING

    @property
    def vehicle(self) -> Optional[tuple]:
        """(system_id, component_id) of the first vehicle heard from."""
        return self._vehicle

    @property
    def statistics(self) -> ConnectionStatistics:
        """Get a copy of the connection statistics."""
        parser_stats = self._parser.stats
        return replace(
            self._stats,
            state=self.state,
            bytes_discarded=parser_stats.bytes_discarded,
            frames_dropped=parser_stats.frames_dropped,
            crc_errors=parser_stats.crc_errors,
            packets_lost=self._sequences.total_lost,
            loss_rate=self._sequences.loss_rate,
        )

    @property
    def pending_messages(self) -> int:
        return self._queue.qsize()

    def add_state_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Add callback for state changes."""
        self._state_callbacks.append(callback)

    def remove_state_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Remove state change callback."""
        if callback in self._state_callbacks:
            self._state_callbacks.remove(callback)

    def add_error_callback(self, callback: Callable[[Exception], None]) -> None:
        """Add callback for link diagnostics (transport, decode and timeout errors)."""
        self._error_callbacks.append(callback)

    def remove_error_callback(self, callback: Callable[[Exception], None]) -> None:
        if callback in self._error_callbacks:
            self._error_callbacks.remove(callback)

    def add_status_text_callback(self, callback: Callable[[StatusText], None]) -> None:
        """Add callback for STATUSTEXT messages from the vehicle."""
        self._status_text_callbacks.append(callback)

    def _on_state_changed(self, old_state: ConnectionState, new_state: ConnectionState) -> None:
        for callback in list(self._state_callbacks):
            try:
                callback(new_state)
            except Exception as e:
                logger.error(f"State callback error: {e}")

    def _report_error(self, error: Exception) -> None:
        self._stats.last_error = f"{type(error).__name__}: {error}"
        for callback in list(self._error_callbacks):
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Error callback error: {e}")

    # ========================================================================
    # Connection lifecycle
    # ========================================================================

    async def connect(self) -> bool:
        """
        Open the link.

        On failure the manager moves to ERROR and keeps retrying in the
        background until ``disconnect()`` is called.

        Returns:
            True if the transport opened
        """
        if self.state != ConnectionState.DISCONNECTED:
            logger.warning(f"Cannot connect: already in state {self.state.name}")
            return self.is_connected

        self._machine.handle(ConnectionEvent.CONNECT_REQUEST)
        if await self._open_transport():
            return True
        if self.state == ConnectionState.ERROR:
            self._schedule_recovery()
        return False

    async def disconnect(self) -> None:
        """
        Close the link and stop all background activity.

        Statistics are reset and the state is DISCONNECTED when this returns.
        """
        self._session += 1
        if self._recovery_task is not None and self._recovery_task is not asyncio.current_task():
            self._recovery_task.cancel()
            try:
                await self._recovery_task
            except asyncio.CancelledError:
                pass
        self._recovery_task = None

        await self._teardown_link()

        for future in self._pending_acks.values():
            if not future.done():
                future.set_exception(TransportClosedError("Disconnected"))
        self._pending_acks.clear()

        self._machine.handle(ConnectionEvent.DISCONNECT_REQUEST)
        self._reset()
        logger.info("Disconnected")

    async def __aenter__(self) -> "CommManager":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def _reset(self) -> None:
        self._stats = ConnectionStatistics()
        self._parser = FrameParser()
        self._sequences.reset()
        self._backoff.reset()
        self._vehicle = None
        self._tx_sequence = 0
        while not self._queue.empty():
            self._queue.get_nowait()

    async def _open_transport(self) -> bool:
        session = self._session
        transport = self._transport_factory()
        try:
            await transport.open(self.config.transport)
        except TransportError as e:
            await transport.close()
            if session != self._session:
                return False
            logger.warning(f"Transport open failed: {e}")
            self._report_error(e)
            self._machine.handle(ConnectionEvent.OPEN_FAILURE)
            return False

        if session != self._session:
            # disconnect() ran while the open was in flight
            logger.info("Discarding transport opened after disconnect")
            await transport.close()
            return False

        self._transport = transport
        self._parser.reset()
        self._backoff.reset()
        self._stats.connected_at = time.monotonic()
        self._machine.handle(ConnectionEvent.OPEN_SUCCESS)

        self._receive_task = asyncio.create_task(self._receive_loop(transport))
        self._watchdog_task = asyncio.create_task(self._watchdog_loop())
        if self.config.send_heartbeat:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        return True

    async def _teardown_link(self) -> None:
        """Stop per-connection tasks and close the transport."""
        current = asyncio.current_task()
        for task in (self._receive_task, self._watchdog_task, self._heartbeat_task):
            if task is None or task is current:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._receive_task = None
        self._watchdog_task = None
        self._heartbeat_task = None

        if self._transport is not None:
            transport, self._transport = self._transport, None
            await transport.close()

    async def _on_link_fault(self, error: Exception, event: ConnectionEvent) -> None:
        if not self._machine.handle(event):
            return
        logger.warning(f"Link fault: {error}")
        self._report_error(error)
        await self._teardown_link()
        self._schedule_recovery()

    def _schedule_recovery(self) -> None:
        if self._recovery_task is not None and not self._recovery_task.done():
            return
        self._recovery_task = asyncio.create_task(self._recovery_loop())

    async def _recovery_loop(self) -> None:
        """Retry opening the transport with backoff while in ERROR."""
        while self.state == ConnectionState.ERROR:
            delay = self._backoff.next_delay()
            logger.info(f"Reconnecting in {delay:.1f}s (attempt {self._backoff.attempts})")
            await asyncio.sleep(delay)

            if not self._machine.handle(ConnectionEvent.RETRY):
                return
            self._stats.reconnect_attempts += 1
            if await self._open_transport():
                logger.info(f"Reconnected after {self._stats.reconnect_attempts} attempt(s)")
                return

    # ========================================================================
    # Background loops
    # ========================================================================

    async def _receive_loop(self, transport: TransportBase) -> None:
        """Feed transport bytes through the parser and decoder."""
        try:
            async for chunk in transport.receive():
                self._handle_bytes(chunk)
        except TransportError as e:
            await self._on_link_fault(e, ConnectionEvent.IO_ERROR)

    async def _watchdog_loop(self) -> None:
        """Detect heartbeat loss while streaming."""
        timeout = self.config.heartbeat_timeout
        check_interval = min(timeout / 10.0, 0.25)
        while True:
            await asyncio.sleep(check_interval)
            last = self._stats.last_heartbeat
            if self.state != ConnectionState.STREAMING or last is None:
                continue
            silence = time.monotonic() - last
            if silence > timeout:
                error = ProtocolTimeoutError(f"No heartbeat for {silence:.1f}s (timeout {timeout:.1f}s)")
                await self._on_link_fault(error, ConnectionEvent.HEARTBEAT_TIMEOUT)
                return

    async def _heartbeat_loop(self) -> None:
        """Send a ground-station heartbeat at the configured interval."""
        heartbeat = Heartbeat(
            vehicle_type=MavType.GCS,
            autopilot=MavAutopilot.INVALID,
            base_mode=MavModeFlag.NONE,
            custom_mode=0,
            system_status=MavState.ACTIVE,
        )
        while True:
            try:
                await self.send_message(heartbeat)
            except WouldBlockError as e:
                logger.debug(f"GCS heartbeat not sent: {e}")
            except TransportError as e:
                logger.debug(f"GCS heartbeat loop stopped: {e}")
                return
            await asyncio.sleep(self.config.heartbeat_interval)

    # ========================================================================
    # Inbound path
    # ========================================================================

    def _handle_bytes(self, chunk: bytes) -> None:
        self._stats.bytes_received += len(chunk)
        for frame in self._parser.feed(chunk):
            self._handle_frame(frame)

    def _handle_frame(self, frame: Frame) -> None:
        now = time.monotonic()
        self._stats.packets_received += 1
        lost = self._sequences.update(frame.sender, frame.sequence)
        if lost:
            logger.debug(f"{lost} packet(s) lost from {frame.sender}")

        try:
            message = decode(frame)
        except UnknownMessageIdError as e:
            self._stats.decode_errors += 1
            logger.debug(f"Skipping message: {e}")
            self._report_error(e)
            return
        except DecodeError as e:
            self._stats.decode_errors += 1
            logger.warning(f"Skipping message: {e}")
            self._report_error(e)
            return

        if isinstance(message, Heartbeat) and not message.is_ground_station:
            self._stats.last_heartbeat = now
            if self._vehicle is None:
                self._vehicle = frame.sender
                logger.info(f"Vehicle heartbeat from system {frame.system_id} component {frame.component_id}")
            self._machine.handle(ConnectionEvent.HEARTBEAT)
        elif isinstance(message, CommandAck):
            future = self._pending_acks.pop(message.command, None)
            if future is not None and not future.done():
                future.set_result(message)
        elif isinstance(message, StatusText):
            logger.info(f"Vehicle {frame.system_id}: [{message.severity}] {message.text}")
            for callback in list(self._status_text_callbacks):
                try:
                    callback(message)
                except Exception as e:
                    logger.error(f"Status text callback error: {e}")

        self._enqueue(InboundMessage(
            message=message,
            system_id=frame.system_id,
            component_id=frame.component_id,
            sequence=frame.sequence,
            msg_id=frame.msg_id,
            received_at=now,
        ))

    def _enqueue(self, inbound: InboundMessage) -> None:
        try:
            self._queue.put_nowait(inbound)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._stats.messages_dropped += 1
            self._queue.put_nowait(inbound)

    async def get_message(self, timeout: Optional[float] = None) -> Optional[InboundMessage]:
        """Next decoded message, or None on timeout."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def messages(self) -> AsyncIterator[InboundMessage]:
        """
        Async iterator over decoded messages.

        Survives reconnects; stop iterating (or cancel the consumer) to end.
        """
        while True:
            yield await self._queue.get()

    # ========================================================================
    # Outbound path
    # ========================================================================

    async def send_message(self, message: DecodedMessage) -> None:
        """
        Encode and send any supported message.

        Raises:
            EncodeError: If the message cannot be encoded
            TransportError: If sending fails
        """
        msg_id, payload = encode_message(message)
        await self._send_payload(msg_id, payload)

    async def send_command(
        self,
        command: Command,
        target_system: Optional[int] = None,
        target_component: int = 1,
    ) -> None:
        """
        Send a typed command. Failed sends are not retried.

        Args:
            command: Command record
            target_system: Target system id (default: the vehicle heard from, else 1)
            target_component: Target component id

        Raises:
            EncodeError: If the command parameters are invalid
            TransportError: If sending fails
        """
        if target_system is None:
            target_system = self._vehicle[0] if self._vehicle else 1
        msg_id, payload = command.to_payload(target_system, target_component)
        await self._send_payload(msg_id, payload)
        logger.info(f"Sent {type(command).__name__} to system {target_system}")

    async def send_command_and_wait(
        self,
        command: Command,
        timeout: float = 3.0,
        target_system: Optional[int] = None,
        target_component: int = 1,
    ) -> CommandAck:
        """
        Send a COMMAND_LONG command and wait for its COMMAND_ACK.

        Raises:
            ProtocolTimeoutError: If no ack arrives within ``timeout``
            TypeError: If the command is not acknowledged by COMMAND_ACK
        """
        command_id = getattr(command, "command_id", None)
        if command_id is None:
            raise TypeError(f"{type(command).__name__} is not acknowledged by COMMAND_ACK")

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_acks[int(command_id)] = future
        try:
            await self.send_command(command, target_system, target_component)
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise ProtocolTimeoutError(f"No COMMAND_ACK for {type(command).__name__}")
        finally:
            self._pending_acks.pop(int(command_id), None)

    async def _send_payload(self, msg_id: int, payload: bytes) -> None:
        transport = self._transport
        if transport is None:
            raise TransportClosedError(f"Not connected (state {self.state.name})")

        data = encode_frame(
            msg_id,
            payload,
            sequence=self._tx_sequence,
            system_id=self.config.system_id,
            component_id=self.config.component_id,
            version=self.config.protocol_version,
        )
        try:
            await transport.send(data)
        except WouldBlockError:
            raise
        except TransportError as e:
            await self._on_link_fault(e, ConnectionEvent.IO_ERROR)
            raise

        self._tx_sequence = (self._tx_sequence + 1) & 0xFF
        self._stats.packets_sent += 1
