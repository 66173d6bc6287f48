"""
Transport Base Interface

This module defines the abstract base class for all transport implementations.
A transport owns one physical/network connection and moves raw bytes; it has
no knowledge of frames. Chunk boundaries are arbitrary.

Transports are single use: ``open()`` may be called once, ``receive()`` may
be iterated once, and after ``close()`` a new transport must be created.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, AsyncIterator, Callable, Optional, Union
import asyncio
import errno
import logging
import socket


logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Base exception for transport errors."""
    pass


class RefusedConnectionError(TransportError):
    """The remote end refused the connection."""
    pass


class AddressInvalidError(TransportError):
    """Host, port or device path cannot be resolved."""
    pass


class PermissionDeniedError(TransportError):
    """Not allowed to open the socket or device."""
    pass


class DeviceBusyError(TransportError):
    """Port or device already in use."""
    pass


class WouldBlockError(TransportError):
    """Data cannot be sent right now (no peer yet, or buffers full)."""
    pass


class TransportClosedError(TransportError):
    """Transport is closed or the peer went away."""
    pass


class IoFailureError(TransportError):
    """Any other I/O failure."""
    pass


_OPEN_ERRNO_MAP = {
    errno.ECONNREFUSED: RefusedConnectionError,
    errno.ETIMEDOUT: RefusedConnectionError,
    errno.EHOSTUNREACH: RefusedConnectionError,
    errno.ENETUNREACH: RefusedConnectionError,
    errno.EADDRNOTAVAIL: AddressInvalidError,
    errno.EAFNOSUPPORT: AddressInvalidError,
    errno.EINVAL: AddressInvalidError,
    errno.ENOENT: AddressInvalidError,
    errno.ENODEV: AddressInvalidError,
    errno.ENXIO: AddressInvalidError,
    errno.EACCES: PermissionDeniedError,
    errno.EPERM: PermissionDeniedError,
    errno.EBUSY: DeviceBusyError,
    errno.EADDRINUSE: DeviceBusyError,
}

_IO_ERRNO_MAP = {
    errno.EAGAIN: WouldBlockError,
    errno.EWOULDBLOCK: WouldBlockError,
    errno.ENOBUFS: WouldBlockError,
    errno.EPIPE: TransportClosedError,
    errno.ECONNRESET: TransportClosedError,
    errno.ECONNABORTED: TransportClosedError,
    errno.ENOTCONN: TransportClosedError,
    errno.EBADF: TransportClosedError,
    errno.ECONNREFUSED: TransportClosedError,
}


def classify_os_error(error: Exception, opening: bool = False) -> TransportError:
    """
    Map an OS-level exception to the transport error taxonomy.

    Args:
        error: OSError (or serial.SerialException, which derives from it)
        opening: True while opening, where failures map to the open taxonomy

    Returns:
        TransportError subclass instance chained to ``error``
    """
    if isinstance(error, TransportError):
        return error

    if isinstance(error, socket.gaierror):
        result: TransportError = AddressInvalidError(f"Cannot resolve address: {error}")
    elif isinstance(error, asyncio.TimeoutError) and opening:
        result = RefusedConnectionError(f"Connection timed out: {error}")
    else:
        code = getattr(error, "errno", None)
        table = _OPEN_ERRNO_MAP if opening else _IO_ERRNO_MAP
        default = RefusedConnectionError if opening else IoFailureError
        result = table.get(code, default)(str(error) or type(error).__name__)

    result.__cause__ = error
    return result


class TransportState(Enum):
    """Transport connection state."""
    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    ERROR = auto()
    CLOSED = auto()


@dataclass
class TransportInfo:
    """Information about a transport endpoint."""
    kind: str
    endpoint: str
    description: str = ""

    def __str__(self):
        return f"{self.kind}:{self.endpoint}"


# Sentinel placed on the receive queue by close()
_CLOSED = object()

RX_QUEUE_SIZE = 1000


class TransportBase(ABC):
    """
    Abstract base class for transport implementations.

    Subclasses implement ``_open``, ``_write`` and ``_release`` and push
    received chunks with ``_deliver``. Fatal reader errors are pushed with
    ``_fail`` and re-raised from the ``receive()`` iterator.
    """

    kind = "base"

    def __init__(self, read_timeout: float = 0.5):
        self.read_timeout = read_timeout
        self._state = TransportState.DISCONNECTED
        self._state_callback: Optional[Callable[[TransportState], None]] = None
        self._rx_queue: asyncio.Queue = asyncio.Queue(maxsize=RX_QUEUE_SIZE)
        self._receive_started = False
        self._info: Optional[TransportInfo] = None
        self.bytes_received = 0
        self.bytes_sent = 0
        self.chunks_dropped = 0

    @property
    def state(self) -> TransportState:
        """Get current transport state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if transport is open and usable."""
        return self._state == TransportState.CONNECTED

    @property
    def is_closed(self) -> bool:
        return self._state == TransportState.CLOSED

    @property
    def info(self) -> Optional[TransportInfo]:
        """Endpoint description, available once opened."""
        return self._info

    def set_state_callback(self, callback: Optional[Callable[[TransportState], None]]) -> None:
        """
        Set callback for state changes.

        Args:
            callback: Function to call when state changes, or None to clear
        """
        self._state_callback = callback

    def _set_state(self, new_state: TransportState) -> None:
        if self._state != new_state:
            self._state = new_state
            if self._state_callback:
                self._state_callback(new_state)

    async def open(self, config: Any) -> None:
        """
        Open the underlying socket or device.

        Args:
            config: Transport-specific config dataclass

        Raises:
            RefusedConnectionError, AddressInvalidError,
            PermissionDeniedError, DeviceBusyError: If the open fails
            TransportError: If the transport was already opened
        """
        if self._state != TransportState.DISCONNECTED:
            raise TransportError(f"{type(self).__name__} cannot be reopened (state {self._state.name})")

        self.read_timeout = getattr(config, "read_timeout", self.read_timeout)
        self._set_state(TransportState.CONNECTING)
        try:
            await self._open(config)
        except (OSError, asyncio.TimeoutError) as e:
            await self._abort_open()
            raise classify_os_error(e, opening=True) from e
        except (TransportError, asyncio.CancelledError):
            await self._abort_open()
            raise

        self._set_state(TransportState.CONNECTED)
        logger.info(f"Transport opened: {self._info}")

    async def _abort_open(self) -> None:
        try:
            await self._release()
        except OSError as e:
            logger.debug(f"Error releasing after failed open: {e}")
        self._set_state(TransportState.ERROR)

    async def send(self, data: bytes) -> None:
        """
        Send bytes to the peer.

        Raises:
            WouldBlockError: If the data cannot be sent right now
            TransportClosedError: If the transport is not open
            IoFailureError: If the write fails
        """
        if self._state != TransportState.CONNECTED:
            raise TransportClosedError(f"Transport not open (state {self._state.name})")
        try:
            await self._write(data)
        except OSError as e:
            raise classify_os_error(e) from e
        self.bytes_sent += len(data)

    def receive(self) -> AsyncIterator[bytes]:
        """
        Return the stream of received byte chunks.

        The stream ends after ``close()`` and can only be obtained once.

        Raises:
            TransportError: If called a second time
        """
        if self._receive_started:
            raise TransportError("receive() can only be iterated once per transport")
        self._receive_started = True
        return self._receive_chunks()

    async def _receive_chunks(self) -> AsyncIterator[bytes]:
        # close() always queues _CLOSED, so a plain get() never outlives the transport
        while True:
            item = await self._rx_queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, TransportError):
                raise item
            yield item

    async def close(self) -> None:
        """
        Close the transport and release the socket or port.

        Safe to call more than once.
        """
        if self._state == TransportState.CLOSED:
            return
        self._set_state(TransportState.CLOSED)
        try:
            await self._release()
        except OSError as e:
            logger.warning(f"Error closing {self.kind} transport: {e}")
        self._deliver(_CLOSED)
        logger.info(f"Transport closed: {self._info or self.kind}")

    def _deliver(self, item: Union[bytes, object]) -> None:
        """Queue a received chunk, dropping the oldest one if full."""
        if isinstance(item, (bytes, bytearray)):
            self.bytes_received += len(item)
        try:
            self._rx_queue.put_nowait(item)
        except asyncio.QueueFull:
            self._rx_queue.get_nowait()
            self.chunks_dropped += 1
            self._rx_queue.put_nowait(item)

    def _fail(self, error: TransportError) -> None:
        """Report a fatal reader error to the receive() iterator."""
        if self._state == TransportState.CLOSED:
            return
        logger.warning(f"{self.kind} transport failed: {error}")
        self._set_state(TransportState.ERROR)
        self._deliver(error)

    @abstractmethod
    async def _open(self, config: Any) -> None:
        """Open the connection; raise OSError or TransportError on failure."""
        pass

    @abstractmethod
    async def _write(self, data: bytes) -> None:
        pass

    @abstractmethod
    async def _release(self) -> None:
        """Release sockets/ports. Must tolerate being called after a failed open."""
        pass


class MockTransport(TransportBase):
    """
    Mock transport for testing purposes.

    Received data is injected with ``inject_data``; sent data is recorded in
    the tx log. ``open_error`` makes ``open()`` fail with that error and
    ``open_delay`` makes it take that many seconds.
    """

    kind = "mock"

    def __init__(
        self,
        open_error: Optional[TransportError] = None,
        send_error: Optional[TransportError] = None,
        read_timeout: float = 0.05,
        open_delay: float = 0.0,
    ):
        super().__init__(read_timeout=read_timeout)
        self.open_error = open_error
        self.send_error = send_error
        self.open_delay = open_delay
        self.open_calls = 0
        self.release_calls = 0
        self._tx_log: list[bytes] = []
        self._auto_response: Optional[Callable[[bytes], Optional[bytes]]] = None

    def set_auto_response(self, handler: Optional[Callable[[bytes], Optional[bytes]]]) -> None:
        """
        Set auto-response handler for testing.

        Args:
            handler: Function that receives sent data and returns response, or None
        """
        self._auto_response = handler

    def inject_data(self, data: bytes) -> None:
        """Inject data into the receive stream."""
        self._deliver(bytes(data))

    def inject_error(self, error: Optional[TransportError] = None) -> None:
        """Simulate the device or peer going away."""
        self._fail(error or IoFailureError("Injected I/O failure"))

    def get_tx_log(self) -> list[bytes]:
        """Get log of all transmitted data."""
        return self._tx_log.copy()

    def clear_tx_log(self) -> None:
        self._tx_log.clear()

    async def _open(self, config: Any) -> None:
        self.open_calls += 1
        self._info = TransportInfo(kind=self.kind, endpoint="mock", description="Mock transport")
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error

    async def _write(self, data: bytes) -> None:
        if self.send_error is not None:
            raise self.send_error
        self._tx_log.append(bytes(data))
        if self._auto_response:
            response = self._auto_response(data)
            if response:
                self._deliver(response)

    async def _release(self) -> None:
        self.release_calls += 1
