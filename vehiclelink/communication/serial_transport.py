"""
Serial Transport Implementation

Byte-oriented stream over a named serial device (telemetry radio, USB
autopilot port). Uses pyserial and pyserial-asyncio for async serial I/O.
"""

import asyncio
from typing import Optional
import logging

try:
    import serial
    import serial.tools.list_ports
    from serial_asyncio import open_serial_connection
    SERIAL_AVAILABLE = True
except ImportError:
    SERIAL_AVAILABLE = False

from .transport_base import (
    TransportBase,
    TransportInfo,
    TransportClosedError,
    TransportError,
    classify_os_error,
)
from ..utils.config import SerialConfig


logger = logging.getLogger(__name__)


READ_BUFFER_SIZE = 4096


def list_serial_ports() -> list[TransportInfo]:
    """List serial devices visible to pyserial."""
    if not SERIAL_AVAILABLE:
        logger.warning("pyserial not installed, cannot list ports")
        return []
    return sorted(
        (
            TransportInfo(kind=SerialTransport.kind, endpoint=port.device, description=port.description or "")
            for port in serial.tools.list_ports.comports()
        ),
        key=lambda info: info.endpoint,
    )


class SerialTransport(TransportBase):
    """Serial device at a configured baud rate."""

    kind = "serial"

    def __init__(self):
        super().__init__()
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None

    async def _open(self, config: SerialConfig) -> None:
        if not SERIAL_AVAILABLE:
            raise TransportError("pyserial-asyncio not installed")

        self._reader, self._writer = await open_serial_connection(
            url=config.device,
            baudrate=config.baudrate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            xonxoff=False,
            rtscts=False,
        )
        self._info = TransportInfo(
            kind=self.kind,
            endpoint=config.device,
            description=f"{config.device} at {config.baudrate} baud",
        )
        self._read_task = asyncio.create_task(self._read_loop())

    async def _write(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()
        logger.debug(f"Sent {len(data)} bytes")

    async def _read_loop(self) -> None:
        """Background task to read from serial port."""
        while self._reader is not None:
            try:
                data = await self._reader.read(READ_BUFFER_SIZE)
            except OSError as e:
                self._fail(classify_os_error(e))
                return

            if not data:
                # Empty read means the device went away
                self._fail(TransportClosedError("Serial device closed"))
                return
            self._deliver(data)

    async def _release(self) -> None:
        if self._read_task:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
            self._read_task = None

        if self._writer:
            try:
                self._writer.close()
                await self._writer.wait_closed()
            except OSError as e:
                logger.warning(f"Error closing serial port: {e}")
            self._writer = None
            self._reader = None
