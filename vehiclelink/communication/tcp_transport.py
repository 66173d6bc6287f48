"""
TCP Transport Implementation

Connection-oriented stream in either role:

- client: connect to ``host:port`` (e.g. SITL on 5760)
- server: listen on ``host:port`` and accept a single peer; later peers are
  refused while one is attached
"""

import asyncio
from typing import Optional
import logging

from .transport_base import (
    TransportBase,
    TransportInfo,
    TransportClosedError,
    WouldBlockError,
    classify_os_error,
)
from ..utils.config import TcpConfig, TcpRole


logger = logging.getLogger(__name__)


READ_BUFFER_SIZE = 8192
WRITE_HIGH_WATER = 64 * 1024


class TcpTransport(TransportBase):
    """
    TCP stream transport.

    In server role the transport counts as open once it is listening;
    sending before a peer has attached raises ``WouldBlockError``. When the
    attached peer disconnects the receive stream fails with
    ``TransportClosedError``.
    """

    kind = "tcp"

    def __init__(self):
        super().__init__()
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._read_task: Optional[asyncio.Task] = None
        self._role = TcpRole.CLIENT

    @property
    def role(self) -> TcpRole:
        return self._role

    @property
    def has_peer(self) -> bool:
        return self._writer is not None

    @property
    def local_address(self) -> Optional[tuple]:
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()
        if self._writer is not None:
            return self._writer.get_extra_info("sockname")
        return None

    async def _open(self, config: TcpConfig) -> None:
        self._role = config.role

        if config.role == TcpRole.SERVER:
            self._server = await asyncio.start_server(self._on_client, config.host, config.port)
            host, port = self.local_address[:2]
            self._info = TransportInfo(
                kind=self.kind,
                endpoint=f"{host}:{port}",
                description=f"TCP server listening on {host}:{port}",
            )
            return

        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(config.host, config.port),
            timeout=config.connect_timeout,
        )
        self._attach(reader, writer)
        self._info = TransportInfo(
            kind=self.kind,
            endpoint=f"{config.host}:{config.port}",
            description=f"TCP client connected to {config.host}:{config.port}",
        )

    def _attach(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._writer.transport.set_write_buffer_limits(high=WRITE_HIGH_WATER)
        self._read_task = asyncio.create_task(self._read_loop())

    async def _on_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        if self._writer is not None or not self.is_connected:
            logger.warning(f"Refusing TCP peer {peer}: a peer is already attached")
            writer.close()
            return
        logger.info(f"TCP peer attached: {peer}")
        self._attach(reader, writer)

    async def _read_loop(self) -> None:
        while self._reader is not None:
            try:
                data = await self._reader.read(READ_BUFFER_SIZE)
            except OSError as e:
                self._fail(classify_os_error(e))
                return

            if not data:
                self._fail(TransportClosedError("TCP peer closed the connection"))
                return
            self._deliver(data)

    async def _write(self, data: bytes) -> None:
        if self._writer is None:
            raise WouldBlockError("No TCP peer attached yet")
        if self._writer.is_closing():
            raise TransportClosedError("TCP connection is closing")
        if self._writer.transport.get_write_buffer_size() > WRITE_HIGH_WATER:
            raise WouldBlockError("TCP write buffer above high-water mark")
        self._writer.write(data)

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
                logger.warning(f"Error closing TCP connection: {e}")
            self._writer = None
            self._reader = None

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
