"""
UDP Transport Implementation

Connectionless transport: the socket is bound to ``host:port`` and "connected"
only means a peer address is designated. The peer is either configured up
front or learned from the first datagram that arrives.
"""

import asyncio
from typing import Optional
import logging

from .transport_base import (
    TransportBase,
    TransportInfo,
    WouldBlockError,
    classify_os_error,
)
from ..utils.config import UdpConfig


logger = logging.getLogger(__name__)


class _DatagramProtocol(asyncio.DatagramProtocol):
    """Forwards datagrams and socket errors to the owning transport."""

    def __init__(self, owner: "UdpTransport"):
        self._owner = owner

    def datagram_received(self, data: bytes, addr) -> None:
        self._owner._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        # ICMP errors (e.g. port unreachable) are reported per send, not fatal
        logger.debug(f"UDP error received: {exc}")

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            self._owner._fail(classify_os_error(exc))


class UdpTransport(TransportBase):
    """
    UDP transport (default ``0.0.0.0:14550``).

    Usage:
        transport = UdpTransport()
        await transport.open(UdpConfig(port=14550))
        async for chunk in transport.receive():
            ...
    """

    kind = "udp"

    def __init__(self):
        super().__init__()
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._peer: Optional[tuple] = None
        self._peer_fixed = False

    @property
    def peer(self) -> Optional[tuple]:
        """Designated peer address, if known."""
        return self._peer

    @property
    def local_address(self) -> Optional[tuple]:
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")

    async def _open(self, config: UdpConfig) -> None:
        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _DatagramProtocol(self),
            local_addr=(config.host, config.port),
        )
        if config.remote is not None:
            self._peer = config.remote
            self._peer_fixed = True

        host, port = self.local_address[:2]
        self._info = TransportInfo(
            kind=self.kind,
            endpoint=f"{host}:{port}",
            description=f"UDP bound to {host}:{port}" + (f", peer {self._peer[0]}:{self._peer[1]}" if self._peer else ""),
        )

    def _on_datagram(self, data: bytes, addr) -> None:
        if not self.is_connected:
            return
        if self._peer is None:
            self._peer = addr
            logger.info(f"UDP peer learned: {addr[0]}:{addr[1]}")
        self._deliver(data)

    async def _write(self, data: bytes) -> None:
        if self._peer is None:
            raise WouldBlockError("No UDP peer known yet")
        self._transport.sendto(data, self._peer)

    async def _release(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
