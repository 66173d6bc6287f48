"""
Transport factory.

Maps a transport config to a fresh transport instance. Transports are
single use, so the connection manager asks the factory for a new one on
every (re)connect.
"""

from typing import Callable
import logging

from .transport_base import TransportBase
from .udp_transport import UdpTransport
from .serial_transport import SerialTransport
from .tcp_transport import TcpTransport
from ..utils.config import ConfigError, TransportConfig, TransportKind


logger = logging.getLogger(__name__)

TransportFactory = Callable[[], TransportBase]

_TRANSPORTS: dict[TransportKind, type] = {
    TransportKind.UDP: UdpTransport,
    TransportKind.SERIAL: SerialTransport,
    TransportKind.TCP: TcpTransport,
}


def create_transport(config: TransportConfig) -> TransportBase:
    """
    Create an unopened transport for ``config``.

    Raises:
        ConfigError: If the config kind has no transport
    """
    transport_cls = _TRANSPORTS.get(getattr(config, "kind", None))
    if transport_cls is None:
        raise ConfigError(f"No transport for config {type(config).__name__}")
    logger.debug(f"Creating {transport_cls.__name__}")
    return transport_cls()


def transport_factory(config: TransportConfig) -> TransportFactory:
    """Return a zero-argument factory producing transports for ``config``."""
    return lambda: create_transport(config)
