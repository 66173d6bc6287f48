"""
Utils Package

Configuration and logging helpers.
"""

from .config import (
    ConfigError,
    TransportKind,
    TcpRole,
    UdpConfig,
    SerialConfig,
    TcpConfig,
    ReconnectConfig,
    AggregatorConfig,
    LinkConfig,
    load_config,
    transport_config_from_dict,
)
from .logger import setup_logger

__all__ = [
    'ConfigError',
    'TransportKind',
    'TcpRole',
    'UdpConfig',
    'SerialConfig',
    'TcpConfig',
    'ReconnectConfig',
    'AggregatorConfig',
    'LinkConfig',
    'load_config',
    'transport_config_from_dict',
    'setup_logger',
]
