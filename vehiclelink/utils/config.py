"""
Link Configuration

Dataclasses describing how to reach the vehicle and how telemetry is
aggregated. Configs are built from plain dictionaries (``from_dict``) or
JSON files (``load_config``) and validated before use.

Example JSON:

    {
        "transport": {"kind": "udp", "host": "0.0.0.0", "port": 14550},
        "heartbeat_timeout": 3.0,
        "reconnect": {"initial_delay": 1.0, "multiplier": 2.0, "max_delay": 30.0},
        "aggregator": {"rate_hz": 10, "stale_after": 3.0, "group_stale_after": {"gps": 5.0}}
    }
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import json
import logging

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when a configuration is missing fields or holds invalid values."""

    def __init__(self, errors: Union[str, List[str]]):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class TransportKind(Enum):
    """Transport selector."""
    UDP = "udp"
    SERIAL = "serial"
    TCP = "tcp"


class TcpRole(Enum):
    """TCP connection role."""
    CLIENT = "client"
    SERVER = "server"


# Default endpoints
DEFAULT_UDP_PORT = 14550
DEFAULT_TCP_PORT = 5760
DEFAULT_BAUDRATE = 57600
DEFAULT_READ_TIMEOUT = 0.5

TELEMETRY_GROUPS = ("battery", "gps", "attitude", "altitude", "velocity", "system_status")


def _check_port(port: Any, errors: List[str], name: str = "port") -> None:
    if not isinstance(port, int) or not 0 <= port <= 65535:
        errors.append(f"{name} must be an integer in 0-65535, got {port!r}")


def _check_positive(value: Any, name: str, errors: List[str]) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
        errors.append(f"{name} must be a positive number, got {value!r}")


@dataclass
class UdpConfig:
    """
    UDP endpoint.

    The transport binds ``host:port``. When ``remote_host`` is set the peer
    is fixed, otherwise it is learned from the first datagram received.
    """
    host: str = "0.0.0.0"
    port: int = DEFAULT_UDP_PORT
    remote_host: Optional[str] = None
    remote_port: Optional[int] = None
    read_timeout: float = DEFAULT_READ_TIMEOUT

    kind = TransportKind.UDP

    @property
    def remote(self) -> Optional[tuple]:
        if self.remote_host is None:
            return None
        return (self.remote_host, self.remote_port or DEFAULT_UDP_PORT)

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.host:
            errors.append("udp host is required")
        _check_port(self.port, errors)
        if self.remote_port is not None:
            _check_port(self.remote_port, errors, "remote_port")
        _check_positive(self.read_timeout, "read_timeout", errors)
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "host": self.host,
            "port": self.port,
            "remote_host": self.remote_host,
            "remote_port": self.remote_port,
            "read_timeout": self.read_timeout,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UdpConfig':
        return cls(
            host=data.get("host", "0.0.0.0"),
            port=data.get("port", DEFAULT_UDP_PORT),
            remote_host=data.get("remote_host"),
            remote_port=data.get("remote_port"),
            read_timeout=data.get("read_timeout", DEFAULT_READ_TIMEOUT),
        )


@dataclass
class SerialConfig:
    """Serial device at a fixed baud rate."""
    device: str = ""
    baudrate: int = DEFAULT_BAUDRATE
    read_timeout: float = DEFAULT_READ_TIMEOUT

    kind = TransportKind.SERIAL

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.device:
            errors.append("serial device is required")
        if not isinstance(self.baudrate, int) or self.baudrate <= 0:
            errors.append(f"baudrate must be a positive integer, got {self.baudrate!r}")
        _check_positive(self.read_timeout, "read_timeout", errors)
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "device": self.device,
            "baudrate": self.baudrate,
            "read_timeout": self.read_timeout,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SerialConfig':
        return cls(
            device=data.get("device", ""),
            baudrate=data.get("baudrate", DEFAULT_BAUDRATE),
            read_timeout=data.get("read_timeout", DEFAULT_READ_TIMEOUT),
        )


@dataclass
class TcpConfig:
    """TCP endpoint. Clients connect to ``host:port``; servers listen on it."""
    host: str = "127.0.0.1"
    port: int = DEFAULT_TCP_PORT
    role: TcpRole = TcpRole.CLIENT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    connect_timeout: float = 5.0

    kind = TransportKind.TCP

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.host:
            errors.append("tcp host is required")
        _check_port(self.port, errors)
        _check_positive(self.read_timeout, "read_timeout", errors)
        _check_positive(self.connect_timeout, "connect_timeout", errors)
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "host": self.host,
            "port": self.port,
            "role": self.role.value,
            "read_timeout": self.read_timeout,
            "connect_timeout": self.connect_timeout,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TcpConfig':
        try:
            role = TcpRole(data.get("role", TcpRole.CLIENT.value))
        except ValueError:
            raise ConfigError(f"tcp role must be 'client' or 'server', got {data.get('role')!r}")
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=data.get("port", DEFAULT_TCP_PORT),
            role=role,
            read_timeout=data.get("read_timeout", DEFAULT_READ_TIMEOUT),
            connect_timeout=data.get("connect_timeout", 5.0),
        )


TransportConfig = Union[UdpConfig, SerialConfig, TcpConfig]

_TRANSPORT_CONFIGS = {
    TransportKind.UDP: UdpConfig,
    TransportKind.SERIAL: SerialConfig,
    TransportKind.TCP: TcpConfig,
}


def transport_config_from_dict(data: Dict[str, Any]) -> TransportConfig:
    """Build the transport config named by ``data["kind"]``."""
    kind_name = data.get("kind", TransportKind.UDP.value)
    try:
        kind = TransportKind(kind_name)
    except ValueError:
        raise ConfigError(f"Unknown transport kind {kind_name!r}")
    return _TRANSPORT_CONFIGS[kind].from_dict(data)


@dataclass
class ReconnectConfig:
    """Capped exponential backoff between reconnect attempts."""
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def validate(self) -> List[str]:
        errors: List[str] = []
        _check_positive(self.initial_delay, "initial_delay", errors)
        _check_positive(self.max_delay, "max_delay", errors)
        if not isinstance(self.multiplier, (int, float)) or self.multiplier < 1.0:
            errors.append(f"multiplier must be >= 1.0, got {self.multiplier!r}")
        if not errors and self.max_delay < self.initial_delay:
            errors.append("max_delay must not be smaller than initial_delay")
        return errors

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReconnectConfig':
        return cls(
            initial_delay=data.get("initial_delay", 1.0),
            multiplier=data.get("multiplier", 2.0),
            max_delay=data.get("max_delay", 30.0),
        )


@dataclass
class AggregatorConfig:
    """Snapshot cadence and staleness thresholds."""
    rate_hz: float = 10.0
    stale_after: float = 3.0
    group_stale_after: Dict[str, float] = field(default_factory=dict)
    system_id: Optional[int] = None

    @property
    def interval(self) -> float:
        return 1.0 / self.rate_hz

    def stale_threshold(self, group: str) -> float:
        """Staleness threshold in seconds for one field group."""
        return self.group_stale_after.get(group, self.stale_after)

    def validate(self) -> List[str]:
        errors: List[str] = []
        _check_positive(self.rate_hz, "rate_hz", errors)
        _check_positive(self.stale_after, "stale_after", errors)
        for group, threshold in self.group_stale_after.items():
            if group not in TELEMETRY_GROUPS:
                errors.append(f"Unknown telemetry group {group!r}")
            _check_positive(threshold, f"stale_after[{group}]", errors)
        if self.system_id is not None and not 1 <= self.system_id <= 255:
            errors.append(f"system_id filter must be in 1-255, got {self.system_id!r}")
        return errors

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AggregatorConfig':
        return cls(
            rate_hz=data.get("rate_hz", 10.0),
            stale_after=data.get("stale_after", 3.0),
            group_stale_after=dict(data.get("group_stale_after", {})),
            system_id=data.get("system_id"),
        )


@dataclass
class LinkConfig:
    """Everything the connection manager needs for one logical link."""
    transport: TransportConfig = field(default_factory=UdpConfig)
    heartbeat_interval: float = 1.0
    heartbeat_timeout: float = 3.0
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    queue_size: int = 1000
    system_id: int = 255
    component_id: int = 190
    send_heartbeat: bool = True
    protocol_version: int = 2
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = list(self.transport.validate())
        _check_positive(self.heartbeat_interval, "heartbeat_interval", errors)
        _check_positive(self.heartbeat_timeout, "heartbeat_timeout", errors)
        errors.extend(self.reconnect.validate())
        errors.extend(self.aggregator.validate())
        if not isinstance(self.queue_size, int) or self.queue_size <= 0:
            errors.append(f"queue_size must be a positive integer, got {self.queue_size!r}")
        for name, value in (("system_id", self.system_id), ("component_id", self.component_id)):
            if not isinstance(value, int) or not 0 <= value <= 255:
                errors.append(f"{name} must be in 0-255, got {value!r}")
        if self.protocol_version not in (1, 2):
            errors.append(f"protocol_version must be 1 or 2, got {self.protocol_version!r}")
        return errors

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LinkConfig':
        """
        Create from dictionary and validate.

        Raises:
            ConfigError: If any value is invalid
        """
        if not isinstance(data, dict):
            raise ConfigError("Link configuration must be a JSON object")
        config = cls(
            transport=transport_config_from_dict(data.get("transport", {})),
            heartbeat_interval=data.get("heartbeat_interval", 1.0),
            heartbeat_timeout=data.get("heartbeat_timeout", 3.0),
            reconnect=ReconnectConfig.from_dict(data.get("reconnect", {})),
            queue_size=data.get("queue_size", 1000),
            system_id=data.get("system_id", 255),
            component_id=data.get("component_id", 190),
            send_heartbeat=data.get("send_heartbeat", True),
            protocol_version=data.get("protocol_version", 2),
            aggregator=AggregatorConfig.from_dict(data.get("aggregator", {})),
        )
        errors = config.validate()
        if errors:
            raise ConfigError(errors)
        return config


def load_config(path: Union[str, Path]) -> LinkConfig:
    """
    Load a link configuration from a JSON file.

    Raises:
        ConfigError: If the file cannot be read or holds invalid values
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    config = LinkConfig.from_dict(data)
    logger.info(f"Loaded link config from {path} ({config.transport.kind.value})")
    return config
