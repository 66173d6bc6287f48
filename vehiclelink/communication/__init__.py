"""
Vehicle Link Communication Package

This package provides the telemetry link between a ground station and a
MAVLink-speaking vehicle.

Modules:
    protocol: Frame layout, CRC and frame encoding
    frame_parser: Incremental byte-stream frame parser
    messages: Decoded message types
    decoder: Payload decoding and encoding
    commands: Outbound command builders
    transport_base: Abstract transport interface
    udp_transport / serial_transport / tcp_transport: Transport implementations
    comm_manager: Connection lifecycle, liveness and message routing
    telemetry: Aggregated telemetry data structures
    vehicle_simulator: Simulated vehicle for tests and demos

Example usage:
    from vehiclelink.communication import CommManager
    from vehiclelink.utils import LinkConfig, UdpConfig

    manager = CommManager(LinkConfig(transport=UdpConfig(port=14550)))
    await manager.connect()

    async for inbound in manager.messages():
        print(inbound.message)
"""

from .protocol import (
    EncodeError,
    Frame,
    FrameError,
    MessageId,
    encode,
    encode_frame,
    x25_crc,
)
from .frame_parser import FrameParser, ParserStats, parse_stream
from .messages import (
    Altitude,
    Attitude,
    BatteryStatus,
    CommandAck,
    DecodedMessage,
    GlobalPositionInt,
    GpsRawInt,
    Heartbeat,
    LocalPositionNed,
    StatusText,
    SysStatus,
    VfrHud,
)
from .decoder import (
    DecodeError,
    PayloadLengthMismatchError,
    UnknownMessageIdError,
    decode,
    encode_message,
)
from .commands import (
    ArmDisarm,
    Command,
    Land,
    MavCmd,
    RequestDataStream,
    RequestMessage,
    ReturnToLaunch,
    SetMessageInterval,
    SetMode,
    Takeoff,
)
from .transport_base import (
    MockTransport,
    TransportBase,
    TransportError,
    TransportState,
)
from .udp_transport import UdpTransport
from .serial_transport import SerialTransport
from .tcp_transport import TcpTransport
from .transport_factory import create_transport, transport_factory
from .telemetry import Freshness, FieldGroup, TelemetrySnapshot, TelemetryUpdate
from .telemetry_observer import TelemetrySubject
from .comm_manager import (
    CommManager,
    ConnectionStatistics,
    InboundMessage,
    ProtocolTimeoutError,
)
from .vehicle_simulator import SimulatedTransport, VehicleSimulator

__all__ = [
    # Protocol
    "EncodeError",
    "Frame",
    "FrameError",
    "MessageId",
    "encode",
    "encode_frame",
    "x25_crc",
    "FrameParser",
    "ParserStats",
    "parse_stream",
    # Messages
    "Altitude",
    "Attitude",
    "BatteryStatus",
    "CommandAck",
    "DecodedMessage",
    "GlobalPositionInt",
    "GpsRawInt",
    "Heartbeat",
    "LocalPositionNed",
    "StatusText",
    "SysStatus",
    "VfrHud",
    "DecodeError",
    "PayloadLengthMismatchError",
    "UnknownMessageIdError",
    "decode",
    "encode_message",
    # Commands
    "ArmDisarm",
    "Command",
    "Land",
    "MavCmd",
    "RequestDataStream",
    "RequestMessage",
    "ReturnToLaunch",
    "SetMessageInterval",
    "SetMode",
    "Takeoff",
    # Transport
    "MockTransport",
    "TransportBase",
    "TransportError",
    "TransportState",
    "UdpTransport",
    "SerialTransport",
    "TcpTransport",
    "create_transport",
    "transport_factory",
    # Telemetry
    "Freshness",
    "FieldGroup",
    "TelemetrySnapshot",
    "TelemetryUpdate",
    "TelemetrySubject",
    # Manager
    "CommManager",
    "ConnectionStatistics",
    "InboundMessage",
    "ProtocolTimeoutError",
    # Simulator
    "SimulatedTransport",
    "VehicleSimulator",
]
