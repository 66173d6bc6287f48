"""
Message Decoder

Maps a frame's message id to a typed payload record. Each supported id has
a fixed little-endian field layout and a scaling step from raw wire units
into semantic units. ``encode_message`` is the inverse, used for outbound
traffic and by the vehicle simulator.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional
import struct

from .protocol import EncodeError, Frame
from .messages import (
    Altitude,
    Attitude,
    BatteryStatus,
    CommandAck,
    DecodedMessage,
    GlobalPositionInt,
    GpsFixType,
    GpsRawInt,
    Heartbeat,
    LocalPositionNed,
    MavAutopilot,
    MavModeFlag,
    MavResult,
    MavSeverity,
    MavState,
    MavType,
    SensorFlags,
    StatusText,
    SysStatus,
    VfrHud,
)


UINT8_MAX = 0xFF
UINT16_MAX = 0xFFFF
INT16_MAX = 0x7FFF
STATUSTEXT_LEN = 50
BATTERY_CELLS = 10


class DecodeError(Exception):
    """Base class for payload decoding errors."""

    def __init__(self, message: str, msg_id: Optional[int] = None):
        super().__init__(message)
        self.msg_id = msg_id


class UnknownMessageIdError(DecodeError):
    """No decoder is registered for the frame's message id."""

    def __init__(self, msg_id: int):
        super().__init__(f"Unknown message id: {msg_id}", msg_id)


class PayloadLengthMismatchError(DecodeError):
    """Payload length does not fit the message's wire layout."""

    def __init__(self, msg_id: int, expected: int, actual: int):
        super().__init__(
            f"Payload length mismatch for message {msg_id}: expected {expected}, got {actual}",
            msg_id,
        )
        self.expected = expected
        self.actual = actual


def _enum(enum_cls, value: int):
    """Map a raw code onto an enum, keeping unknown codes as plain ints."""
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _scaled(raw: int, scale: float, missing: Optional[int] = None) -> Optional[float]:
    if missing is not None and raw == missing:
        return None
    return raw / scale


def _unscaled(value: Optional[float], scale: float, missing: int) -> int:
    if value is None:
        return missing
    return int(round(value * scale))


# ============================================================================
# Per-message field conversion (raw tuple <-> record)
# ============================================================================

def _heartbeat_from(f: tuple) -> Heartbeat:
    custom_mode, vtype, autopilot, base_mode, status, version = f
    return Heartbeat(
        vehicle_type=_enum(MavType, vtype),
        autopilot=_enum(MavAutopilot, autopilot),
        base_mode=MavModeFlag(base_mode),
        custom_mode=custom_mode,
        system_status=_enum(MavState, status),
        mavlink_version=version,
    )


def _heartbeat_to(m: Heartbeat) -> tuple:
    return (m.custom_mode, int(m.vehicle_type), int(m.autopilot), int(m.base_mode),
            int(m.system_status), m.mavlink_version)


def _sys_status_from(f: tuple) -> SysStatus:
    (present, enabled, health, load, voltage_mv, current_ca, drop_rate,
     errors_comm, e1, e2, e3, e4, remaining) = f
    return SysStatus(
        sensors_present=SensorFlags(present),
        sensors_enabled=SensorFlags(enabled),
        sensors_health=SensorFlags(health),
        load_pct=load / 10.0,
        voltage=_scaled(voltage_mv, 1000.0, UINT16_MAX),
        current=_scaled(current_ca, 100.0, -1),
        battery_remaining=None if remaining == -1 else remaining,
        drop_rate_comm_pct=drop_rate / 100.0,
        errors_comm=errors_comm,
        errors_count=(e1, e2, e3, e4),
    )


def _sys_status_to(m: SysStatus) -> tuple:
    return (
        int(m.sensors_present), int(m.sensors_enabled), int(m.sensors_health),
        int(round(m.load_pct * 10)),
        _unscaled(m.voltage, 1000.0, UINT16_MAX),
        _unscaled(m.current, 100.0, -1),
        int(round(m.drop_rate_comm_pct * 100)),
        m.errors_comm,
        *m.errors_count,
        -1 if m.battery_remaining is None else m.battery_remaining,
    )


def _gps_raw_from(f: tuple) -> GpsRawInt:
    time_usec, lat, lon, alt_mm, eph, epv, vel, cog, fix_type, sats = f
    return GpsRawInt(
        time_usec=time_usec,
        fix_type=_enum(GpsFixType, fix_type),
        lat=lat / 1e7,
        lon=lon / 1e7,
        alt=alt_mm / 1000.0,
        eph=_scaled(eph, 100.0, UINT16_MAX),
        epv=_scaled(epv, 100.0, UINT16_MAX),
        ground_speed=_scaled(vel, 100.0, UINT16_MAX),
        course=_scaled(cog, 100.0, UINT16_MAX),
        satellites_visible=None if sats == UINT8_MAX else sats,
    )


def _gps_raw_to(m: GpsRawInt) -> tuple:
    return (
        m.time_usec,
        int(round(m.lat * 1e7)),
        int(round(m.lon * 1e7)),
        int(round(m.alt * 1000)),
        _unscaled(m.eph, 100.0, UINT16_MAX),
        _unscaled(m.epv, 100.0, UINT16_MAX),
        _unscaled(m.ground_speed, 100.0, UINT16_MAX),
        _unscaled(m.course, 100.0, UINT16_MAX),
        int(m.fix_type),
        UINT8_MAX if m.satellites_visible is None else m.satellites_visible,
    )


def _attitude_from(f: tuple) -> Attitude:
    return Attitude(*f)


def _attitude_to(m: Attitude) -> tuple:
    return (m.time_boot_ms, m.roll, m.pitch, m.yaw, m.roll_speed, m.pitch_speed, m.yaw_speed)


def _local_position_from(f: tuple) -> LocalPositionNed:
    return LocalPositionNed(*f)


def _local_position_to(m: LocalPositionNed) -> tuple:
    return (m.time_boot_ms, m.x, m.y, m.z, m.vx, m.vy, m.vz)


def _global_position_from(f: tuple) -> GlobalPositionInt:
    time_boot_ms, lat, lon, alt_mm, rel_mm, vx, vy, vz, hdg = f
    return GlobalPositionInt(
        time_boot_ms=time_boot_ms,
        lat=lat / 1e7,
        lon=lon / 1e7,
        alt=alt_mm / 1000.0,
        relative_alt=rel_mm / 1000.0,
        vx=vx / 100.0,
        vy=vy / 100.0,
        vz=vz / 100.0,
        heading=_scaled(hdg, 100.0, UINT16_MAX),
    )


def _global_position_to(m: GlobalPositionInt) -> tuple:
    return (
        m.time_boot_ms,
        int(round(m.lat * 1e7)),
        int(round(m.lon * 1e7)),
        int(round(m.alt * 1000)),
        int(round(m.relative_alt * 1000)),
        int(round(m.vx * 100)),
        int(round(m.vy * 100)),
        int(round(m.vz * 100)),
        _unscaled(m.heading, 100.0, UINT16_MAX),
    )


def _vfr_hud_from(f: tuple) -> VfrHud:
    airspeed, groundspeed, alt, climb, heading, throttle = f
    return VfrHud(airspeed=airspeed, ground_speed=groundspeed, heading=heading,
                  throttle=throttle, alt=alt, climb=climb)


def _vfr_hud_to(m: VfrHud) -> tuple:
    return (m.airspeed, m.ground_speed, m.alt, m.climb, m.heading, m.throttle)


def _command_ack_from(f: tuple) -> CommandAck:
    command, result = f
    return CommandAck(command=command, result=_enum(MavResult, result))


def _command_ack_to(m: CommandAck) -> tuple:
    return (m.command, int(m.result))


def _altitude_from(f: tuple) -> Altitude:
    return Altitude(*f)


def _altitude_to(m: Altitude) -> tuple:
    return (m.time_usec, m.altitude_monotonic, m.altitude_amsl, m.altitude_local,
            m.altitude_relative, m.altitude_terrain, m.bottom_clearance)


def _battery_from(f: tuple) -> BatteryStatus:
    consumed, energy, temperature = f[0:3]
    voltages = f[3:3 + BATTERY_CELLS]
    current_ca, battery_id, function, btype, remaining = f[3 + BATTERY_CELLS:]
    return BatteryStatus(
        battery_id=battery_id,
        battery_function=function,
        battery_type=btype,
        temperature=_scaled(temperature, 100.0, INT16_MAX),
        cell_voltages=tuple(v / 1000.0 for v in voltages if v != UINT16_MAX),
        current=_scaled(current_ca, 100.0, -1),
        current_consumed_mah=None if consumed == -1 else consumed,
        energy_consumed_hj=None if energy == -1 else energy,
        remaining_pct=None if remaining == -1 else remaining,
    )


def _battery_to(m: BatteryStatus) -> tuple:
    cells = [int(round(v * 1000)) for v in m.cell_voltages[:BATTERY_CELLS]]
    cells += [UINT16_MAX] * (BATTERY_CELLS - len(cells))
    return (
        -1 if m.current_consumed_mah is None else m.current_consumed_mah,
        -1 if m.energy_consumed_hj is None else m.energy_consumed_hj,
        _unscaled(m.temperature, 100.0, INT16_MAX),
        *cells,
        _unscaled(m.current, 100.0, -1),
        m.battery_id,
        m.battery_function,
        m.battery_type,
        -1 if m.remaining_pct is None else m.remaining_pct,
    )


def _status_text_from(f: tuple) -> StatusText:
    severity, raw = f
    text = raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace")
    return StatusText(severity=_enum(MavSeverity, severity), text=text)


def _status_text_to(m: StatusText) -> tuple:
    return (int(m.severity), m.text.encode("utf-8")[:STATUSTEXT_LEN])


# ============================================================================
# Dispatch table
# ============================================================================

@dataclass(frozen=True)
class MessageLayout:
    """Wire layout of one message id."""
    msg_type: type
    fmt: str
    from_fields: Callable[[tuple], Any]
    to_fields: Callable[[Any], tuple]

    @property
    def length(self) -> int:
        return struct.calcsize(self.fmt)


MESSAGE_LAYOUTS: dict[int, MessageLayout] = {
    layout.msg_type.MSG_ID: layout
    for layout in (
        MessageLayout(Heartbeat, "<IBBBBB", _heartbeat_from, _heartbeat_to),
        MessageLayout(SysStatus, "<IIIHHhHHHHHHb", _sys_status_from, _sys_status_to),
        MessageLayout(GpsRawInt, "<QiiiHHHHBB", _gps_raw_from, _gps_raw_to),
        MessageLayout(Attitude, "<I6f", _attitude_from, _attitude_to),
        MessageLayout(LocalPositionNed, "<I6f", _local_position_from, _local_position_to),
        MessageLayout(GlobalPositionInt, "<IiiiihhhH", _global_position_from, _global_position_to),
        MessageLayout(VfrHud, "<ffffhH", _vfr_hud_from, _vfr_hud_to),
        MessageLayout(CommandAck, "<HB", _command_ack_from, _command_ack_to),
        MessageLayout(Altitude, "<Q6f", _altitude_from, _altitude_to),
        MessageLayout(BatteryStatus, "<iih10HhBBBb", _battery_from, _battery_to),
        MessageLayout(StatusText, f"<B{STATUSTEXT_LEN}s", _status_text_from, _status_text_to),
    )
}


def supported_message_ids() -> frozenset[int]:
    """Message ids ``decode`` understands."""
    return frozenset(MESSAGE_LAYOUTS)


def _normalised_payload(frame: Frame, expected: int) -> bytes:
    payload = frame.payload
    actual = len(payload)
    if frame.version == 1:
        if actual != expected:
            raise PayloadLengthMismatchError(frame.msg_id, expected, actual)
        return payload
    if actual == 0:
        raise PayloadLengthMismatchError(frame.msg_id, expected, actual)
    if actual < expected:
        # Trailing zero bytes were trimmed by the sender
        return payload + bytes(expected - actual)
    # Longer payloads carry extension fields we don't decode
    return payload[:expected]


def decode(frame: Frame) -> DecodedMessage:
    """
    Decode a frame's payload into its typed record.

    Args:
        frame: Checksum-validated frame

    Returns:
        One of the DecodedMessage records

    Raises:
        UnknownMessageIdError: If no decoder exists for the message id
        PayloadLengthMismatchError: If the payload does not fit the layout
    """
    layout = MESSAGE_LAYOUTS.get(frame.msg_id)
    if layout is None:
        raise UnknownMessageIdError(frame.msg_id)

    payload = _normalised_payload(frame, layout.length)
    return layout.from_fields(struct.unpack(layout.fmt, payload))


def encode_message(message: DecodedMessage) -> tuple[int, bytes]:
    """
    Pack a message record into its wire payload.

    Returns:
        Tuple of (message id, payload bytes)

    Raises:
        EncodeError: If the record type is unknown or a field is out of range
    """
    layout = MESSAGE_LAYOUTS.get(getattr(message, "MSG_ID", -1))
    if layout is None or not isinstance(message, layout.msg_type):
        raise EncodeError(f"Cannot encode {type(message).__name__}")
    try:
        payload = struct.pack(layout.fmt, *layout.to_fields(message))
    except struct.error as e:
        raise EncodeError(f"{type(message).__name__}: {e}") from e
    return layout.msg_type.MSG_ID, payload
