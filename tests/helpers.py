"""
Frame and message builders shared by the test modules.
"""

import struct

from vehiclelink.communication.decoder import encode_message
from vehiclelink.communication.messages import (
    Attitude,
    BatteryStatus,
    GlobalPositionInt,
    GpsFixType,
    GpsRawInt,
    Heartbeat,
    MavAutopilot,
    MavModeFlag,
    MavState,
    MavType,
    SensorFlags,
    SysStatus,
    VfrHud,
)
from vehiclelink.communication.protocol import frame_checksum, encode_frame


def vehicle_heartbeat(armed: bool = False, custom_mode: int = 0) -> Heartbeat:
    base_mode = MavModeFlag.CUSTOM_MODE_ENABLED
    if armed:
        base_mode |= MavModeFlag.SAFETY_ARMED
    return Heartbeat(
        vehicle_type=MavType.QUADROTOR,
        autopilot=MavAutopilot.ARDUPILOTMEGA,
        base_mode=base_mode,
        custom_mode=custom_mode,
        system_status=MavState.STANDBY,
    )


def gcs_heartbeat() -> Heartbeat:
    return Heartbeat(
        vehicle_type=MavType.GCS,
        autopilot=MavAutopilot.INVALID,
        base_mode=MavModeFlag.NONE,
        custom_mode=0,
        system_status=MavState.ACTIVE,
    )


def message_frame(message, sequence: int = 0, system_id: int = 1, component_id: int = 1,
                  version: int = 2) -> bytes:
    """Wire bytes for a decoded message record."""
    msg_id, payload = encode_message(message)
    return encode_frame(msg_id, payload, sequence=sequence, system_id=system_id,
                        component_id=component_id, version=version)


def raw_v2_frame(msg_id: int, payload: bytes, crc_extra: int, incompat: int = 0,
                 sequence: int = 0, signature: bytes = b"") -> bytes:
    """Hand-built v2 frame, for ids or flags ``encode_frame`` refuses."""
    header = struct.pack("<BBBBBBB", 0xFD, len(payload), incompat, 0, sequence, 1, 1)
    header += struct.pack("<I", msg_id)[:3]
    crc = frame_checksum(header[1:], payload, crc_extra)
    return header + payload + struct.pack("<H", crc) + signature


def sample_messages() -> list:
    """One message per telemetry group."""
    return [
        vehicle_heartbeat(armed=True, custom_mode=5),
        SysStatus(
            sensors_present=SensorFlags.GYRO_3D | SensorFlags.GPS,
            sensors_enabled=SensorFlags.GYRO_3D | SensorFlags.GPS,
            sensors_health=SensorFlags.GYRO_3D,
            load_pct=25.0,
            voltage=16.2,
            current=3.5,
            battery_remaining=80,
            drop_rate_comm_pct=0.0,
            errors_comm=0,
        ),
        BatteryStatus(
            battery_id=0,
            battery_function=0,
            battery_type=1,
            temperature=None,
            cell_voltages=(4.0, 4.0, 4.0, 4.0),
            current=3.5,
            current_consumed_mah=120,
            energy_consumed_hj=None,
            remaining_pct=80,
        ),
        GpsRawInt(
            time_usec=1000,
            fix_type=GpsFixType.FIX_3D,
            lat=47.3977419,
            lon=8.5455938,
            alt=488.0,
            eph=1.2,
            epv=1.8,
            ground_speed=0.5,
            course=90.0,
            satellites_visible=12,
        ),
        Attitude(time_boot_ms=100, roll=0.5, pitch=-0.25, yaw=1.0,
                 roll_speed=0.0, pitch_speed=0.0, yaw_speed=0.125),
        GlobalPositionInt(time_boot_ms=100, lat=47.3977419, lon=8.5455938, alt=498.0,
                          relative_alt=10.0, vx=1.0, vy=0.0, vz=-0.5, heading=90.0),
        VfrHud(airspeed=2.5, ground_speed=2.0, heading=90, throttle=40, alt=498.0, climb=0.5),
    ]
