"""
Decoded Message Types

Typed records produced by the decoder, one per supported message id.
All values are in semantic units:

- voltages in volts, currents in amps
- latitude/longitude in degrees, altitudes in metres
- speeds in metres/second, headings/courses in degrees
- attitude angles and rates in radians (per wire format)
"""

from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import ClassVar, Optional, Union

from .protocol import MessageId


class MavType(IntEnum):
    """Vehicle type (subset)."""
    GENERIC = 0
    FIXED_WING = 1
    QUADROTOR = 2
    COAXIAL = 3
    HELICOPTER = 4
    ANTENNA_TRACKER = 5
    GCS = 6
    GROUND_ROVER = 10
    SURFACE_BOAT = 11
    SUBMARINE = 12
    HEXAROTOR = 13
    OCTOROTOR = 14
    TRICOPTER = 15
    VTOL_TAILSITTER_DUOROTOR = 19
    VTOL_TILTROTOR = 21


class MavAutopilot(IntEnum):
    """Autopilot firmware family (subset)."""
    GENERIC = 0
    SLUGS = 2
    ARDUPILOTMEGA = 3
    OPENPILOT = 4
    INVALID = 8
    PX4 = 12


class MavState(IntEnum):
    """System state reported in HEARTBEAT."""
    UNINIT = 0
    BOOT = 1
    CALIBRATING = 2
    STANDBY = 3
    ACTIVE = 4
    CRITICAL = 5
    EMERGENCY = 6
    POWEROFF = 7
    FLIGHT_TERMINATION = 8


class MavModeFlag(IntFlag):
    """HEARTBEAT base_mode bits."""
    NONE = 0
    CUSTOM_MODE_ENABLED = 1 << 0
    TEST_ENABLED = 1 << 1
    AUTO_ENABLED = 1 << 2
    GUIDED_ENABLED = 1 << 3
    STABILIZE_ENABLED = 1 << 4
    HIL_ENABLED = 1 << 5
    MANUAL_INPUT_ENABLED = 1 << 6
    SAFETY_ARMED = 1 << 7


class GpsFixType(IntEnum):
    """GPS fix quality."""
    NO_GPS = 0
    NO_FIX = 1
    FIX_2D = 2
    FIX_3D = 3
    DGPS = 4
    RTK_FLOAT = 5
    RTK_FIXED = 6
    STATIC = 7
    PPP = 8


class MavResult(IntEnum):
    """COMMAND_ACK result codes."""
    ACCEPTED = 0
    TEMPORARILY_REJECTED = 1
    DENIED = 2
    UNSUPPORTED = 3
    FAILED = 4
    IN_PROGRESS = 5
    CANCELLED = 6


class MavSeverity(IntEnum):
    """STATUSTEXT severity (syslog levels)."""
    EMERGENCY = 0
    ALERT = 1
    CRITICAL = 2
    ERROR = 3
    WARNING = 4
    NOTICE = 5
    INFO = 6
    DEBUG = 7


class SensorFlags(IntFlag):
    """SYS_STATUS onboard control sensor bits (subset)."""
    NONE = 0
    GYRO_3D = 1 << 0
    ACCEL_3D = 1 << 1
    MAG_3D = 1 << 2
    ABSOLUTE_PRESSURE = 1 << 3
    DIFFERENTIAL_PRESSURE = 1 << 4
    GPS = 1 << 5
    OPTICAL_FLOW = 1 << 6
    VISION_POSITION = 1 << 7
    LASER_POSITION = 1 << 8
    EXTERNAL_GROUND_TRUTH = 1 << 9
    ANGULAR_RATE_CONTROL = 1 << 10
    ATTITUDE_STABILIZATION = 1 << 11
    YAW_POSITION = 1 << 12
    Z_ALTITUDE_CONTROL = 1 << 13
    XY_POSITION_CONTROL = 1 << 14
    MOTOR_OUTPUTS = 1 << 15
    RC_RECEIVER = 1 << 16
    BATTERY = 1 << 25


@dataclass(frozen=True)
class Heartbeat:
    """HEARTBEAT (#0)."""
    MSG_ID: ClassVar[int] = MessageId.HEARTBEAT

    vehicle_type: Union[MavType, int]
    autopilot: Union[MavAutopilot, int]
    base_mode: MavModeFlag
    custom_mode: int
    system_status: Union[MavState, int]
    mavlink_version: int = 3

    @property
    def armed(self) -> bool:
        return bool(self.base_mode & MavModeFlag.SAFETY_ARMED)

    @property
    def is_ground_station(self) -> bool:
        return self.vehicle_type == MavType.GCS


@dataclass(frozen=True)
class SysStatus:
    """SYS_STATUS (#1)."""
    MSG_ID: ClassVar[int] = MessageId.SYS_STATUS

    sensors_present: SensorFlags
    sensors_enabled: SensorFlags
    sensors_health: SensorFlags
    load_pct: float
    voltage: Optional[float]
    current: Optional[float]
    battery_remaining: Optional[int]
    drop_rate_comm_pct: float
    errors_comm: int
    errors_count: tuple[int, int, int, int] = (0, 0, 0, 0)

    @property
    def unhealthy_sensors(self) -> SensorFlags:
        """Enabled sensors that report unhealthy."""
        return SensorFlags(self.sensors_enabled & ~self.sensors_health & self.sensors_present)


@dataclass(frozen=True)
class GpsRawInt:
    """GPS_RAW_INT (#24)."""
    MSG_ID: ClassVar[int] = MessageId.GPS_RAW_INT

    time_usec: int
    fix_type: Union[GpsFixType, int]
    lat: float
    lon: float
    alt: float
    eph: Optional[float]
    epv: Optional[float]
    ground_speed: Optional[float]
    course: Optional[float]
    satellites_visible: Optional[int]


@dataclass(frozen=True)
class Attitude:
    """ATTITUDE (#30)."""
    MSG_ID: ClassVar[int] = MessageId.ATTITUDE

    time_boot_ms: int
    roll: float
    pitch: float
    yaw: float
    roll_speed: float
    pitch_speed: float
    yaw_speed: float


@dataclass(frozen=True)
class LocalPositionNed:
    """LOCAL_POSITION_NED (#32)."""
    MSG_ID: ClassVar[int] = MessageId.LOCAL_POSITION_NED

    time_boot_ms: int
    x: float
    y: float
    z: float
    vx: float
    vy: float
    vz: float


@dataclass(frozen=True)
class GlobalPositionInt:
    """GLOBAL_POSITION_INT (#33)."""
    MSG_ID: ClassVar[int] = MessageId.GLOBAL_POSITION_INT

    time_boot_ms: int
    lat: float
    lon: float
    alt: float
    relative_alt: float
    vx: float
    vy: float
    vz: float
    heading: Optional[float]


@dataclass(frozen=True)
class VfrHud:
    """VFR_HUD (#74)."""
    MSG_ID: ClassVar[int] = MessageId.VFR_HUD

    airspeed: float
    ground_speed: float
    heading: int
    throttle: int
    alt: float
    climb: float


@dataclass(frozen=True)
class CommandAck:
    """COMMAND_ACK (#77)."""
    MSG_ID: ClassVar[int] = MessageId.COMMAND_ACK

    command: int
    result: Union[MavResult, int]

    @property
    def accepted(self) -> bool:
        return self.result == MavResult.ACCEPTED


@dataclass(frozen=True)
class Altitude:
    """ALTITUDE (#141)."""
    MSG_ID: ClassVar[int] = MessageId.ALTITUDE

    time_usec: int
    altitude_monotonic: float
    altitude_amsl: float
    altitude_local: float
    altitude_relative: float
    altitude_terrain: float
    bottom_clearance: float


@dataclass(frozen=True)
class BatteryStatus:
    """BATTERY_STATUS (#147)."""
    MSG_ID: ClassVar[int] = MessageId.BATTERY_STATUS

    battery_id: int
    battery_function: int
    battery_type: int
    temperature: Optional[float]
    cell_voltages: tuple[float, ...]
    current: Optional[float]
    current_consumed_mah: Optional[int]
    energy_consumed_hj: Optional[int]
    remaining_pct: Optional[int]

    @property
    def voltage(self) -> Optional[float]:
        """Pack voltage (sum of reported cells)."""
        if not self.cell_voltages:
            return None
        return round(sum(self.cell_voltages), 3)


@dataclass(frozen=True)
class StatusText:
    """STATUSTEXT (#253)."""
    MSG_ID: ClassVar[int] = MessageId.STATUSTEXT

    severity: Union[MavSeverity, int]
    text: str


DecodedMessage = Union[
    Heartbeat,
    SysStatus,
    GpsRawInt,
    Attitude,
    LocalPositionNed,
    GlobalPositionInt,
    VfrHud,
    CommandAck,
    Altitude,
    BatteryStatus,
    StatusText,
]
