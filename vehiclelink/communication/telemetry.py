"""
Telemetry Data Structures

The aggregated view of a vehicle: six field groups, each holding the latest
merged value and when it was last updated. Snapshots are frozen so
consumers can't mutate what they receive.

Freshness per group:

- NEVER_RECEIVED: no message for the group has arrived
- FRESH: updated within the group's staleness threshold
- STALE: older than the threshold; the last value is kept
"""

from dataclasses import dataclass, field, replace
from enum import Enum, auto
import math
from typing import TYPE_CHECKING, Any, Dict, Generic, Optional, TypeVar, Union

from .messages import (
    Altitude,
    Attitude,
    BatteryStatus,
    DecodedMessage,
    GlobalPositionInt,
    GpsFixType,
    GpsRawInt,
    Heartbeat,
    LocalPositionNed,
    MavAutopilot,
    MavModeFlag,
    MavState,
    MavType,
    SensorFlags,
    SysStatus,
    VfrHud,
)

if TYPE_CHECKING:
    from .comm_manager import ConnectionStatistics


T = TypeVar("T")


class Freshness(Enum):
    """Freshness of a field group."""
    NEVER_RECEIVED = auto()
    FRESH = auto()
    STALE = auto()


@dataclass(frozen=True)
class FieldGroup(Generic[T]):
    """Latest value of one field group plus its freshness bookkeeping."""
    value: Optional[T] = None
    updated_at: Optional[float] = None  # monotonic seconds
    stale: bool = False

    @property
    def received(self) -> bool:
        return self.updated_at is not None

    @property
    def freshness(self) -> Freshness:
        if self.updated_at is None:
            return Freshness.NEVER_RECEIVED
        return Freshness.STALE if self.stale else Freshness.FRESH

    def age(self, now: float) -> Optional[float]:
        """Seconds since the last update, or None if never received."""
        if self.updated_at is None:
            return None
        return max(now - self.updated_at, 0.0)

    def with_staleness(self, now: float, threshold: float) -> "FieldGroup[T]":
        """Copy with ``stale`` recomputed against ``threshold``."""
        if self.updated_at is None:
            return self
        stale = now - self.updated_at > threshold
        return self if stale == self.stale else replace(self, stale=stale)


# ============================================================================
# Group value types
# ============================================================================

@dataclass(frozen=True)
class BatteryState:
    voltage: Optional[float] = None
    current: Optional[float] = None
    remaining_pct: Optional[int] = None
    cell_voltages: tuple = ()
    temperature: Optional[float] = None
    consumed_mah: Optional[int] = None


@dataclass(frozen=True)
class GpsState:
    fix_type: Union[GpsFixType, int] = GpsFixType.NO_GPS
    lat: Optional[float] = None
    lon: Optional[float] = None
    alt: Optional[float] = None
    eph: Optional[float] = None
    epv: Optional[float] = None
    ground_speed: Optional[float] = None
    course: Optional[float] = None
    satellites_visible: Optional[int] = None

    @property
    def has_fix(self) -> bool:
        return int(self.fix_type) >= GpsFixType.FIX_2D


@dataclass(frozen=True)
class AttitudeState:
    """Attitude in radians and radians/second."""
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0
    roll_speed: float = 0.0
    pitch_speed: float = 0.0
    yaw_speed: float = 0.0

    @property
    def roll_deg(self) -> float:
        return math.degrees(self.roll)

    @property
    def pitch_deg(self) -> float:
        return math.degrees(self.pitch)

    @property
    def yaw_deg(self) -> float:
        return math.degrees(self.yaw) % 360.0


@dataclass(frozen=True)
class AltitudeState:
    """Altitudes in metres."""
    amsl: Optional[float] = None
    relative: Optional[float] = None
    local: Optional[float] = None
    terrain: Optional[float] = None
    bottom_clearance: Optional[float] = None


@dataclass(frozen=True)
class VelocityState:
    """NED velocity components and speeds in metres/second."""
    vx: Optional[float] = None
    vy: Optional[float] = None
    vz: Optional[float] = None
    ground_speed: Optional[float] = None
    airspeed: Optional[float] = None
    climb_rate: Optional[float] = None

    @property
    def horizontal_speed(self) -> Optional[float]:
        if self.vx is None or self.vy is None:
            return None
        return math.hypot(self.vx, self.vy)


@dataclass(frozen=True)
class SystemStatusState:
    vehicle_type: Union[MavType, int, None] = None
    autopilot: Union[MavAutopilot, int, None] = None
    base_mode: MavModeFlag = MavModeFlag.NONE
    custom_mode: int = 0
    state: Union[MavState, int, None] = None
    armed: bool = False
    sensors_present: SensorFlags = SensorFlags.NONE
    sensors_enabled: SensorFlags = SensorFlags.NONE
    sensors_health: SensorFlags = SensorFlags.NONE
    load_pct: Optional[float] = None
    voltage: Optional[float] = None
    current: Optional[float] = None
    battery_remaining: Optional[int] = None
    drop_rate_comm_pct: Optional[float] = None

    @property
    def unhealthy_sensors(self) -> SensorFlags:
        return SensorFlags(self.sensors_enabled & ~self.sensors_health & self.sensors_present)


# ============================================================================
# Message -> group merging
# ============================================================================

GROUP_NAMES = ("battery", "gps", "attitude", "altitude", "velocity", "system_status")

GROUP_FOR_MESSAGE: Dict[type, str] = {
    Heartbeat: "system_status",
    SysStatus: "system_status",
    BatteryStatus: "battery",
    GpsRawInt: "gps",
    Attitude: "attitude",
    GlobalPositionInt: "altitude",
    Altitude: "altitude",
    LocalPositionNed: "velocity",
    VfrHud: "velocity",
}

_EMPTY_STATES = {
    "battery": BatteryState,
    "gps": GpsState,
    "attitude": AttitudeState,
    "altitude": AltitudeState,
    "velocity": VelocityState,
    "system_status": SystemStatusState,
}


def group_for(message: DecodedMessage) -> Optional[str]:
    """Field group a message feeds, or None if it feeds none."""
    return GROUP_FOR_MESSAGE.get(type(message))


def merge_message(previous: Optional[Any], message: DecodedMessage) -> Any:
    """
    Fold ``message`` into the previous value of its group.

    Fields the message doesn't carry keep their previous value.
    """
    group = group_for(message)
    if group is None:
        raise ValueError(f"{type(message).__name__} does not feed a telemetry group")
    base = previous if previous is not None else _EMPTY_STATES[group]()

    if isinstance(message, Heartbeat):
        return replace(
            base,
            vehicle_type=message.vehicle_type,
            autopilot=message.autopilot,
            base_mode=message.base_mode,
            custom_mode=message.custom_mode,
            state=message.system_status,
            armed=message.armed,
        )
    if isinstance(message, SysStatus):
        return replace(
            base,
            sensors_present=message.sensors_present,
            sensors_enabled=message.sensors_enabled,
            sensors_health=message.sensors_health,
            load_pct=message.load_pct,
            voltage=message.voltage,
            current=message.current,
            battery_remaining=message.battery_remaining,
            drop_rate_comm_pct=message.drop_rate_comm_pct,
        )
    if isinstance(message, BatteryStatus):
        return replace(
            base,
            voltage=message.voltage,
            current=message.current,
            remaining_pct=message.remaining_pct,
            cell_voltages=message.cell_voltages,
            temperature=message.temperature,
            consumed_mah=message.current_consumed_mah,
        )
    if isinstance(message, GpsRawInt):
        return GpsState(
            fix_type=message.fix_type,
            lat=message.lat,
            lon=message.lon,
            alt=message.alt,
            eph=message.eph,
            epv=message.epv,
            ground_speed=message.ground_speed,
            course=message.course,
            satellites_visible=message.satellites_visible,
        )
    if isinstance(message, Attitude):
        return AttitudeState(
            message.roll, message.pitch, message.yaw,
            message.roll_speed, message.pitch_speed, message.yaw_speed,
        )
    if isinstance(message, GlobalPositionInt):
        return replace(base, amsl=message.alt, relative=message.relative_alt)
    if isinstance(message, Altitude):
        return replace(
            base,
            amsl=message.altitude_amsl,
            relative=message.altitude_relative,
            local=message.altitude_local,
            terrain=message.altitude_terrain,
            bottom_clearance=message.bottom_clearance,
        )
    if isinstance(message, LocalPositionNed):
        return replace(base, vx=message.vx, vy=message.vy, vz=message.vz)
    # VfrHud
    return replace(
        base,
        ground_speed=message.ground_speed,
        airspeed=message.airspeed,
        climb_rate=message.climb,
    )


# ============================================================================
# Snapshot
# ============================================================================

@dataclass(frozen=True)
class TelemetrySnapshot:
    """Latest known value per field group, as emitted on each tick."""
    battery: FieldGroup[BatteryState] = field(default_factory=FieldGroup)
    gps: FieldGroup[GpsState] = field(default_factory=FieldGroup)
    attitude: FieldGroup[AttitudeState] = field(default_factory=FieldGroup)
    altitude: FieldGroup[AltitudeState] = field(default_factory=FieldGroup)
    velocity: FieldGroup[VelocityState] = field(default_factory=FieldGroup)
    system_status: FieldGroup[SystemStatusState] = field(default_factory=FieldGroup)
    timestamp: float = 0.0
    tick: int = 0
    system_id: Optional[int] = None

    def group(self, name: str) -> FieldGroup:
        if name not in GROUP_NAMES:
            raise KeyError(name)
        return getattr(self, name)

    def freshness(self) -> Dict[str, Freshness]:
        return {name: self.group(name).freshness for name in GROUP_NAMES}

    def stale_groups(self) -> list:
        return [name for name in GROUP_NAMES if self.group(name).stale]


@dataclass(frozen=True)
class TelemetryUpdate:
    """What subscribers receive on every aggregation tick."""
    snapshot: TelemetrySnapshot
    statistics: Optional["ConnectionStatistics"] = None
