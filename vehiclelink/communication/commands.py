"""
Outbound Commands

Typed command records handed to ``CommManager.send_command``. Each command
serialises into a COMMAND_LONG, SET_MODE or REQUEST_DATA_STREAM payload
addressed to a target system/component.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
import math
import struct

from .protocol import EncodeError, MessageId
from .messages import MavModeFlag


COMMAND_LONG_FORMAT = "<7fHBBB"
SET_MODE_FORMAT = "<IBB"
REQUEST_DATA_STREAM_FORMAT = "<HBBBB"

FORCE_ARM_MAGIC = 21196


class MavCmd(IntEnum):
    """MAV_CMD identifiers carried in COMMAND_LONG (subset)."""
    NAV_RETURN_TO_LAUNCH = 20
    NAV_LAND = 21
    NAV_TAKEOFF = 22
    DO_SET_MODE = 176
    COMPONENT_ARM_DISARM = 400
    SET_MESSAGE_INTERVAL = 511
    REQUEST_MESSAGE = 512


class DataStream(IntEnum):
    """Legacy REQUEST_DATA_STREAM stream ids."""
    ALL = 0
    RAW_SENSORS = 1
    EXTENDED_STATUS = 2
    RC_CHANNELS = 3
    RAW_CONTROLLER = 4
    POSITION = 6
    EXTRA1 = 10
    EXTRA2 = 11
    EXTRA3 = 12


def _check_target(target_system: int, target_component: int) -> None:
    if not 0 <= target_system <= 0xFF:
        raise EncodeError(f"target_system must fit in uint8, got {target_system}")
    if not 0 <= target_component <= 0xFF:
        raise EncodeError(f"target_component must fit in uint8, got {target_component}")


def command_long_payload(
    command: int,
    params: tuple[float, ...],
    target_system: int,
    target_component: int,
    confirmation: int = 0,
) -> bytes:
    """Pack a COMMAND_LONG payload (params are padded to seven floats)."""
    if len(params) > 7:
        raise EncodeError(f"COMMAND_LONG takes at most 7 params, got {len(params)}")
    _check_target(target_system, target_component)
    padded = tuple(float(p) for p in params) + (0.0,) * (7 - len(params))
    return struct.pack(COMMAND_LONG_FORMAT, *padded, int(command),
                       target_system, target_component, confirmation & 0xFF)


class Command(ABC):
    """Base class for typed outbound commands."""

    @abstractmethod
    def to_payload(self, target_system: int, target_component: int) -> tuple[int, bytes]:
        """
        Serialise the command.

        Returns:
            Tuple of (message id, payload bytes)

        Raises:
            EncodeError: If parameters are out of range
        """
        pass


class LongCommand(Command):
    """Command carried in COMMAND_LONG."""

    command_id: MavCmd

    def params(self) -> tuple[float, ...]:
        return ()

    def to_payload(self, target_system: int, target_component: int) -> tuple[int, bytes]:
        return MessageId.COMMAND_LONG, command_long_payload(
            self.command_id, self.params(), target_system, target_component
        )


@dataclass(frozen=True)
class ArmDisarm(LongCommand):
    """Arm or disarm the motors."""
    arm: bool
    force: bool = False

    command_id = MavCmd.COMPONENT_ARM_DISARM

    def params(self) -> tuple[float, ...]:
        return (1.0 if self.arm else 0.0, float(FORCE_ARM_MAGIC) if self.force else 0.0)


@dataclass(frozen=True)
class Takeoff(LongCommand):
    """Take off to ``altitude`` metres above home."""
    altitude: float
    yaw: float = math.nan

    command_id = MavCmd.NAV_TAKEOFF

    def params(self) -> tuple[float, ...]:
        if not self.altitude > 0:
            raise EncodeError(f"Takeoff altitude must be positive, got {self.altitude}")
        return (0.0, 0.0, 0.0, self.yaw, 0.0, 0.0, self.altitude)


@dataclass(frozen=True)
class Land(LongCommand):
    """Land at the current position."""

    command_id = MavCmd.NAV_LAND


@dataclass(frozen=True)
class ReturnToLaunch(LongCommand):
    """Return to the launch point."""

    command_id = MavCmd.NAV_RETURN_TO_LAUNCH


@dataclass(frozen=True)
class SetMessageInterval(LongCommand):
    """Ask for ``message_id`` every ``interval_us`` (-1 disables, 0 restores default)."""
    message_id: int
    interval_us: int

    command_id = MavCmd.SET_MESSAGE_INTERVAL

    def params(self) -> tuple[float, ...]:
        if self.interval_us < -1:
            raise EncodeError(f"Invalid message interval {self.interval_us}")
        return (float(self.message_id), float(self.interval_us))

    @classmethod
    def at_rate(cls, message_id: int, rate_hz: float) -> "SetMessageInterval":
        if rate_hz <= 0:
            return cls(message_id, -1)
        return cls(message_id, int(round(1_000_000 / rate_hz)))


@dataclass(frozen=True)
class RequestMessage(LongCommand):
    """Ask for a single instance of ``message_id``."""
    message_id: int

    command_id = MavCmd.REQUEST_MESSAGE

    def params(self) -> tuple[float, ...]:
        return (float(self.message_id),)


@dataclass(frozen=True)
class SetMode(Command):
    """Switch flight mode using SET_MODE."""
    custom_mode: int
    base_mode: MavModeFlag = MavModeFlag.CUSTOM_MODE_ENABLED

    def to_payload(self, target_system: int, target_component: int) -> tuple[int, bytes]:
        _check_target(target_system, target_component)
        if not 0 <= self.custom_mode <= 0xFFFFFFFF:
            raise EncodeError(f"custom_mode must fit in uint32, got {self.custom_mode}")
        payload = struct.pack(SET_MODE_FORMAT, self.custom_mode, target_system, int(self.base_mode))
        return MessageId.SET_MODE, payload


@dataclass(frozen=True)
class RequestDataStream(Command):
    """Legacy stream rate request used by older autopilots."""
    stream_id: DataStream
    rate_hz: int
    start: bool = True

    def to_payload(self, target_system: int, target_component: int) -> tuple[int, bytes]:
        _check_target(target_system, target_component)
        if not 0 <= self.rate_hz <= 0xFFFF:
            raise EncodeError(f"rate_hz must fit in uint16, got {self.rate_hz}")
        payload = struct.pack(
            REQUEST_DATA_STREAM_FORMAT,
            self.rate_hz, target_system, target_component,
            int(self.stream_id), 1 if self.start else 0,
        )
        return MessageId.REQUEST_DATA_STREAM, payload


def parse_command_long(payload: bytes) -> tuple[int, tuple[float, ...], int, int]:
    """
    Unpack a COMMAND_LONG payload (zero-extended if trimmed).

    Returns:
        Tuple of (command, params, target_system, target_component)
    """
    size = struct.calcsize(COMMAND_LONG_FORMAT)
    if len(payload) > size:
        payload = payload[:size]
    values = struct.unpack(COMMAND_LONG_FORMAT, payload.ljust(size, b"\x00"))
    return values[7], tuple(values[:7]), values[8], values[9]
