"""
Vehicle Simulator
Simulates a vehicle autopilot for testing the link layer without hardware.

Implements:
- Periodic telemetry (HEARTBEAT, SYS_STATUS, GPS_RAW_INT, ATTITUDE,
  GLOBAL_POSITION_INT, LOCAL_POSITION_NED, VFR_HUD, BATTERY_STATUS)
- COMMAND_LONG handling with COMMAND_ACK responses
- SET_MODE handling
- A substitutable transport (SimulatedTransport) and a UDP streaming loop
"""

import asyncio
import math
import struct
import time
import logging
from typing import Any, Optional
from dataclasses import dataclass, field

from .protocol import Frame, MessageId, encode_frame
from .frame_parser import FrameParser
from .decoder import encode_message
from .commands import FORCE_ARM_MAGIC, MavCmd, SET_MODE_FORMAT, parse_command_long
from .messages import (
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
from .transport_base import TransportBase, TransportInfo, TransportError, WouldBlockError
from .udp_transport import UdpTransport
from ..utils.config import UdpConfig

logger = logging.getLogger(__name__)


SIM_SENSORS = (SensorFlags.GYRO_3D | SensorFlags.ACCEL_3D | SensorFlags.MAG_3D
               | SensorFlags.ABSOLUTE_PRESSURE | SensorFlags.GPS | SensorFlags.BATTERY)

CELL_COUNT = 4
CELL_FULL_V = 4.2
CELL_EMPTY_V = 3.3


@dataclass
class SimulatorState:
    """Complete simulator state."""
    system_id: int = 1
    component_id: int = 1
    vehicle_type: MavType = MavType.QUADROTOR
    autopilot: MavAutopilot = MavAutopilot.ARDUPILOTMEGA
    custom_mode: int = 0
    armed: bool = False
    system_status: MavState = MavState.STANDBY

    home_lat: float = 47.397742
    home_lon: float = 8.545594
    home_alt: float = 488.0
    relative_alt: float = 0.0
    target_alt: float = 0.0
    landing: bool = False
    north: float = 0.0
    east: float = 0.0
    yaw: float = 0.0

    battery_remaining: int = 100
    current: float = 0.5
    satellites: int = 12

    sequence: int = 0
    boot_time: float = field(default_factory=time.monotonic)

    @property
    def time_boot_ms(self) -> int:
        return int((time.monotonic() - self.boot_time) * 1000) & 0xFFFFFFFF

    @property
    def cell_voltage(self) -> float:
        return round(CELL_EMPTY_V + (CELL_FULL_V - CELL_EMPTY_V) * self.battery_remaining / 100.0, 3)


class VehicleSimulator:
    """
    Vehicle simulator.

    ``tick()`` advances the simulated flight and returns the telemetry frames
    for that step; ``handle_bytes()`` consumes frames sent by a ground station
    and returns the response frames.
    """

    def __init__(self, state: Optional[SimulatorState] = None, version: int = 2, rate_hz: float = 10.0):
        self.state = state or SimulatorState()
        self.version = version
        self.rate_hz = rate_hz
        self._parser = FrameParser()
        self._tick_count = 0
        self._output: asyncio.Queue = asyncio.Queue(maxsize=1000)
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.commands_received: list[tuple[int, tuple[float, ...]]] = []

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start producing telemetry into the output queue."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._telemetry_loop())
        logger.info(f"Vehicle simulator started (sysid {self.state.system_id}, {self.rate_hz} Hz)")

    async def stop(self) -> None:
        """Stop the simulator."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Vehicle simulator stopped")

    async def get_output(self, timeout: Optional[float] = 1.0) -> Optional[bytes]:
        """Get the next outbound frame, or None on timeout. ``timeout=None`` waits forever."""
        if timeout is None:
            return await self._output.get()
        try:
            return await asyncio.wait_for(self._output.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def _queue(self, data: bytes) -> None:
        try:
            self._output.put_nowait(data)
        except asyncio.QueueFull:
            self._output.get_nowait()
            self._output.put_nowait(data)

    async def _telemetry_loop(self) -> None:
        interval = 1.0 / self.rate_hz
        while self._running:
            for frame in self.tick(interval):
                self._queue(frame)
            await asyncio.sleep(interval)

    def encode(self, message: DecodedMessage) -> bytes:
        """Encode a message from the simulated vehicle."""
        msg_id, payload = encode_message(message)
        data = encode_frame(
            msg_id,
            payload,
            sequence=self.state.sequence,
            system_id=self.state.system_id,
            component_id=self.state.component_id,
            version=self.version,
        )
        self.state.sequence = (self.state.sequence + 1) & 0xFF
        return data

    # ------------------------------------------------------------------
    # Telemetry generation
    # ------------------------------------------------------------------

    def tick(self, dt: float = 0.1) -> list[bytes]:
        """Advance the simulation by ``dt`` seconds and return telemetry frames."""
        self._advance(dt)
        frames = []
        ticks_per_second = max(int(round(self.rate_hz)), 1)

        if self._tick_count % ticks_per_second == 0:
            frames.append(self.encode(self.heartbeat()))
            frames.append(self.encode(self.sys_status()))
            frames.append(self.encode(self.battery_status()))
            frames.append(self.encode(self.gps_raw()))

        frames.append(self.encode(self.attitude()))
        frames.append(self.encode(self.global_position()))
        frames.append(self.encode(self.local_position()))
        frames.append(self.encode(self.vfr_hud()))

        self._tick_count += 1
        return frames

    def _advance(self, dt: float) -> None:
        s = self.state
        if s.armed:
            climb = max(min(s.target_alt - s.relative_alt, 2.0), -1.5)
            s.relative_alt = max(s.relative_alt + climb * dt, 0.0)
            if abs(s.target_alt - s.relative_alt) < 0.05:
                s.relative_alt = s.target_alt
            if s.relative_alt > 0.5:
                s.north += 2.0 * math.cos(s.yaw) * dt
                s.east += 2.0 * math.sin(s.yaw) * dt
                s.yaw = (s.yaw + 0.05 * dt) % (2 * math.pi)
            s.current = 12.0
            if self._tick_count % max(int(self.rate_hz * 10), 1) == 0:
                s.battery_remaining = max(s.battery_remaining - 1, 0)
            if s.landing and s.relative_alt == 0.0:
                s.armed = False
                s.landing = False
                s.system_status = MavState.STANDBY
        else:
            s.current = 0.5

    def heartbeat(self) -> Heartbeat:
        s = self.state
        base_mode = MavModeFlag.CUSTOM_MODE_ENABLED | MavModeFlag.STABILIZE_ENABLED
        if s.armed:
            base_mode |= MavModeFlag.SAFETY_ARMED
        return Heartbeat(
            vehicle_type=s.vehicle_type,
            autopilot=s.autopilot,
            base_mode=base_mode,
            custom_mode=s.custom_mode,
            system_status=s.system_status,
        )

    def sys_status(self) -> SysStatus:
        s = self.state
        return SysStatus(
            sensors_present=SIM_SENSORS,
            sensors_enabled=SIM_SENSORS,
            sensors_health=SIM_SENSORS,
            load_pct=25.0,
            voltage=round(s.cell_voltage * CELL_COUNT, 3),
            current=s.current,
            battery_remaining=s.battery_remaining,
            drop_rate_comm_pct=0.0,
            errors_comm=0,
        )

    def battery_status(self) -> BatteryStatus:
        s = self.state
        return BatteryStatus(
            battery_id=0,
            battery_function=0,
            battery_type=1,
            temperature=30.0,
            cell_voltages=(s.cell_voltage,) * CELL_COUNT,
            current=s.current,
            current_consumed_mah=(100 - s.battery_remaining) * 50,
            energy_consumed_hj=None,
            remaining_pct=s.battery_remaining,
        )

    def _position(self) -> tuple[float, float]:
        s = self.state
        lat = s.home_lat + s.north / 111_320.0
        lon = s.home_lon + s.east / (111_320.0 * math.cos(math.radians(s.home_lat)))
        return lat, lon

    def gps_raw(self) -> GpsRawInt:
        s = self.state
        lat, lon = self._position()
        return GpsRawInt(
            time_usec=s.time_boot_ms * 1000,
            fix_type=GpsFixType.FIX_3D,
            lat=round(lat, 7),
            lon=round(lon, 7),
            alt=round(s.home_alt + s.relative_alt, 3),
            eph=0.8,
            epv=1.2,
            ground_speed=2.0 if s.armed and s.relative_alt > 0.5 else 0.0,
            course=round(math.degrees(s.yaw), 2),
            satellites_visible=s.satellites,
        )

    def attitude(self) -> Attitude:
        s = self.state
        sway = 0.02 * math.sin(self._tick_count / 10.0) if s.armed else 0.0
        return Attitude(s.time_boot_ms, sway, -sway, s.yaw, 0.0, 0.0, 0.05 if s.armed else 0.0)

    def global_position(self) -> GlobalPositionInt:
        s = self.state
        lat, lon = self._position()
        moving = s.armed and s.relative_alt > 0.5
        return GlobalPositionInt(
            time_boot_ms=s.time_boot_ms,
            lat=round(lat, 7),
            lon=round(lon, 7),
            alt=round(s.home_alt + s.relative_alt, 3),
            relative_alt=round(s.relative_alt, 3),
            vx=round(2.0 * math.cos(s.yaw), 2) if moving else 0.0,
            vy=round(2.0 * math.sin(s.yaw), 2) if moving else 0.0,
            vz=0.0,
            heading=round(math.degrees(s.yaw), 2),
        )

    def local_position(self) -> LocalPositionNed:
        s = self.state
        moving = s.armed and s.relative_alt > 0.5
        vx = 2.0 * math.cos(s.yaw) if moving else 0.0
        vy = 2.0 * math.sin(s.yaw) if moving else 0.0
        return LocalPositionNed(s.time_boot_ms, s.north, s.east, -s.relative_alt, vx, vy, 0.0)

    def vfr_hud(self) -> VfrHud:
        s = self.state
        moving = s.armed and s.relative_alt > 0.5
        return VfrHud(
            airspeed=2.0 if moving else 0.0,
            ground_speed=2.0 if moving else 0.0,
            heading=int(math.degrees(s.yaw)) % 360,
            throttle=50 if s.armed else 0,
            alt=s.home_alt + s.relative_alt,
            climb=0.0,
        )

    # ------------------------------------------------------------------
    # Inbound handling
    # ------------------------------------------------------------------

    def handle_bytes(self, data: bytes) -> list[bytes]:
        """Consume ground-station bytes and return response frames."""
        responses = []
        for frame in self._parser.feed(data):
            responses.extend(self._handle_frame(frame))
        return responses

    def _handle_frame(self, frame: Frame) -> list[bytes]:
        if frame.msg_id == MessageId.COMMAND_LONG:
            return self._handle_command_long(frame.payload)
        if frame.msg_id == MessageId.SET_MODE:
            return self._handle_set_mode(frame.payload)
        return []

    def _handle_set_mode(self, payload: bytes) -> list[bytes]:
        size = struct.calcsize(SET_MODE_FORMAT)
        custom_mode, target, _ = struct.unpack(SET_MODE_FORMAT, payload[:size].ljust(size, b"\x00"))
        if target != self.state.system_id:
            return []
        self.state.custom_mode = custom_mode
        logger.info(f"Simulator mode set to {custom_mode}")
        return [self.encode(self.heartbeat())]

    def _handle_command_long(self, payload: bytes) -> list[bytes]:
        command, params, target, _ = parse_command_long(payload)
        if target not in (0, self.state.system_id):
            return []
        self.commands_received.append((command, params))
        result = self._apply_command(command, params)
        logger.debug(f"Simulator command {command} -> {result.name}")

        responses = [self.encode(CommandAck(command=command, result=result))]
        if command == MavCmd.COMPONENT_ARM_DISARM and result == MavResult.ACCEPTED:
            text = "Arming motors" if self.state.armed else "Disarming motors"
            responses.append(self.encode(StatusText(MavSeverity.INFO, text)))
        return responses

    def _apply_command(self, command: int, params: tuple[float, ...]) -> MavResult:
        s = self.state

        if command == MavCmd.COMPONENT_ARM_DISARM:
            arm = params[0] >= 0.5
            if not arm and s.relative_alt > 0.5 and params[1] != FORCE_ARM_MAGIC:
                return MavResult.DENIED
            s.armed = arm
            s.system_status = MavState.ACTIVE if arm else MavState.STANDBY
            if not arm:
                s.target_alt = 0.0
            return MavResult.ACCEPTED

        if command == MavCmd.NAV_TAKEOFF:
            if not s.armed:
                return MavResult.TEMPORARILY_REJECTED
            s.target_alt = params[6]
            s.landing = False
            return MavResult.ACCEPTED

        if command in (MavCmd.NAV_LAND, MavCmd.NAV_RETURN_TO_LAUNCH):
            s.target_alt = 0.0
            s.landing = s.armed
            if command == MavCmd.NAV_RETURN_TO_LAUNCH:
                s.north = s.east = 0.0
            return MavResult.ACCEPTED

        if command in (MavCmd.SET_MESSAGE_INTERVAL, MavCmd.REQUEST_MESSAGE):
            return MavResult.ACCEPTED

        if command == MavCmd.DO_SET_MODE:
            s.custom_mode = int(params[1])
            return MavResult.ACCEPTED

        return MavResult.UNSUPPORTED


class SimulatedTransport(TransportBase):
    """
    Transport backed by an in-process VehicleSimulator.

    Substitutes for a real transport in tests and demos: telemetry frames
    from the simulator arrive through ``receive()`` and anything sent is
    handled by the simulator, whose responses are delivered back.
    """

    kind = "sim"

    def __init__(self, simulator: Optional[VehicleSimulator] = None):
        super().__init__(read_timeout=0.1)
        self.simulator = simulator or VehicleSimulator()
        self._pump_task: Optional[asyncio.Task] = None

    async def _open(self, config: Any) -> None:
        self._info = TransportInfo(
            kind=self.kind,
            endpoint=f"sysid {self.simulator.state.system_id}",
            description="In-process vehicle simulator",
        )
        await self.simulator.start()
        self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        while True:
            self._deliver(await self.simulator.get_output(timeout=None))

    async def _write(self, data: bytes) -> None:
        for response in self.simulator.handle_bytes(data):
            self._deliver(response)

    async def _release(self) -> None:
        if self._pump_task:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None
        await self.simulator.stop()


async def run_udp_simulator(
    gcs_host: str = "127.0.0.1",
    gcs_port: int = 14550,
    rate_hz: float = 10.0,
    system_id: int = 1,
    duration: Optional[float] = None,
) -> None:
    """
    Stream simulated telemetry to a ground station over UDP.

    Args:
        gcs_host: Ground station address
        gcs_port: Ground station UDP port
        rate_hz: Telemetry tick rate
        system_id: Simulated vehicle system id
        duration: Stop after this many seconds (None runs until cancelled)
    """
    simulator = VehicleSimulator(SimulatorState(system_id=system_id), rate_hz=rate_hz)
    transport = UdpTransport()
    await transport.open(UdpConfig(host="0.0.0.0", port=0, remote_host=gcs_host, remote_port=gcs_port))
    logger.info(f"Simulating vehicle {system_id} -> {gcs_host}:{gcs_port}")

    async def handle_inbound() -> None:
        async for chunk in transport.receive():
            for response in simulator.handle_bytes(chunk):
                await transport.send(response)

    inbound = asyncio.create_task(handle_inbound())
    loop = asyncio.get_running_loop()
    started = loop.time()
    interval = 1.0 / rate_hz
    try:
        while duration is None or loop.time() - started < duration:
            for frame in simulator.tick(interval):
                try:
                    await transport.send(frame)
                except WouldBlockError as e:
                    logger.debug(f"Simulator send skipped: {e}")
            await asyncio.sleep(interval)
    except TransportError as e:
        logger.error(f"Simulator transport failed: {e}")
    finally:
        inbound.cancel()
        try:
            await inbound
        except (asyncio.CancelledError, TransportError):
            pass
        await transport.close()
