#!/usr/bin/env python3
"""
vehiclelink - Command Line Entry Point

Run with: python -m vehiclelink
"""

import argparse
import asyncio
import logging
import math
import sys
from typing import Optional

from .communication.comm_manager import CommManager
from .communication.telemetry import TelemetryUpdate
from .communication.vehicle_simulator import run_udp_simulator
from .controllers.telemetry_aggregator import TelemetryAggregator
from .utils.config import (
    DEFAULT_BAUDRATE,
    DEFAULT_TCP_PORT,
    DEFAULT_UDP_PORT,
    AggregatorConfig,
    ConfigError,
    LinkConfig,
    SerialConfig,
    TcpConfig,
    UdpConfig,
    load_config,
)
from .utils.logger import setup_logger

logger = logging.getLogger(__name__)


def _host_port(value: str, default_port: int) -> tuple:
    """Parse ``HOST[:PORT]``."""
    host, _, port = value.rpartition(":")
    if not host:
        return value, default_port
    try:
        return host, int(port)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port in {value!r}")


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="vehiclelink",
        description="vehiclelink - MAVLink telemetry link",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s monitor                          # Listen on UDP 0.0.0.0:14550
  %(prog)s monitor --udp 0.0.0.0:14551      # Listen on another UDP port
  %(prog)s monitor --serial /dev/ttyUSB0    # Telemetry radio at 57600 baud
  %(prog)s monitor --tcp 127.0.0.1:5760     # SITL over TCP
  %(prog)s monitor --config link.json       # Link described in a JSON file
  %(prog)s simulate --target 127.0.0.1:14550
"""
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )
    parser.add_argument(
        "--log-dir",
        metavar="DIR",
        help="Directory for log files (default: ~/.vehiclelink/logs)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    monitor = subparsers.add_parser("monitor", help="Connect and print telemetry snapshots")
    source = monitor.add_mutually_exclusive_group()
    source.add_argument("--udp", metavar="HOST:PORT", help="UDP bind address")
    source.add_argument("--serial", metavar="DEVICE", help="Serial device")
    source.add_argument("--tcp", metavar="HOST:PORT", help="TCP address to connect to")
    source.add_argument("--config", metavar="FILE", help="JSON link configuration")
    monitor.add_argument("--baudrate", type=int, default=DEFAULT_BAUDRATE, help="Serial baud rate")
    monitor.add_argument("--rate", type=float, help="Snapshots printed per second")
    monitor.add_argument("--system-id", type=int, help="Only aggregate this vehicle")
    monitor.add_argument("--duration", type=float, help="Stop after this many seconds")

    simulate = subparsers.add_parser("simulate", help="Stream a simulated vehicle over UDP")
    simulate.add_argument(
        "--target",
        default=f"127.0.0.1:{DEFAULT_UDP_PORT}",
        metavar="HOST:PORT",
        help="Ground station address"
    )
    simulate.add_argument("--rate", type=float, default=10.0, help="Telemetry tick rate")
    simulate.add_argument("--system-id", type=int, default=1, help="Simulated system id")
    simulate.add_argument("--duration", type=float, help="Stop after this many seconds")

    return parser.parse_args(argv)


def build_link_config(args) -> LinkConfig:
    """
    Build the link configuration from ``monitor`` arguments.

    Raises:
        ConfigError: If the resulting configuration is invalid
    """
    if args.config:
        config = load_config(args.config)
    else:
        if args.serial:
            transport = SerialConfig(device=args.serial, baudrate=args.baudrate)
        elif args.tcp:
            host, port = _host_port(args.tcp, DEFAULT_TCP_PORT)
            transport = TcpConfig(host=host, port=port)
        elif args.udp:
            host, port = _host_port(args.udp, DEFAULT_UDP_PORT)
            transport = UdpConfig(host=host, port=port)
        else:
            transport = UdpConfig()
        config = LinkConfig(transport=transport)

    aggregator = config.aggregator
    config.aggregator = AggregatorConfig(
        rate_hz=args.rate if args.rate is not None else aggregator.rate_hz,
        stale_after=aggregator.stale_after,
        group_stale_after=dict(aggregator.group_stale_after),
        system_id=args.system_id if args.system_id is not None else aggregator.system_id,
    )
    errors = config.validate()
    if errors:
        raise ConfigError(errors)
    return config


def _fmt(value: Optional[float], fmt: str = ".1f") -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "-"
    return format(value, fmt)


def format_update(update: TelemetryUpdate) -> str:
    """One-line summary of a telemetry update."""
    snap = update.snapshot
    parts = [f"#{snap.tick}"]

    status = snap.system_status
    if status.value is not None:
        armed = "ARMED" if status.value.armed else "disarmed"
        parts.append(f"mode={status.value.custom_mode} {armed}")

    battery = snap.battery.value
    if battery is not None:
        parts.append(f"bat={_fmt(battery.voltage, '.2f')}V {_fmt(battery.remaining_pct, 'd')}%")

    gps = snap.gps.value
    if gps is not None:
        parts.append(f"gps={int(gps.fix_type)} sats={_fmt(gps.satellites_visible, 'd')}")

    attitude = snap.attitude.value
    if attitude is not None:
        parts.append(
            f"rpy={attitude.roll_deg:.1f}/{attitude.pitch_deg:.1f}/{attitude.yaw_deg:.1f}"
        )

    altitude = snap.altitude.value
    if altitude is not None:
        parts.append(f"alt={_fmt(altitude.relative)}m")

    velocity = snap.velocity.value
    if velocity is not None:
        parts.append(f"gs={_fmt(velocity.ground_speed)}m/s")

    stale = snap.stale_groups()
    if stale:
        parts.append(f"stale={','.join(stale)}")

    stats = update.statistics
    if stats is not None:
        parts.append(f"[{stats.state.name} rx={stats.packets_received} lost={stats.packets_lost}]")

    return "  ".join(parts)


async def run_monitor(config: LinkConfig, duration: Optional[float] = None) -> None:
    """Connect, aggregate and print snapshots until cancelled."""
    manager = CommManager(config)
    aggregator = TelemetryAggregator(manager, config.aggregator)
    aggregator.subscribe(lambda update: print(format_update(update), flush=True))
    manager.add_status_text_callback(
        lambda text: print(f"STATUSTEXT [{getattr(text.severity, 'name', text.severity)}] {text.text}", flush=True)
    )

    if not await manager.connect():
        logger.warning("Initial connect failed, retrying in background")
    await aggregator.start()
    try:
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        await aggregator.stop()
        await manager.disconnect()


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    setup_logger(log_level=getattr(logging, args.log_level), log_dir=args.log_dir)

    try:
        if args.command == "monitor":
            config = build_link_config(args)
            logger.info(f"Monitoring over {config.transport.kind.value}")
            asyncio.run(run_monitor(config, args.duration))
        else:
            host, port = _host_port(args.target, DEFAULT_UDP_PORT)
            asyncio.run(run_udp_simulator(
                gcs_host=host,
                gcs_port=port,
                rate_hz=args.rate,
                system_id=args.system_id,
                duration=args.duration,
            ))
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    except argparse.ArgumentTypeError as e:
        logger.error(str(e))
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
