"""
Controllers Package

Connection state machine, reconnect backoff and telemetry aggregation.
"""

from .connection_recovery import (
    Backoff,
    ConnectionEvent,
    ConnectionState,
    ConnectionStateMachine,
)
from .telemetry_aggregator import TelemetryAggregator

__all__ = [
    'Backoff',
    'ConnectionEvent',
    'ConnectionState',
    'ConnectionStateMachine',
    'TelemetryAggregator',
]
