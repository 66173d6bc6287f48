"""
Pytest configuration for vehiclelink tests.
"""

import pytest

from helpers import sample_messages, vehicle_heartbeat


@pytest.fixture
def heartbeat():
    """Heartbeat from a disarmed quadrotor."""
    return vehicle_heartbeat()


@pytest.fixture
def messages():
    """One decoded message per telemetry group."""
    return sample_messages()
