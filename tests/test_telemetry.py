"""
Telemetry Tests
Tests for field groups, message merging and the telemetry subject
"""

import asyncio
from unittest.mock import Mock

import pytest

from vehiclelink.communication.messages import (
    Altitude,
    LocalPositionNed,
    MavSeverity,
    SensorFlags,
    StatusText,
)
from vehiclelink.communication.telemetry import (
    AltitudeState,
    FieldGroup,
    Freshness,
    GROUP_NAMES,
    GpsState,
    TelemetrySnapshot,
    group_for,
    merge_message,
)
from vehiclelink.communication.telemetry_observer import TelemetrySubject

from helpers import vehicle_heartbeat


class TestFieldGroup:
    """Test freshness bookkeeping."""

    def test_never_received(self):
        group = FieldGroup()
        assert group.freshness == Freshness.NEVER_RECEIVED
        assert group.age(10.0) is None
        assert group.with_staleness(100.0, 1.0) is group

    @pytest.mark.parametrize("now, expected", [
        (10.5, Freshness.FRESH),
        (13.0, Freshness.FRESH),
        (13.01, Freshness.STALE),
    ])
    def test_staleness_threshold(self, now, expected):
        group = FieldGroup(value=1, updated_at=10.0).with_staleness(now, 3.0)
        assert group.freshness == expected

    def test_stale_keeps_value(self):
        group = FieldGroup(value="last", updated_at=0.0).with_staleness(60.0, 3.0)
        assert group.stale
        assert group.value == "last"


class TestMergeMessage:
    """Test folding messages into their groups."""

    def test_every_sample_maps_to_a_group(self, messages):
        assert {group_for(m) for m in messages} == set(GROUP_NAMES)

    def test_unmapped_message(self):
        assert group_for(StatusText(MavSeverity.INFO, "hello")) is None
        with pytest.raises(ValueError):
            merge_message(None, StatusText(MavSeverity.INFO, "hello"))

    def test_heartbeat_and_sys_status_share_group(self, messages):
        """Each message only overwrites the fields it carries."""
        heartbeat, sys_status = messages[0], messages[1]

        state = merge_message(None, heartbeat)
        state = merge_message(state, sys_status)

        assert state.armed
        assert state.custom_mode == 5
        assert state.load_pct == 25.0
        assert state.unhealthy_sensors == SensorFlags.GPS

        state = merge_message(state, vehicle_heartbeat(armed=False))
        assert not state.armed
        assert state.load_pct == 25.0

    def test_battery(self, messages):
        battery = merge_message(None, messages[2])
        assert battery.voltage == pytest.approx(16.0)
        assert battery.cell_voltages == (4.0, 4.0, 4.0, 4.0)
        assert battery.consumed_mah == 120

    def test_altitude_sources(self, messages):
        state = merge_message(None, messages[5])
        assert state == AltitudeState(amsl=498.0, relative=10.0)

        state = merge_message(state, Altitude(
            time_usec=0, altitude_monotonic=500.0, altitude_amsl=499.0, altitude_local=11.0,
            altitude_relative=11.0, altitude_terrain=12.0, bottom_clearance=11.0,
        ))
        assert state.amsl == 499.0
        assert state.terrain == 12.0

    def test_velocity_sources(self, messages):
        vfr_hud = messages[6]
        state = merge_message(None, LocalPositionNed(0, 0.0, 0.0, -10.0, 3.0, 4.0, -0.5))
        state = merge_message(state, vfr_hud)

        assert state.horizontal_speed == pytest.approx(5.0)
        assert state.airspeed == 2.5
        assert state.climb_rate == 0.5

    def test_gps_fix(self, messages):
        gps = merge_message(None, messages[3])
        assert gps.has_fix
        assert not GpsState().has_fix

    def test_attitude_degrees(self, messages):
        state = merge_message(None, messages[4])
        assert state.yaw_deg == pytest.approx(57.29578, rel=1e-5)


class TestTelemetrySnapshot:
    """Test snapshot accessors."""

    def test_empty(self):
        snapshot = TelemetrySnapshot()
        assert set(snapshot.freshness().values()) == {Freshness.NEVER_RECEIVED}
        assert snapshot.stale_groups() == []

    def test_unknown_group(self):
        with pytest.raises(KeyError):
            TelemetrySnapshot().group("wind")

    def test_frozen(self):
        with pytest.raises(Exception):
            TelemetrySnapshot().tick = 5


class TestTelemetrySubject:
    """Test the publish/subscribe channel."""

    def test_callbacks(self):
        subject = TelemetrySubject()
        callback = Mock()
        sub_id = subject.subscribe(callback)

        subject.notify(1)
        subject.unsubscribe(sub_id)
        subject.notify(2)

        callback.assert_called_once_with(1)
        assert subject.get_last_value() == 2

    def test_failing_callback_isolated(self):
        subject = TelemetrySubject()
        good = Mock()
        subject.subscribe(Mock(side_effect=RuntimeError("boom")))
        subject.subscribe(good)

        subject.notify("update")

        good.assert_called_once_with("update")

    @pytest.mark.asyncio
    async def test_stream_latest_wins(self):
        subject = TelemetrySubject()
        stream = subject.stream(maxsize=1)
        first = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)

        subject.notify(1)
        assert await first == 1

        subject.notify(2)
        subject.notify(3)
        assert await stream.__anext__() == 3

        subject.close()
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()

    def test_notify_after_close_ignored(self):
        subject = TelemetrySubject()
        callback = Mock()
        subject.subscribe(callback)
        subject.close()

        subject.notify(1)

        callback.assert_not_called()
        assert subject.subscriber_count == 0
