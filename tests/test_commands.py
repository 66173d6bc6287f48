"""
Command Tests
Tests for outbound command serialisation
"""

import math
import struct

import pytest

from vehiclelink.communication.commands import (
    COMMAND_LONG_FORMAT,
    FORCE_ARM_MAGIC,
    REQUEST_DATA_STREAM_FORMAT,
    SET_MODE_FORMAT,
    ArmDisarm,
    DataStream,
    Land,
    MavCmd,
    RequestDataStream,
    RequestMessage,
    ReturnToLaunch,
    SetMessageInterval,
    SetMode,
    Takeoff,
    command_long_payload,
    parse_command_long,
)
from vehiclelink.communication.messages import MavModeFlag
from vehiclelink.communication.protocol import EncodeError, MessageId


class TestCommandLong:
    """Test COMMAND_LONG commands."""

    def test_arm(self):
        """Arm sets param1 and the target."""
        msg_id, payload = ArmDisarm(arm=True).to_payload(1, 1)
        command, params, target_system, target_component = parse_command_long(payload)

        assert msg_id == MessageId.COMMAND_LONG
        assert len(payload) == struct.calcsize(COMMAND_LONG_FORMAT)
        assert command == MavCmd.COMPONENT_ARM_DISARM
        assert params[:2] == (1.0, 0.0)
        assert (target_system, target_component) == (1, 1)

    def test_force_disarm(self):
        """Force uses the magic value in param2."""
        _, payload = ArmDisarm(arm=False, force=True).to_payload(1, 1)
        _, params, _, _ = parse_command_long(payload)

        assert params[0] == 0.0
        assert params[1] == float(FORCE_ARM_MAGIC)

    def test_takeoff_altitude_in_param7(self):
        _, payload = Takeoff(altitude=10.0).to_payload(1, 1)
        command, params, _, _ = parse_command_long(payload)

        assert command == MavCmd.NAV_TAKEOFF
        assert params[6] == pytest.approx(10.0)
        assert math.isnan(params[3])

    @pytest.mark.parametrize("altitude", [0.0, -5.0, math.nan])
    def test_takeoff_rejects_bad_altitude(self, altitude):
        with pytest.raises(EncodeError):
            Takeoff(altitude=altitude).to_payload(1, 1)

    @pytest.mark.parametrize("command, expected", [
        (Land(), MavCmd.NAV_LAND),
        (ReturnToLaunch(), MavCmd.NAV_RETURN_TO_LAUNCH),
        (RequestMessage(MessageId.HOME_POSITION), MavCmd.REQUEST_MESSAGE),
    ])
    def test_command_ids(self, command, expected):
        _, payload = command.to_payload(1, 1)
        assert parse_command_long(payload)[0] == expected

    def test_message_interval_at_rate(self):
        """Rate in Hz converts to an interval in microseconds."""
        command = SetMessageInterval.at_rate(MessageId.ATTITUDE, 50)
        _, payload = command.to_payload(1, 1)
        _, params, _, _ = parse_command_long(payload)

        assert params[0] == MessageId.ATTITUDE
        assert params[1] == 20000.0

    def test_message_interval_disable(self):
        assert SetMessageInterval.at_rate(MessageId.ATTITUDE, 0).interval_us == -1

    def test_message_interval_invalid(self):
        with pytest.raises(EncodeError):
            SetMessageInterval(MessageId.ATTITUDE, -2).to_payload(1, 1)

    @pytest.mark.parametrize("target", [(256, 1), (1, -1)])
    def test_target_out_of_range(self, target):
        with pytest.raises(EncodeError):
            Land().to_payload(*target)

    def test_too_many_params(self):
        with pytest.raises(EncodeError):
            command_long_payload(MavCmd.NAV_LAND, (0.0,) * 8, 1, 1)

    def test_parse_trimmed_payload(self):
        """A trimmed payload is zero-extended before unpacking."""
        payload = command_long_payload(MavCmd.NAV_LAND, (), 0, 0).rstrip(b"\x00")
        command, params, target_system, _ = parse_command_long(payload)

        assert command == MavCmd.NAV_LAND
        assert params == (0.0,) * 7
        assert target_system == 0


class TestOtherCommands:
    """Test SET_MODE and REQUEST_DATA_STREAM."""

    def test_set_mode(self):
        msg_id, payload = SetMode(custom_mode=4).to_payload(1, 1)
        custom_mode, target_system, base_mode = struct.unpack(SET_MODE_FORMAT, payload)

        assert msg_id == MessageId.SET_MODE
        assert custom_mode == 4
        assert target_system == 1
        assert base_mode == MavModeFlag.CUSTOM_MODE_ENABLED

    def test_set_mode_out_of_range(self):
        with pytest.raises(EncodeError):
            SetMode(custom_mode=-1).to_payload(1, 1)

    def test_request_data_stream(self):
        msg_id, payload = RequestDataStream(DataStream.POSITION, 5).to_payload(1, 0)
        rate, target_system, target_component, stream, start = struct.unpack(
            REQUEST_DATA_STREAM_FORMAT, payload
        )

        assert msg_id == MessageId.REQUEST_DATA_STREAM
        assert (rate, target_system, target_component) == (5, 1, 0)
        assert stream == DataStream.POSITION
        assert start == 1

    def test_commands_are_frozen(self):
        command = ArmDisarm(arm=True)
        with pytest.raises(Exception):
            command.arm = False
