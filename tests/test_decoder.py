"""
Message Decoder Tests
Tests for payload decoding, unit scaling and length handling
"""

import struct

import pytest

from vehiclelink.communication.decoder import (
    MESSAGE_LAYOUTS,
    DecodeError,
    PayloadLengthMismatchError,
    UnknownMessageIdError,
    decode,
    encode_message,
    supported_message_ids,
)
from vehiclelink.communication.frame_parser import FrameParser
from vehiclelink.communication.messages import (
    BatteryStatus,
    CommandAck,
    GpsFixType,
    GpsRawInt,
    Heartbeat,
    MavResult,
    MavSeverity,
    MavType,
    SensorFlags,
    StatusText,
    SysStatus,
)
from vehiclelink.communication.protocol import EncodeError, Frame, MessageId

from helpers import message_frame, sample_messages, vehicle_heartbeat


def _frame(msg_id: int, payload: bytes, version: int = 2) -> Frame:
    return Frame(version=version, sequence=0, system_id=1, component_id=1,
                 msg_id=msg_id, payload=payload)


class TestHeartbeat:
    """Test HEARTBEAT decoding."""

    def test_fields(self):
        """Raw codes map to enums and flags."""
        payload = struct.pack("<IBBBBB", 4, 2, 3, 0x81, 4, 3)
        msg = decode(_frame(MessageId.HEARTBEAT, payload))

        assert isinstance(msg, Heartbeat)
        assert msg.custom_mode == 4
        assert msg.vehicle_type == MavType.QUADROTOR
        assert msg.armed
        assert not msg.is_ground_station

    def test_unknown_vehicle_type_kept_as_int(self):
        """Codes outside the known enum stay plain integers."""
        payload = struct.pack("<IBBBBB", 0, 99, 3, 0, 4, 3)
        msg = decode(_frame(MessageId.HEARTBEAT, payload))

        assert msg.vehicle_type == 99
        assert not isinstance(msg.vehicle_type, MavType)


class TestScaling:
    """Test conversion of wire units into semantic units."""

    def test_sys_status_units(self):
        """Millivolts, centiamps and sentinels."""
        payload = struct.pack("<IIIHHhHHHHHHb", 0b100001, 0b100001, 0b000001,
                              250, 16200, -1, 0, 0, 0, 0, 0, 0, -1)
        msg = decode(_frame(MessageId.SYS_STATUS, payload))

        assert isinstance(msg, SysStatus)
        assert msg.load_pct == pytest.approx(25.0)
        assert msg.voltage == pytest.approx(16.2)
        assert msg.current is None
        assert msg.battery_remaining is None
        assert msg.unhealthy_sensors == SensorFlags.GPS

    def test_gps_units_and_sentinels(self):
        """Degrees e7, millimetres and unknown markers."""
        payload = struct.pack("<QiiiHHHHBB", 1, 473977419, 85455938, 488000,
                              0xFFFF, 0xFFFF, 150, 0xFFFF, 3, 0xFF)
        msg = decode(_frame(MessageId.GPS_RAW_INT, payload))

        assert isinstance(msg, GpsRawInt)
        assert msg.lat == pytest.approx(47.3977419)
        assert msg.lon == pytest.approx(8.5455938)
        assert msg.alt == pytest.approx(488.0)
        assert msg.eph is None
        assert msg.ground_speed == pytest.approx(1.5)
        assert msg.course is None
        assert msg.fix_type == GpsFixType.FIX_3D
        assert msg.satellites_visible is None

    def test_battery_cells(self):
        """Unused cells are dropped and pack voltage is their sum."""
        cells = [4100, 4100, 4100] + [0xFFFF] * 7
        payload = struct.pack("<iih10HhBBBb", 500, -1, 2500, *cells, 1200, 0, 0, 1, 60)
        msg = decode(_frame(MessageId.BATTERY_STATUS, payload))

        assert isinstance(msg, BatteryStatus)
        assert msg.cell_voltages == (4.1, 4.1, 4.1)
        assert msg.voltage == pytest.approx(12.3)
        assert msg.current == pytest.approx(12.0)
        assert msg.temperature == pytest.approx(25.0)
        assert msg.energy_consumed_hj is None
        assert msg.remaining_pct == 60

    def test_status_text_null_terminated(self):
        """Text ends at the first NUL."""
        payload = struct.pack("<B50s", 4, b"PreArm: Need 3D Fix")
        msg = decode(_frame(MessageId.STATUSTEXT, payload))

        assert isinstance(msg, StatusText)
        assert msg.severity == MavSeverity.WARNING
        assert msg.text == "PreArm: Need 3D Fix"

    def test_command_ack(self):
        payload = struct.pack("<HB", 400, 0)
        msg = decode(_frame(MessageId.COMMAND_ACK, payload))

        assert isinstance(msg, CommandAck)
        assert msg.command == 400
        assert msg.result == MavResult.ACCEPTED
        assert msg.accepted


class TestPayloadLength:
    """Test handling of payload length differences."""

    def test_v2_short_payload_zero_extended(self):
        """Trimmed v2 payloads are zero-extended."""
        msg = decode(_frame(MessageId.HEARTBEAT, b"\x07"))
        assert msg.custom_mode == 7
        assert msg.mavlink_version == 0

    def test_v2_long_payload_sliced(self):
        """Extension fields beyond the known layout are ignored."""
        payload = struct.pack("<HB", 400, 0) + b"\x01\x02\x03\x04"
        msg = decode(_frame(MessageId.COMMAND_ACK, payload))
        assert msg.command == 400

    def test_v2_empty_payload_rejected(self):
        with pytest.raises(PayloadLengthMismatchError):
            decode(_frame(MessageId.HEARTBEAT, b""))

    def test_v1_requires_exact_length(self):
        """v1 frames must carry the full layout."""
        with pytest.raises(PayloadLengthMismatchError) as exc_info:
            decode(_frame(MessageId.HEARTBEAT, b"\x07\x00", version=1))

        assert exc_info.value.expected == 9
        assert exc_info.value.actual == 2
        assert exc_info.value.msg_id == MessageId.HEARTBEAT


class TestUnknownMessages:
    """Test ids without a decoder."""

    def test_known_crc_but_no_layout(self):
        """Ids the parser accepts but the decoder does not know."""
        assert MessageId.PING not in supported_message_ids()
        with pytest.raises(UnknownMessageIdError) as exc_info:
            decode(_frame(MessageId.PING, b"\x00" * 14))

        assert isinstance(exc_info.value, DecodeError)
        assert exc_info.value.msg_id == MessageId.PING

    def test_supported_ids(self):
        assert supported_message_ids() == frozenset(MESSAGE_LAYOUTS)
        assert MessageId.HEARTBEAT in supported_message_ids()


class TestEncodeMessage:
    """Test packing records into payloads."""

    def test_wire_round_trip(self):
        """Every sample message survives encode, frame, parse and decode."""
        parser = FrameParser()
        originals = sample_messages()
        data = b"".join(message_frame(m, sequence=i) for i, m in enumerate(originals))

        decoded = [decode(frame) for frame in parser.feed(data)]

        assert len(decoded) == len(originals)
        for original, result in zip(originals, decoded):
            assert type(result) is type(original)
        assert decoded[0] == originals[0]

    def test_v1_round_trip(self):
        heartbeat = vehicle_heartbeat(armed=True, custom_mode=3)
        frames = FrameParser().feed(message_frame(heartbeat, version=1))
        assert decode(frames[0]) == heartbeat

    def test_unknown_record(self):
        with pytest.raises(EncodeError):
            encode_message(object())

    def test_field_out_of_range(self):
        ack = CommandAck(command=70000, result=MavResult.ACCEPTED)
        with pytest.raises(EncodeError):
            encode_message(ack)
