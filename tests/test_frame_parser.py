"""
Frame Parser Tests
Tests for incremental parsing, resynchronisation and corruption rejection
"""

import random

import pytest

from vehiclelink.communication.frame_parser import FrameParser, ParseState, parse_stream
from vehiclelink.communication.protocol import (
    CRC_EXTRA,
    SIGNATURE_SIZE,
    MessageId,
    encode_frame,
)

from helpers import message_frame, raw_v2_frame, sample_messages, vehicle_heartbeat


def _stream() -> bytes:
    """Several back-to-back frames of mixed versions."""
    frames = [message_frame(m, sequence=i) for i, m in enumerate(sample_messages())]
    frames.append(message_frame(vehicle_heartbeat(), sequence=len(frames), version=1))
    return b"".join(frames)


def _key(frame):
    return (frame.version, frame.sequence, frame.system_id, frame.component_id,
            frame.msg_id, frame.payload)


class TestBasicParsing:
    """Test parsing complete frames."""

    def test_single_v2_frame(self, heartbeat):
        """Parse one v2 frame."""
        parser = FrameParser()
        frames = parser.feed(message_frame(heartbeat, sequence=5, system_id=1, component_id=1))

        assert len(frames) == 1
        frame = frames[0]
        assert frame.version == 2
        assert frame.sequence == 5
        assert frame.sender == (1, 1)
        assert frame.msg_id == MessageId.HEARTBEAT
        assert parser.stats.frames_parsed == 1
        assert parser.state == ParseState.SEEK_MAGIC
        assert parser.pending_bytes == 0

    def test_single_v1_frame(self, heartbeat):
        """Parse one v1 frame."""
        frames = FrameParser().feed(message_frame(heartbeat, version=1))

        assert len(frames) == 1
        assert frames[0].version == 1
        assert len(frames[0].payload) == 9

    def test_multiple_frames_in_one_chunk(self):
        """Every frame completed by a chunk is returned in wire order."""
        frames = FrameParser().feed(_stream())

        assert [f.sequence for f in frames] == list(range(len(frames)))
        assert len(frames) == len(sample_messages()) + 1

    def test_empty_chunk(self):
        """Empty chunks produce nothing."""
        parser = FrameParser()
        assert parser.feed(b"") == []
        assert parser.stats.frames_parsed == 0


class TestChunkBoundaries:
    """Test that chunking does not affect results."""

    def test_byte_at_a_time(self):
        """Feeding one byte at a time yields the same frames."""
        data = _stream()
        expected = [_key(f) for f in parse_stream([data])]
        actual = [_key(f) for f in parse_stream(data[i:i + 1] for i in range(len(data)))]
        assert actual == expected

    @pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
    def test_random_splits(self, seed):
        """Random chunk boundaries yield the same frames."""
        data = _stream()
        rng = random.Random(seed)
        chunks, pos = [], 0
        while pos < len(data):
            size = rng.randint(1, 17)
            chunks.append(data[pos:pos + size])
            pos += size

        expected = [_key(f) for f in parse_stream([data])]
        assert [_key(f) for f in parse_stream(chunks)] == expected

    def test_truncated_frame_waits_for_rest(self, heartbeat):
        """A partial frame is held until the remaining bytes arrive."""
        data = message_frame(heartbeat)
        parser = FrameParser()

        assert parser.feed(data[:8]) == []
        assert parser.pending_bytes == 8
        assert parser.state != ParseState.SEEK_MAGIC

        frames = parser.feed(data[8:])
        assert len(frames) == 1
        assert parser.pending_bytes == 0

    def test_reset_drops_partial_frame(self, heartbeat):
        """reset() forgets buffered bytes but keeps counters."""
        data = message_frame(heartbeat)
        parser = FrameParser()
        parser.feed(data)
        parser.feed(data[:5])

        parser.reset()

        assert parser.pending_bytes == 0
        assert parser.state == ParseState.SEEK_MAGIC
        assert parser.stats.frames_parsed == 1


class TestResync:
    """Test recovery from noise and corruption."""

    def test_leading_junk(self, heartbeat):
        """Junk before a frame is discarded and counted."""
        junk = b"\x00\x11\x22hello"
        parser = FrameParser()
        frames = parser.feed(junk + message_frame(heartbeat))

        assert len(frames) == 1
        assert parser.stats.bytes_discarded == len(junk)

    @pytest.mark.parametrize("seed", [1, 7, 42])
    @pytest.mark.parametrize("chunk_size", [1, 64])
    def test_junk_with_magic_bytes(self, heartbeat, seed, chunk_size):
        """False frame starts in the noise are rejected and the real frame is found."""
        rng = random.Random(seed)
        junk = bytearray(rng.randrange(256) for _ in range(200))
        for position in rng.sample(range(len(junk)), 20):
            junk[position] = rng.choice((0xFD, 0xFE))
        # Longest possible false candidate resolves inside the padding
        data = bytes(junk) + bytes(300) + message_frame(heartbeat, sequence=9)
        parser = FrameParser()

        frames = []
        for i in range(0, len(data), chunk_size):
            frames.extend(parser.feed(data[i:i + chunk_size]))

        assert frames
        assert frames[-1].sequence == 9
        assert frames[-1].msg_id == MessageId.HEARTBEAT
        assert parser.stats.bytes_discarded > 0
        assert parser.state == ParseState.SEEK_MAGIC

    def test_corrupted_frame_then_good_frame(self, heartbeat):
        """A frame following a corrupted one is still found."""
        bad = bytearray(message_frame(heartbeat, sequence=1))
        bad[12] ^= 0x10
        good = message_frame(heartbeat, sequence=2)
        parser = FrameParser()

        frames = parser.feed(bytes(bad) + good + bytes(300))

        assert [f.sequence for f in frames] == [2]
        assert parser.stats.crc_errors >= 1

    def test_single_bit_flips_rejected(self, heartbeat):
        """At least 99% of single-bit corruptions are rejected."""
        data = message_frame(heartbeat, sequence=42)
        total = accepted = 0
        for index in range(len(data)):
            for bit in range(8):
                corrupted = bytearray(data)
                corrupted[index] ^= 1 << bit
                total += 1
                frames = parse_stream([bytes(corrupted) + bytes(300)])
                if frames:
                    accepted += 1

        assert accepted / total <= 0.01

    def test_unknown_crc_extra_dropped_at_header(self):
        """Frames with no known CRC-extra are dropped before the payload is read."""
        data = raw_v2_frame(9999, b"\x01\x02\x03", crc_extra=7)
        parser = FrameParser()

        assert parser.feed(data) == []
        assert parser.stats.unknown_crc_extra >= 1
        assert parser.stats.frames_dropped >= 1

    def test_custom_crc_extra_table(self):
        """A caller-supplied table extends what the parser accepts."""
        data = raw_v2_frame(9999, b"\x01\x02\x03", crc_extra=7)
        frames = FrameParser(crc_extra={**CRC_EXTRA, 9999: 7}).feed(data)

        assert len(frames) == 1
        assert frames[0].msg_id == 9999

    @pytest.mark.parametrize("msg_id, crc_extra", [
        (193, 71),   # EKF_STATUS_REPORT
        (163, 127),  # AHRS
        (116, 76),   # SCALED_IMU2
        (241, 90),   # VIBRATION
    ])
    def test_dialect_messages_without_decoder_accepted(self, msg_id, crc_extra):
        """Routine autopilot messages are framed even when nothing decodes them."""
        frames = FrameParser().feed(raw_v2_frame(msg_id, bytes(12), crc_extra))

        assert [f.msg_id for f in frames] == [msg_id]

    def test_unsupported_incompat_flags(self):
        """Unknown incompatibility flags reject the frame."""
        data = raw_v2_frame(MessageId.HEARTBEAT, bytes(9), CRC_EXTRA[MessageId.HEARTBEAT],
                            incompat=0x02)
        parser = FrameParser()

        assert parser.feed(data) == []
        assert parser.stats.bad_incompat_flags >= 1


class TestSignedFrames:
    """Test frames carrying a signature block."""

    def _signed(self) -> bytes:
        return raw_v2_frame(
            MessageId.HEARTBEAT,
            b"\x05\x00\x00\x00\x02\x03\x81\x03\x03",
            CRC_EXTRA[MessageId.HEARTBEAT],
            incompat=0x01,
            signature=bytes(range(1, SIGNATURE_SIZE + 1)),
        )

    def test_signature_consumed(self):
        """The 13-byte signature is attached to the frame."""
        frames = FrameParser().feed(self._signed())

        assert len(frames) == 1
        assert frames[0].is_signed
        assert frames[0].signature == bytes(range(1, SIGNATURE_SIZE + 1))

    def test_signature_split_across_chunks(self, heartbeat):
        """A signature arriving later completes the frame."""
        data = self._signed() + message_frame(heartbeat, sequence=9)
        parser = FrameParser()

        first = parser.feed(data[:-30])
        assert first == []
        assert parser.state == ParseState.READ_SIGNATURE

        frames = parser.feed(data[-30:])
        assert [f.is_signed for f in frames] == [True, False]


class TestEncodeParse:
    """Test the encoder against the parser."""

    def test_v2_trimmed_payload(self):
        """Trailing zeros are trimmed on the wire."""
        data = encode_frame(MessageId.HEARTBEAT, b"\x07" + bytes(8), system_id=1)
        frames = FrameParser().feed(data)

        assert frames[0].payload == b"\x07"
