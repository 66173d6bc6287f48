"""
Streaming frame parser.

Frames may straddle transport reads, so the parser is a resumable state
machine that keeps partial frames across ``feed()`` calls and drains every
complete frame from each chunk before returning.
"""

import logging
import struct
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterable, Mapping, Optional

from .protocol import (
    CHECKSUM_SIZE,
    CRC_EXTRA,
    HEADER_SIZE_V1,
    HEADER_SIZE_V2,
    MAGIC_V1,
    MAGIC_V2,
    SIGNATURE_SIZE,
    SUPPORTED_INCOMPAT_FLAGS,
    IFLAG_SIGNED,
    Frame,
    FrameError,
    frame_checksum,
    header_size,
)


logger = logging.getLogger(__name__)


class ParseState(Enum):
    """Parser state machine states."""
    SEEK_MAGIC = auto()
    READ_HEADER = auto()
    READ_PAYLOAD = auto()
    READ_CHECKSUM = auto()
    READ_SIGNATURE = auto()


@dataclass
class ParserStats:
    """Counters for frames the parser accepted or threw away."""
    frames_parsed: int = 0
    crc_errors: int = 0
    unknown_crc_extra: int = 0
    bad_incompat_flags: int = 0
    bytes_discarded: int = 0

    @property
    def frames_dropped(self) -> int:
        """Candidate frames rejected after a magic byte was found."""
        return self.crc_errors + self.unknown_crc_extra + self.bad_incompat_flags


class FrameParser:
    """
    Resumable parser for v1 and v2 frames.

    On any rejection the parser drops only the magic byte it locked on to
    and rescans from the next byte, so a real frame hidden inside a
    corrupted one is still found.

    Usage:
        parser = FrameParser()
        for chunk in chunks:
            for frame in parser.feed(chunk):
                handle(frame)
    """

    def __init__(self, crc_extra: Optional[Mapping[int, int]] = None):
        """
        Initialize parser.

        Args:
            crc_extra: Message id -> CRC-extra table (default: published table)
        """
        self._crc_extra = dict(CRC_EXTRA if crc_extra is None else crc_extra)
        self._buffer = bytearray()
        self._state = ParseState.SEEK_MAGIC
        self._header_size = 0
        self._payload_len = 0
        self.stats = ParserStats()

    @property
    def state(self) -> ParseState:
        """Current state machine state."""
        return self._state

    @property
    def pending_bytes(self) -> int:
        """Bytes held for an incomplete frame."""
        return len(self._buffer)

    def reset(self) -> None:
        """Forget any partial frame. Counters are kept."""
        self._buffer.clear()
        self._state = ParseState.SEEK_MAGIC
        self._header_size = 0
        self._payload_len = 0

    def feed(self, data: bytes) -> list[Frame]:
        """
        Feed received bytes into the parser.

        Args:
            data: Any number of bytes, possibly mid-frame

        Returns:
            Every frame completed by this chunk, in wire order
        """
        frames: list[Frame] = []
        if data:
            self._buffer.extend(data)

        while True:
            if self._state == ParseState.SEEK_MAGIC:
                if not self._seek_magic():
                    break

            if self._state == ParseState.READ_HEADER:
                if len(self._buffer) < self._header_size:
                    break
                try:
                    self._check_header()
                except FrameError as e:
                    self._drop(e)
                    continue
                self._payload_len = self._buffer[1]
                self._state = ParseState.READ_PAYLOAD

            if self._state == ParseState.READ_PAYLOAD:
                if len(self._buffer) < self._header_size + self._payload_len:
                    break
                self._state = ParseState.READ_CHECKSUM

            if self._state == ParseState.READ_CHECKSUM:
                end = self._header_size + self._payload_len + CHECKSUM_SIZE
                if len(self._buffer) < end:
                    break
                try:
                    self._verify_checksum()
                except FrameError as e:
                    self._drop(e)
                    continue
                if self._is_signed():
                    self._state = ParseState.READ_SIGNATURE
                else:
                    frames.append(self._emit(end))
                    continue

            if self._state == ParseState.READ_SIGNATURE:
                end = self._header_size + self._payload_len + CHECKSUM_SIZE + SIGNATURE_SIZE
                if len(self._buffer) < end:
                    break
                frames.append(self._emit(end))

        return frames

    def _seek_magic(self) -> bool:
        """Discard bytes up to the next magic byte. Returns False if none."""
        positions = [p for p in (self._buffer.find(MAGIC_V1), self._buffer.find(MAGIC_V2)) if p >= 0]
        if not positions:
            self.stats.bytes_discarded += len(self._buffer)
            self._buffer.clear()
            return False

        start = min(positions)
        if start > 0:
            self.stats.bytes_discarded += start
            del self._buffer[:start]

        self._header_size = header_size(self._buffer[0])
        self._state = ParseState.READ_HEADER
        return True

    def _msg_id(self) -> int:
        if self._buffer[0] == MAGIC_V1:
            return self._buffer[5]
        return self._buffer[7] | (self._buffer[8] << 8) | (self._buffer[9] << 16)

    def _is_signed(self) -> bool:
        return self._buffer[0] == MAGIC_V2 and bool(self._buffer[2] & IFLAG_SIGNED)

    def _check_header(self) -> None:
        if self._buffer[0] == MAGIC_V2 and self._buffer[2] & ~SUPPORTED_INCOMPAT_FLAGS:
            self.stats.bad_incompat_flags += 1
            raise FrameError(f"Unsupported incompatibility flags 0x{self._buffer[2]:02X}")

        msg_id = self._msg_id()
        if msg_id not in self._crc_extra:
            self.stats.unknown_crc_extra += 1
            raise FrameError(f"No CRC-extra for message id {msg_id}")

    def _verify_checksum(self) -> None:
        payload_end = self._header_size + self._payload_len
        received = struct.unpack_from("<H", self._buffer, payload_end)[0]
        calculated = frame_checksum(
            bytes(self._buffer[1:self._header_size]),
            bytes(self._buffer[self._header_size:payload_end]),
            self._crc_extra[self._msg_id()],
        )
        if received != calculated:
            self.stats.crc_errors += 1
            raise FrameError(
                f"CRC mismatch: received 0x{received:04X}, calculated 0x{calculated:04X}"
            )

    def _drop(self, error: FrameError) -> None:
        logger.debug(f"Frame dropped: {error}")
        self.stats.bytes_discarded += 1
        del self._buffer[:1]
        self._state = ParseState.SEEK_MAGIC

    def _emit(self, end: int) -> Frame:
        raw = bytes(self._buffer[:end])
        del self._buffer[:end]
        self._state = ParseState.SEEK_MAGIC
        self.stats.frames_parsed += 1

        hsize = self._header_size
        payload_end = hsize + self._payload_len
        checksum = struct.unpack_from("<H", raw, payload_end)[0]

        if raw[0] == MAGIC_V1:
            _, _, seq, sysid, compid, msg_id = raw[:HEADER_SIZE_V1]
            return Frame(
                version=1,
                sequence=seq,
                system_id=sysid,
                component_id=compid,
                msg_id=msg_id,
                payload=raw[hsize:payload_end],
                checksum=checksum,
            )

        _, _, incompat, compat, seq, sysid, compid = raw[:7]
        msg_id = raw[7] | (raw[8] << 8) | (raw[9] << 16)
        signature = raw[payload_end + CHECKSUM_SIZE:] if incompat & IFLAG_SIGNED else None
        return Frame(
            version=2,
            sequence=seq,
            system_id=sysid,
            component_id=compid,
            msg_id=msg_id,
            payload=raw[HEADER_SIZE_V2:payload_end],
            checksum=checksum,
            incompat_flags=incompat,
            compat_flags=compat,
            signature=signature,
        )


def parse_stream(chunks: Iterable[bytes]) -> list[Frame]:
    """Run a fresh parser over a sequence of chunks and collect the frames."""
    parser = FrameParser()
    out: list[Frame] = []
    for chunk in chunks:
        out.extend(parser.feed(chunk))
    return out
