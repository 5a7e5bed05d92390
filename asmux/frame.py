"""Wire format of smux frames."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

from .errors import InvalidCommandError, InvalidVersionError, PayloadTooLargeError

SMUX_VERSION = 1
HEADER_SIZE = 8
MAX_PAYLOAD_SIZE = 0xFFFF

_HEADER = struct.Struct("<BBHI")


class MuxCommand(IntEnum):
    SYNC = 0
    FINISH = 1
    PUSH = 2
    NOP = 3

    @classmethod
    def from_byte(cls, value: int) -> MuxCommand:
        """Return the command for a wire byte, raising on unknown values."""
        try:
            return cls(value)
        except ValueError:
            raise InvalidCommandError(value) from None


@dataclass(frozen=True)
class MuxFrameHeader:
    version: int
    command: MuxCommand
    length: int
    stream_id: int

    def encode(self) -> bytes:
        """Serialise the header into its 8 wire bytes."""
        return _HEADER.pack(self.version, int(self.command), self.length, self.stream_id)

    @classmethod
    def decode(cls, data: bytes | bytearray | memoryview) -> MuxFrameHeader:
        """Parse a header from the first 8 bytes of ``data``."""
        if len(data) < HEADER_SIZE:
            raise ValueError(f"header needs {HEADER_SIZE} bytes, got {len(data)}")
        version, command, length, stream_id = _HEADER.unpack_from(data)
        if version != SMUX_VERSION:
            raise InvalidVersionError(version)
        return cls(version, MuxCommand.from_byte(command), length, stream_id)


@dataclass(frozen=True)
class MuxFrame:
    header: MuxFrameHeader
    payload: bytes = b""

    @classmethod
    def new(cls, command: MuxCommand, stream_id: int, payload: bytes = b"") -> MuxFrame:
        """Build a frame of the current version around ``payload``."""
        payload = bytes(payload)
        if len(payload) > MAX_PAYLOAD_SIZE:
            raise PayloadTooLargeError(len(payload))
        header = MuxFrameHeader(SMUX_VERSION, MuxCommand(command), len(payload), stream_id)
        return cls(header, payload)

    @property
    def command(self) -> MuxCommand:
        return self.header.command

    @property
    def stream_id(self) -> int:
        return self.header.stream_id


class MuxCodec:
    """Splits a byte stream into frames and serialises frames."""

    def decode(self, buffer: bytearray) -> MuxFrame | None:
        """Take one complete frame off the front of ``buffer``.

        Returns ``None`` and leaves ``buffer`` untouched when it does not
        yet hold a whole frame.
        """
        if len(buffer) < HEADER_SIZE:
            return None
        header = MuxFrameHeader.decode(buffer)
        end = HEADER_SIZE + header.length
        if len(buffer) < end:
            return None
        payload = bytes(buffer[HEADER_SIZE:end])
        del buffer[:end]
        return MuxFrame(header, payload)

    def encode(self, frame: MuxFrame) -> bytes:
        """Serialise ``frame`` to wire bytes."""
        if frame.header.version != SMUX_VERSION:
            raise InvalidVersionError(frame.header.version)
        if len(frame.payload) > MAX_PAYLOAD_SIZE:
            raise PayloadTooLargeError(len(frame.payload))
        return frame.header.encode() + bytes(frame.payload)