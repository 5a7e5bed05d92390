"""Errors raised by the multiplexer."""

from __future__ import annotations

from .config import StreamIdType


class MuxError(Exception):
    """Base class of every multiplexer error."""


class InvalidCommandError(MuxError):
    def __init__(self, command: int) -> None:
        self.command = command
        super().__init__(f"Invalid command {command}")


class InvalidVersionError(MuxError):
    def __init__(self, version: int) -> None:
        self.version = version
        super().__init__(f"Invalid version {version}")


class PayloadTooLargeError(MuxError):
    def __init__(self, size: int) -> None:
        self.size = size
        super().__init__(f"Payload too large {size}")


class DuplicatedStreamIdError(MuxError):
    def __init__(self, stream_id: int) -> None:
        self.stream_id = stream_id
        super().__init__(f"Duplicated stream id {stream_id}")


class InvalidPeerStreamIdTypeError(MuxError):
    def __init__(self, stream_id: int, stream_id_type: StreamIdType) -> None:
        self.stream_id = stream_id
        self.stream_id_type = StreamIdType(stream_id_type)
        super().__init__(
            f"Invalid stream ID from peer: {stream_id}, "
            f"local stream ID type: {self.stream_id_type.name.capitalize()}"
        )


class TooManyStreamsError(MuxError):
    def __init__(self) -> None:
        super().__init__("Too many streams")


class ConnectionClosedError(MuxError):
    def __init__(self) -> None:
        super().__init__("Inner connection closed")


class StreamClosedError(MuxError):
    def __init__(self, stream_id: int) -> None:
        self.stream_id = stream_id
        super().__init__(f"Mux stream closed: {stream_id:x}")