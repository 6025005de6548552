"""gRPC message framing shared by the gRPC-Web and native HTTP/2 channels.

Every message on the wire is prefixed by one flag byte and a big-endian
32-bit length. gRPC-Web additionally carries the trailers in the body as a
final frame with the high flag bit set, encoded as HTTP/1.1 header lines.
"""

import struct
from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntEnum
from urllib.parse import unquote

from nearby_station.domain.errors import UpstreamProtocolError, UpstreamStatusError

FRAME_HEADER = struct.Struct(">BI")
COMPRESSED_FLAG = 0x01
TRAILER_FLAG = 0x80


class GrpcStatus(IntEnum):
    """gRPC status codes."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


@dataclass(frozen=True)
class Frame:
    """One length-prefixed frame."""

    flags: int
    payload: bytes

    @property
    def is_trailer(self) -> bool:
        """Whether this is a gRPC-Web trailer frame."""
        return bool(self.flags & TRAILER_FLAG)


def encode_message(payload: bytes) -> bytes:
    """Prefix an uncompressed message with its frame header."""
    return FRAME_HEADER.pack(0, len(payload)) + payload


def decode_frames(data: bytes) -> list[Frame]:
    """Split a response body into frames.

    Raises:
        UpstreamProtocolError: The body is truncated or carries a compressed message.
    """
    frames = []
    offset = 0
    while offset < len(data):
        if len(data) - offset < FRAME_HEADER.size:
            raise UpstreamProtocolError(
                f"Truncated gRPC frame header ({len(data) - offset} trailing bytes)"
            )
        flags, length = FRAME_HEADER.unpack_from(data, offset)
        offset += FRAME_HEADER.size
        if len(data) - offset < length:
            raise UpstreamProtocolError(
                f"Truncated gRPC frame: expected {length} bytes, got {len(data) - offset}"
            )
        if flags & COMPRESSED_FLAG:
            raise UpstreamProtocolError("Upstream sent a compressed message without negotiation")
        frames.append(Frame(flags=flags, payload=data[offset : offset + length]))
        offset += length
    return frames


def parse_trailer_block(payload: bytes) -> dict[str, str]:
    """Parse a gRPC-Web trailer frame (`name: value` lines separated by CRLF)."""
    trailers: dict[str, str] = {}
    for raw_line in payload.decode("latin-1").split("\r\n"):
        if not raw_line.strip():
            continue
        name, sep, value = raw_line.partition(":")
        if not sep:
            raise UpstreamProtocolError(f"Malformed gRPC-Web trailer line: {raw_line!r}")
        trailers[name.strip().lower()] = value.strip()
    return trailers


def check_status(metadata: Mapping[str, str]) -> None:
    """Raise unless the trailers report a successful call.

    Raises:
        UpstreamProtocolError: No `grpc-status` was sent or it is not a number.
        UpstreamStatusError: The call finished with a non-OK status.
    """
    raw_status = metadata.get("grpc-status")
    if raw_status is None:
        raise UpstreamProtocolError("Upstream response carries no grpc-status")
    try:
        code = int(raw_status)
    except ValueError as e:
        raise UpstreamProtocolError(f"Malformed grpc-status: {raw_status!r}") from e

    if code == GrpcStatus.OK:
        return

    try:
        code_name = GrpcStatus(code).name
    except ValueError:
        code_name = "UNKNOWN"
    raise UpstreamStatusError(code, code_name, unquote(metadata.get("grpc-message", "")))


def single_message(frames: list[Frame]) -> bytes:
    """Return the payload of the only data frame of a unary response.

    Raises:
        UpstreamProtocolError: The response holds no message or more than one.
    """
    messages = [frame.payload for frame in frames if not frame.is_trailer]
    if len(messages) != 1:
        raise UpstreamProtocolError(
            f"Expected exactly one message in a unary response, got {len(messages)}"
        )
    return messages[0]
