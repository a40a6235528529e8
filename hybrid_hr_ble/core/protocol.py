"""Wire frames exchanged with the watch."""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Final

from pydantic import BaseModel, ConfigDict

from .ble_interface import Channel
from .codec import ByteWriter, read_u16, read_u32
from .errors import AuthInvalidResponseError, TransferInvalidResponseError
from .models import handle_major, handle_minor

_LOGGER = logging.getLogger(__name__)

FILE_END_OFFSET: Final = 0xFFFFFFFF
LOOKUP_WILDCARD: Final = 0xFF
LAST_PACKET_FLAG: Final = 0x80

AUTH_CHALLENGE_MIN_LENGTH: Final = 20
FULL_DATA_ACK_LENGTH: Final = 12


class FileCommand(IntEnum):
    """Opcodes written to the file operations characteristic."""

    GET = 0x01
    LOOKUP = 0x02
    PUT = 0x03
    CLOSE = 0x04


class ResponseKind(IntEnum):
    """Kinds of file operation responses, taken from the low nibble of byte 0."""

    GET_INIT = 0x01
    LOOKUP_INIT = 0x02
    PUT_INIT = 0x03
    COMPLETE = 0x04
    DATA_ACK = 0x08
    CONTINUATION = 0x0A


class AuthResponse(IntEnum):
    """Second byte of frames on the authentication characteristic."""

    CHALLENGE = 0x01
    RESULT = 0x02
    CONFIRM_ON_DEVICE = 0x06
    CONFIRMATION_CHECK = 0x07


class ControlResponse(IntEnum):
    """Second byte of frames on the control characteristic."""

    PAIRING = 0x16


class ResultCode(IntEnum):
    """Status codes reported by the watch."""

    SUCCESS = 0x00
    INPUT_DATA_INVALID = 0x8B
    NOT_AUTHENTICATED = 0x8C
    SIZE_OVER_LIMIT = 0x8D


def describe_status(status: int) -> str:
    """Readable name of a watch status code."""
    try:
        return ResultCode(status).name
    except ValueError:
        return f"0x{status:02x}"


def frame_key(channel: Channel, data: bytes) -> int | None:
    """Compute the routing key of a notification.

    File operation responses are keyed by their response kind, frames on the
    authentication and control characteristics by their second byte.

    Args:
        channel: The characteristic the frame arrived on.
        data: The raw frame.

    Returns:
        The key, or None if the frame is too short to classify.
    """
    if channel is Channel.FILE_OPERATIONS:
        return data[0] & 0x0F if data else None
    if len(data) < 2:
        return None
    return data[1]


# --- AUTHENTICATION FRAMES ---


def build_auth_start(phone_random: bytes) -> bytes:
    """Create the handshake start frame carrying the phone random."""
    return bytes([0x02, 0x01, 0x01]) + phone_random


def build_auth_response(encrypted: bytes) -> bytes:
    """Create the frame answering the watch challenge."""
    return bytes([0x02, 0x02, 0x01]) + encrypted


def build_confirmation_check() -> bytes:
    """Ask whether the watch requires on-device confirmation."""
    return bytes([0x01, 0x07])


def build_confirm_on_device() -> bytes:
    """Ask the user to confirm on the watch (30000 ms window)."""
    return bytes([0x02, 0x06, 0x30, 0x75, 0x00, 0x00, 0x00])


def build_pairing_check() -> bytes:
    """Ask whether the watch is paired."""
    return bytes([0x01, 0x16])


def build_pairing_request() -> bytes:
    """Ask the watch to pair."""
    return bytes([0x02, 0x16])


def parse_auth_challenge(data: bytes) -> bytes:
    """Extract the 16 encrypted challenge bytes.

    Args:
        data: The raw challenge frame.

    Returns:
        The ciphertext at offsets 4..20.
    """
    if len(data) < AUTH_CHALLENGE_MIN_LENGTH:
        raise AuthInvalidResponseError(
            f"Challenge frame too short: {len(data)} bytes ({data.hex()})"
        )
    return data[4:20]


def parse_status_byte(data: bytes, offset: int = 2) -> int:
    """Read the status byte of a short authentication or control response."""
    if len(data) <= offset:
        raise AuthInvalidResponseError(f"Response frame too short: {data.hex()}")
    return data[offset]


# --- FILE FRAMES ---


def build_file_put_request(handle: int, size: int) -> bytes:
    """Create the 15-byte put header.

    The size is sent twice, as total length and as length of this part.
    """
    return (
        ByteWriter()
        .u8(FileCommand.PUT)
        .u16(handle)
        .u32(0)
        .u32(size)
        .u32(size)
        .to_bytes()
    )


def build_file_get_request(
    handle: int, start_offset: int = 0, end_offset: int = FILE_END_OFFSET
) -> bytes:
    """Create the 11-byte get header."""
    return (
        ByteWriter()
        .u8(FileCommand.GET)
        .u8(handle_minor(handle))
        .u8(handle_major(handle))
        .u32(start_offset)
        .u32(end_offset)
        .to_bytes()
    )


def build_file_lookup_request(handle: int) -> bytes:
    """Create a lookup request resolving the dynamic handle of a file type."""
    return bytes([FileCommand.LOOKUP, LOOKUP_WILDCARD, handle_major(handle)])


def build_file_close_request(handle: int) -> bytes:
    """Create the close frame ending a put."""
    return ByteWriter().u8(FileCommand.CLOSE).u16(handle).to_bytes()


def build_data_chunks(data: bytes, mtu: int) -> list[bytes]:
    """Split file data into ``[sequence][payload]`` chunks.

    Args:
        data: The file data.
        mtu: Usable write size; each payload is ``mtu - 1`` bytes.

    Returns:
        The chunks in transmission order, sequence wrapping at 256.
    """
    size = mtu - 1
    if size < 1:
        raise ValueError(f"MTU too small for data chunks: {mtu}")
    return [
        bytes([index & 0xFF]) + data[offset : offset + size]
        for index, offset in enumerate(range(0, len(data), size))
    ]


class FileResponse(BaseModel):
    """A parsed frame from the file operations characteristic.

    Byte 0 carries the kind, bytes 1..2 the handle (minor, major), byte 3 the
    status. Init frames carry a length at 4..8, full acknowledgements and
    completions a CRC32 at 8..12.
    """

    model_config = ConfigDict(frozen=True)

    kind: int
    handle: int
    status: int
    length: int | None = None
    crc32: int | None = None

    @property
    def is_success(self) -> bool:
        return self.status == ResultCode.SUCCESS


def parse_file_response(data: bytes) -> FileResponse:
    """Parse a file operations response.

    Args:
        data: The raw notification.

    Returns:
        The parsed response.
    """
    if len(data) < 4:
        raise TransferInvalidResponseError(f"File response too short: {data.hex()}")
    return FileResponse(
        kind=data[0] & 0x0F,
        handle=read_u16(data, 1),
        status=data[3],
        length=read_u32(data, 4) if len(data) >= 8 else None,
        crc32=read_u32(data, 8) if len(data) >= 12 else None,
    )


def is_full_data_ack(data: bytes) -> bool:
    """Full acknowledgements carry a CRC; 4-byte ones only report progress."""
    return len(data) >= FULL_DATA_ACK_LENGTH


# --- HEART RATE ---


def parse_heart_rate_measurement(data: bytes) -> int | None:
    """Parse a standard GATT heart rate measurement.

    Args:
        data: The raw characteristic value.

    Returns:
        Beats per minute, or None if the value is missing or implausible.
    """
    if len(data) < 2:
        return None
    if data[0] & 0x01:
        if len(data) < 3:
            return None
        heart_rate = read_u16(data, 1)
    else:
        heart_rate = data[1]

    if not 0 < heart_rate < 250:
        _LOGGER.debug("Ignoring implausible heart rate %d", heart_rate)
        return None
    return heart_rate
