"""Unit tests for the wire frames."""

import math

import pytest

from hybrid_hr_ble.core import protocol
from hybrid_hr_ble.core.ble_interface import Channel
from hybrid_hr_ble.core.errors import AuthInvalidResponseError, TransferInvalidResponseError
from hybrid_hr_ble.core.models import FileHandle


def test_file_handle_parts():
    """Test major and minor bytes of handles."""
    assert FileHandle.ACTIVITY_FILE.major == 0x01
    assert FileHandle.ACTIVITY_FILE.minor == 0x00
    assert FileHandle.ASSET_REPLY_IMAGES.major == 0x07
    assert FileHandle.ASSET_REPLY_IMAGES.minor == 0x03
    assert FileHandle.APP_CODE.major == 0x15
    assert FileHandle.APP_CODE.minor == 0xFE


def test_auth_frames():
    """Test authentication frame layout."""
    phone_random = bytes(range(8))

    start = protocol.build_auth_start(phone_random)
    assert start == bytes([0x02, 0x01, 0x01]) + phone_random
    assert len(start) == 11

    response = protocol.build_auth_response(bytes(16))
    assert response[:3] == bytes([0x02, 0x02, 0x01])
    assert len(response) == 19


def test_parse_auth_challenge():
    """Test extraction of the challenge ciphertext."""
    frame = bytes([0x03, 0x01, 0x00, 0x00]) + bytes(range(16))

    assert protocol.parse_auth_challenge(frame) == bytes(range(16))
    with pytest.raises(AuthInvalidResponseError):
        protocol.parse_auth_challenge(frame[:19])


def test_file_put_request():
    """The put header repeats the size."""
    frame = protocol.build_file_put_request(FileHandle.CONFIGURATION, 0x1234)

    assert len(frame) == 15
    assert frame == bytes(
        [0x03, 0x00, 0x08, 0, 0, 0, 0, 0x34, 0x12, 0, 0, 0x34, 0x12, 0, 0]
    )


def test_file_get_request():
    """Test the get header."""
    frame = protocol.build_file_get_request(0x0801)

    assert len(frame) == 11
    assert frame == bytes([0x01, 0x01, 0x08, 0, 0, 0, 0, 0xFF, 0xFF, 0xFF, 0xFF])


def test_lookup_and_close_requests():
    """Test lookup and close frames."""
    assert protocol.build_file_lookup_request(FileHandle.ACTIVITY_FILE) == bytes(
        [0x02, 0xFF, 0x01]
    )
    assert protocol.build_file_close_request(FileHandle.CONFIGURATION) == bytes(
        [0x04, 0x00, 0x08]
    )


@pytest.mark.parametrize(("size", "mtu"), [(100, 20), (19, 20), (20, 20), (1, 180)])
def test_data_chunks(size, mtu):
    """Chunks carry a sequence byte and mtu - 1 payload bytes."""
    data = bytes(i & 0xFF for i in range(size))

    chunks = protocol.build_data_chunks(data, mtu)

    assert len(chunks) == math.ceil(size / (mtu - 1))
    assert [chunk[0] for chunk in chunks] == list(range(len(chunks)))
    assert all(len(chunk) <= mtu for chunk in chunks)
    assert b"".join(chunk[1:] for chunk in chunks) == data


def test_data_chunk_sequence_wraps():
    """Sequence numbers wrap at 256."""
    chunks = protocol.build_data_chunks(bytes(300), 2)

    assert len(chunks) == 300
    assert chunks[255][0] == 255
    assert chunks[256][0] == 0
    assert chunks[299][0] == 43


def test_frame_key():
    """File responses route by low nibble, others by their second byte."""
    assert protocol.frame_key(Channel.FILE_OPERATIONS, bytes([0x88, 0x00])) == 0x08
    assert protocol.frame_key(Channel.FILE_OPERATIONS, bytes([0x0A])) == 0x0A
    assert protocol.frame_key(Channel.AUTHENTICATION, bytes([0x03, 0x02, 0x00])) == 0x02
    assert protocol.frame_key(Channel.CONTROL, bytes([0x03, 0x16, 0x01])) == 0x16
    assert protocol.frame_key(Channel.AUTHENTICATION, bytes([0x03])) is None
    assert protocol.frame_key(Channel.FILE_OPERATIONS, b"") is None


def test_parse_file_response():
    """Test the generic file response parser."""
    ack = protocol.parse_file_response(
        bytes([0x08, 0x00, 0x08, 0x00, 0x10, 0, 0, 0, 0x26, 0x39, 0xF4, 0xCB])
    )
    assert ack.kind == protocol.ResponseKind.DATA_ACK
    assert ack.handle == FileHandle.CONFIGURATION
    assert ack.is_success
    assert ack.length == 0x10
    assert ack.crc32 == 0xCBF43926

    short = protocol.parse_file_response(bytes([0x03, 0x00, 0x08, 0x8C]))
    assert short.status == protocol.ResultCode.NOT_AUTHENTICATED
    assert short.length is None
    assert short.crc32 is None

    with pytest.raises(TransferInvalidResponseError):
        protocol.parse_file_response(bytes([0x03, 0x00]))


def test_full_data_ack():
    """Only acks carrying a CRC are full acks."""
    assert not protocol.is_full_data_ack(bytes(4))
    assert protocol.is_full_data_ack(bytes(12))


def test_parse_heart_rate_measurement():
    """Test the standard heart rate measurement format."""
    assert protocol.parse_heart_rate_measurement(bytes([0x00, 72])) == 72
    assert protocol.parse_heart_rate_measurement(bytes([0x01, 0x8C, 0x00])) == 140
    assert protocol.parse_heart_rate_measurement(bytes([0x00, 0])) is None
    assert protocol.parse_heart_rate_measurement(bytes([0x01, 0xFA, 0x00])) is None
    assert protocol.parse_heart_rate_measurement(bytes([0x01, 0x50])) is None
    assert protocol.parse_heart_rate_measurement(b"") is None
