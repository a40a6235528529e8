"""Configuration file items and the generic file container.

Files exchanged with the watch are wrapped in a container::

    handle u16 | version u16 | offset u32 | size u32 | payload | crc32c u32

The configuration file payload is a sequence of ``id u16 | length u8 | data``
items.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Final

from .codec import ByteReader, ByteWriter, crc32c, read_u32
from .errors import ConfigurationError, InvalidCRCError
from .models import BatteryStatus

_LOGGER = logging.getLogger(__name__)

CONTAINER_HEADER_SIZE: Final = 12
CONTAINER_TRAILER_SIZE: Final = 4
DEFAULT_CONTAINER_VERSION: Final = 0x0003

CONFIG_ITEM_CURRENT_TIME: Final = 0x0C
CONFIG_ITEM_BATTERY: Final = 0x0D


def build_file_container(
    handle: int, payload: bytes, version: int = DEFAULT_CONTAINER_VERSION
) -> bytes:
    """Wrap a payload in a file container.

    Args:
        handle: The destination file handle.
        payload: The file payload.
        version: Container format version.

    Returns:
        The container, CRC32C trailer included.
    """
    body = (
        ByteWriter()
        .u16(handle)
        .u16(version)
        .u32(0)
        .u32(len(payload))
        .raw(payload)
        .to_bytes()
    )
    return body + ByteWriter().u32(crc32c(body)).to_bytes()


def unwrap_file_container(data: bytes) -> bytes:
    """Extract and verify the payload of a file container.

    Args:
        data: The container as read from the watch.

    Returns:
        The payload.
    """
    if len(data) < CONTAINER_HEADER_SIZE + CONTAINER_TRAILER_SIZE:
        raise ConfigurationError(f"File container too short: {len(data)} bytes")

    body = data[:-CONTAINER_TRAILER_SIZE]
    expected = crc32c(body)
    actual = read_u32(data, len(data) - CONTAINER_TRAILER_SIZE)
    if expected != actual:
        raise InvalidCRCError(expected, actual)

    payload = body[CONTAINER_HEADER_SIZE:]
    declared = read_u32(data, 8)
    if declared != len(payload):
        _LOGGER.warning(
            "Container declares %d payload bytes but holds %d", declared, len(payload)
        )
    return payload


def parse_configuration_items(payload: bytes) -> dict[int, bytes]:
    """Split a configuration payload into items.

    Args:
        payload: The container payload.

    Returns:
        Item data keyed by item id; later duplicates win.
    """
    items: dict[int, bytes] = {}
    reader = ByteReader(payload)
    while reader.remaining >= 3:
        item_id = reader.u16()
        length = reader.u8()
        if reader.remaining < length:
            _LOGGER.warning(
                "Configuration item 0x%04x truncated: %d of %d bytes",
                item_id,
                reader.remaining,
                length,
            )
            break
        items[item_id] = reader.read(length)
    _LOGGER.debug("Parsed configuration items: %s", [f"0x{i:04x}" for i in items])
    return items


def encode_configuration_items(items: Mapping[int, bytes]) -> bytes:
    """Serialize configuration items into a payload."""
    writer = ByteWriter()
    for item_id, data in items.items():
        if len(data) > 0xFF:
            raise ConfigurationError(f"Configuration item 0x{item_id:04x} too long")
        writer.u16(item_id).u8(len(data)).raw(data)
    return writer.to_bytes()


def parse_battery_status(items: Mapping[int, bytes]) -> BatteryStatus:
    """Read the battery item.

    Args:
        items: Parsed configuration items.

    Returns:
        Battery voltage and charge.
    """
    data = items.get(CONFIG_ITEM_BATTERY)
    if data is None or len(data) < 3:
        raise ConfigurationError("Configuration file has no battery item")

    reader = ByteReader(data)
    voltage = reader.u16()
    percentage = reader.u8()
    return BatteryStatus(percentage=percentage, voltage_millivolts=voltage)


def build_time_config(epoch_seconds: int, millis: int, offset_minutes: int) -> bytes:
    """Encode the current time item.

    Args:
        epoch_seconds: Unix time in seconds.
        millis: Millisecond part of the current time.
        offset_minutes: Local UTC offset in minutes.

    Returns:
        A configuration payload holding the single time item.
    """
    data = ByteWriter().u32(epoch_seconds).u16(millis).i16(offset_minutes).to_bytes()
    return encode_configuration_items({CONFIG_ITEM_CURRENT_TIME: data})
