"""End-to-end tests of the coordinator against the simulated watch."""

import asyncio
import time

import pytest

import hybrid_hr_ble
from hybrid_hr_ble.const import CONNECTION_PARAMETERS_REQUEST
from hybrid_hr_ble.core.ble_interface import Channel
from hybrid_hr_ble.core.codec import ByteWriter, read_u16, read_u32
from hybrid_hr_ble.core.configuration import (
    CONFIG_ITEM_BATTERY,
    CONFIG_ITEM_CURRENT_TIME,
    build_file_container,
    encode_configuration_items,
    parse_configuration_items,
    unwrap_file_container,
)
from hybrid_hr_ble.core.errors import (
    NotAuthenticatedError,
    OperationInProgressError,
    TransferInProgressError,
    TransportError,
    WriteFailedError,
)
from hybrid_hr_ble.core.models import FileHandle

from fake_watch import SECRET_KEY

START = 1_700_000_000


def activity_file() -> bytes:
    header = bytearray(52)
    header[2:4] = ByteWriter().u16(22).to_bytes()
    header[8:12] = ByteWriter().u32(START).to_bytes()
    packets = bytes(
        [
            0xCE, 0x08, 0x03, 0x05, 70, 0x03,
            0xCE, 0x08, 0x04, 0x03, 90, 0x04,
            0xCE, 0x08, 0x06, 0x01, 0, 0x00,
            0xCB, 0x00,
        ]
    )  # fmt: skip
    return bytes(header) + packets + bytes(4)


async def test_setup_routes_protocol_channels(coordinator, watch):
    """Notification routing covers every protocol characteristic."""
    assert set(watch.callbacks) == {
        Channel.CONTROL,
        Channel.FILE_OPERATIONS,
        Channel.FILE_DATA,
        Channel.AUTHENTICATION,
    }


async def test_fetch_activity_data(coordinator, watch):
    """The activity file is fetched, decrypted and decoded."""
    watch.encrypted_files[FileHandle.ACTIVITY_FILE] = activity_file()

    data = await coordinator.fetch_activity_data()

    assert [sample.timestamp for sample in data.samples] == [START, START + 60, START + 120]
    assert data.total_steps == 1 + 2 + 3
    assert data.total_calories == 7
    assert data.average_heart_rate == 80
    assert coordinator.credentials is not None


async def test_read_battery_status(coordinator, watch):
    """Battery state is read from the encrypted configuration file."""
    payload = encode_configuration_items(
        {0x01: b"\x00", CONFIG_ITEM_BATTERY: bytes([0x7A, 0x0F, 64])}
    )
    watch.encrypted_files[FileHandle.CONFIGURATION] = build_file_container(
        FileHandle.CONFIGURATION, payload
    )

    status = await coordinator.read_battery_status()

    assert status.percentage == 64
    assert status.voltage_millivolts == 3962


async def test_sync_time(coordinator, watch):
    """The time item is put inside a configuration container."""
    with pytest.raises(NotAuthenticatedError):
        await coordinator.sync_time()

    await coordinator.authenticate()
    await coordinator.sync_time(now=START + 0.25)

    container = watch.received[FileHandle.CONFIGURATION]
    assert read_u16(container, 0) == FileHandle.CONFIGURATION
    item = parse_configuration_items(unwrap_file_container(container))[
        CONFIG_ITEM_CURRENT_TIME
    ]
    assert read_u32(item, 0) == START
    assert read_u16(item, 4) == 250
    offset = int.from_bytes(item[6:8], "little", signed=True)
    assert offset == time.localtime(START).tm_gmtoff // 60


async def test_operations_do_not_overlap(coordinator, watch):
    """A second operation fails fast while the link is owned."""
    watch.silent = True
    fetch = asyncio.create_task(
        coordinator.fetch_encrypted_file(FileHandle.ACTIVITY_FILE)
    )
    for _ in range(5):
        await asyncio.sleep(0)
    assert coordinator.link.active_operation == "fetch"
    writes = len(watch.writes)

    with pytest.raises(TransferInProgressError):
        await coordinator.put_file(FileHandle.CONFIGURATION, b"data")
    with pytest.raises(TransferInProgressError):
        await coordinator.fetch_encrypted_file(FileHandle.CONFIGURATION)
    with pytest.raises(OperationInProgressError):
        await coordinator.authenticate()
    assert len(watch.writes) == writes

    fetch.cancel()
    with pytest.raises(asyncio.CancelledError):
        await fetch
    assert not coordinator.link.is_busy
    assert coordinator.router.pending == 0


async def test_set_connection_parameters(coordinator, watch):
    """The connection parameter request goes to the control channel."""
    await coordinator.set_connection_parameters()

    assert watch.frames(Channel.CONTROL) == [CONNECTION_PARAMETERS_REQUEST]

    watch.fail_writes = True
    with pytest.raises(WriteFailedError):
        await coordinator.set_connection_parameters()


async def test_heart_rate_monitoring(coordinator, watch):
    """Plausible heart rate readings reach the callback."""
    readings: list[int] = []
    await coordinator.start_heart_rate_monitoring(readings.append)

    watch.notify(Channel.HEART_RATE, bytes([0x00, 72]))
    watch.notify(Channel.HEART_RATE, bytes([0x00, 0]))
    watch.notify(Channel.HEART_RATE, bytes([0x01, 0x8C, 0x00]))

    assert readings == [72, 140]


async def test_shutdown(coordinator, watch):
    """Shutting down forgets the session and disconnects."""
    await coordinator.authenticate()

    await coordinator.async_shutdown()

    assert coordinator.credentials is None
    assert not watch.is_connected


async def test_async_connect(monkeypatch, watch):
    """Connecting returns a coordinator with routing in place."""
    monkeypatch.setattr(hybrid_hr_ble, "HybridHRBleakClient", lambda: watch)

    coordinator = await hybrid_hr_ble.async_connect("AA:BB:CC:DD:EE:FF", SECRET_KEY.hex())

    assert coordinator.client is watch
    assert Channel.FILE_DATA in watch.callbacks


async def test_async_connect_failure(monkeypatch, watch):
    """A failed connection raises a transport error."""

    async def _refuse(address: str) -> bool:
        return False

    watch.connect = _refuse
    monkeypatch.setattr(hybrid_hr_ble, "HybridHRBleakClient", lambda: watch)

    with pytest.raises(TransportError):
        await hybrid_hr_ble.async_connect("AA:BB:CC:DD:EE:FF", SECRET_KEY.hex())
