"""Coordinator tying the Hybrid HR protocol engines to one watch connection."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Final

from .const import CONNECTION_PARAMETERS_REQUEST
from .core.activity import ActivityRecordDecoder
from .core.ble_interface import Channel, HybridHRBLEInterface
from .core.configuration import (
    build_file_container,
    build_time_config,
    parse_battery_status,
    parse_configuration_items,
    unwrap_file_container,
)
from .core.encrypted_read import EncryptedReadCoordinator
from .core.errors import NotAuthenticatedError, TransportError, WriteFailedError
from .core.file_transfer import FileTransferEngine
from .core.link import LinkGuard, ResponseRouter
from .core.models import (
    ActivityData,
    BatteryStatus,
    FileHandle,
    ProtocolSettings,
    SessionCredentials,
)
from .core.protocol import FILE_END_OFFSET, parse_heart_rate_measurement
from .core.session_manager import AuthenticationEngine

_LOGGER = logging.getLogger(__name__)

# Characteristics whose notifications feed the response router
ROUTED_CHANNELS: Final = (
    Channel.CONTROL,
    Channel.FILE_OPERATIONS,
    Channel.FILE_DATA,
    Channel.AUTHENTICATION,
)


class HybridHRCoordinator:
    """Class to manage all protocol exchanges with one watch."""

    def __init__(
        self,
        client: HybridHRBLEInterface,
        secret_key: bytes | str | None = None,
        settings: ProtocolSettings | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            client: Connected (or connectable) transport.
            secret_key: The 16-byte device key, raw or hex encoded.
            settings: Timeouts and MTU override.
        """
        self.client = client
        self.settings = settings or ProtocolSettings()
        self.router = ResponseRouter()
        self.link = LinkGuard()
        self.authentication = AuthenticationEngine(
            client, self.router, self.link, self.settings, secret_key
        )
        self.file_transfer = FileTransferEngine(
            client, self.router, self.link, self.settings
        )
        self.encrypted_read = EncryptedReadCoordinator(
            client, self.router, self.link, self.authentication, self.settings
        )

    async def async_setup(self) -> None:
        """Route notifications of the protocol characteristics."""
        for channel in ROUTED_CHANNELS:
            await self.client.register_notification_callback(
                channel, self._notification_handler(channel)
            )
        _LOGGER.debug("Notification routing set up")

    def _notification_handler(self, channel: Channel) -> Callable[[bytes], None]:
        def _handle(data: bytes) -> None:
            self.router.dispatch(channel, data)

        return _handle

    @property
    def credentials(self) -> SessionCredentials | None:
        return self.authentication.credentials

    async def authenticate(
        self, secret_key: bytes | str | None = None
    ) -> SessionCredentials:
        """Run a handshake with the watch."""
        return await self.authentication.authenticate(secret_key)

    async def initialize_after_authentication(self) -> bool:
        """Confirm and pair after the first handshake."""
        return await self.authentication.initialize_after_authentication()

    async def put_file(self, handle: int, data: bytes) -> None:
        await self.file_transfer.put_file(handle, data)

    async def get_file(
        self,
        handle: int,
        start_offset: int = 0,
        end_offset: int = FILE_END_OFFSET,
    ) -> bytes:
        return await self.file_transfer.get_file(handle, start_offset, end_offset)

    async def fetch_encrypted_file(self, handle: int) -> bytes:
        """Read an encrypted file; a fresh handshake runs first."""
        return await self.encrypted_read.fetch(handle)

    async def fetch_activity_data(self) -> ActivityData:
        """Download and decode the activity file."""
        data = await self.fetch_encrypted_file(FileHandle.ACTIVITY_FILE)
        return ActivityRecordDecoder().decode(data)

    async def read_battery_status(self) -> BatteryStatus:
        """Read battery state from the configuration file."""
        data = await self.fetch_encrypted_file(FileHandle.CONFIGURATION)
        items = parse_configuration_items(unwrap_file_container(data))
        status = parse_battery_status(items)
        _LOGGER.info(
            "Battery at %d%% (%d mV)", status.percentage, status.voltage_millivolts
        )
        return status

    async def sync_time(self, now: float | None = None) -> None:
        """Set the watch clock to the local time.

        Args:
            now: Unix time to send; defaults to the current time.
        """
        if not self.authentication.is_authenticated():
            raise NotAuthenticatedError("Authenticate before syncing time")

        timestamp = time.time() if now is None else now
        seconds = int(timestamp)
        millis = int((timestamp - seconds) * 1000)
        offset_minutes = int(time.localtime(seconds).tm_gmtoff // 60)

        _LOGGER.debug("Syncing time %d (UTC offset %d min)", seconds, offset_minutes)
        payload = build_time_config(seconds, millis, offset_minutes)
        await self.put_file(
            FileHandle.CONFIGURATION,
            build_file_container(FileHandle.CONFIGURATION, payload),
        )

    async def set_connection_parameters(self) -> None:
        """Request the preferred connection interval from the watch."""
        async with self.link.claim("set_connection_parameters"):
            try:
                await self.client.write_characteristic(
                    Channel.CONTROL, CONNECTION_PARAMETERS_REQUEST
                )
            except TransportError as err:
                raise WriteFailedError(str(err)) from err

    async def start_heart_rate_monitoring(
        self, callback: Callable[[int], None]
    ) -> None:
        """Subscribe to the standard heart rate measurement characteristic.

        Args:
            callback: Called with beats per minute for each plausible reading.
        """

        def _handle(data: bytes) -> None:
            heart_rate = parse_heart_rate_measurement(data)
            if heart_rate is not None:
                callback(heart_rate)

        await self.client.register_notification_callback(Channel.HEART_RATE, _handle)
        _LOGGER.info("Heart rate monitoring started")

    async def async_shutdown(self) -> None:
        """Forget the session and disconnect."""
        self.authentication.invalidate()
        await self.client.disconnect()
