"""Bleak BLE client implementation for Hybrid HR watches."""

import logging
from collections.abc import Callable
from typing import Any

from bleak import BleakClient
from bleak.exc import BleakError

from .const import DEFAULT_MTU
from .core.ble_interface import Channel, HybridHRBLEInterface
from .core.errors import TransportError

_LOGGER = logging.getLogger(__name__)

# ATT header bytes not available to the payload
ATT_HEADER_SIZE = 3


class HybridHRBleakClient(HybridHRBLEInterface):
    """Concrete implementation of HybridHRBLEInterface on top of bleak.

    Any ``BleakClient`` compatible object may be supplied, which lets callers
    reuse a connection established elsewhere (e.g. through a proxy).
    """

    def __init__(self, client: BleakClient | None = None) -> None:
        """Initialize the BLE client.

        Args:
            client: An existing BleakClient to wrap, if any.
        """
        self._client = client
        self._address: str | None = None
        self._subscribed: set[Channel] = set()

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to the watch."""
        return self._client is not None and self._client.is_connected

    @property
    def mtu_size(self) -> int:
        """Usable payload size of a single write."""
        if not self.is_connected or not self._client:
            return DEFAULT_MTU
        return self._client.mtu_size - ATT_HEADER_SIZE

    async def connect(self, address: str) -> bool:
        """Connect to the watch.

        Args:
            address: The MAC address (or platform identifier) of the watch.

        Returns:
            True if connection was successful, False otherwise.
        """
        self._address = address
        _LOGGER.debug("Attempting to connect to watch at %s", address)

        try:
            if self._client is None or self._client.address != address:
                self._client = BleakClient(address)
            await self._client.connect()
            _LOGGER.info("Successfully connected to watch at %s", address)
            return True
        except BleakError as err:
            _LOGGER.error(
                "Bleak error while connecting to watch at %s: %s",
                address,
                err,
            )
            self._client = None
            return False

    async def disconnect(self) -> None:
        """Disconnect from the watch."""
        if self._client:
            _LOGGER.debug("Disconnecting from watch at %s", self._address)
            try:
                await self._client.disconnect()
            except BleakError as err:
                _LOGGER.warning("Error during disconnect: %s", err)
            finally:
                self._client = None
                self._subscribed.clear()

    async def write_characteristic(
        self, channel: Channel, data: bytes, response: bool = True
    ) -> None:
        """Write data to one of the watch characteristics.

        Args:
            channel: The characteristic to write to.
            data: The bytes to write.
            response: Whether to request a write with response.
        """
        if not self.is_connected or not self._client:
            raise TransportError("Cannot write: not connected to watch")

        try:
            await self._client.write_gatt_char(channel.value, data, response=response)
        except BleakError as err:
            _LOGGER.error("Error writing to %s characteristic: %s", channel.name, err)
            raise TransportError(str(err)) from err

    async def register_notification_callback(
        self, channel: Channel, callback: Callable[[bytes], None]
    ) -> None:
        """Register a callback for notifications on a characteristic.

        Args:
            channel: The characteristic to subscribe to.
            callback: A function that takes bytes as an argument.
        """
        if not self.is_connected or not self._client:
            raise TransportError("Cannot register notification: not connected to watch")

        def _handle_notification(_: Any, data: bytearray) -> None:
            """Handle incoming notification data."""
            callback(bytes(data))

        try:
            if channel in self._subscribed:
                await self._client.stop_notify(channel.value)
            await self._client.start_notify(channel.value, _handle_notification)
            self._subscribed.add(channel)
            _LOGGER.debug("Subscribed to %s notifications", channel.name)
        except BleakError as err:
            _LOGGER.error(
                "Error starting notifications on %s characteristic: %s",
                channel.name,
                err,
            )
            raise TransportError(str(err)) from err
