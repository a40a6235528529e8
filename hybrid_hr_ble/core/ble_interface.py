"""Interface for Hybrid HR BLE communication."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import Final

# Fossil Hybrid HR Service and Characteristic UUIDs
FOSSIL_SERVICE_UUID: Final = "3dda0001-957f-7d4a-34a6-74696673696d"
FOSSIL_CONTROL_CHAR_UUID: Final = "3dda0002-957f-7d4a-34a6-74696673696d"
FOSSIL_FILE_OPERATIONS_CHAR_UUID: Final = "3dda0003-957f-7d4a-34a6-74696673696d"
FOSSIL_FILE_DATA_CHAR_UUID: Final = "3dda0004-957f-7d4a-34a6-74696673696d"
FOSSIL_AUTHENTICATION_CHAR_UUID: Final = "3dda0005-957f-7d4a-34a6-74696673696d"
FOSSIL_EVENTS_CHAR_UUID: Final = "3dda0006-957f-7d4a-34a6-74696673696d"
HEART_RATE_MEASUREMENT_CHAR_UUID: Final = "00002a37-0000-1000-8000-00805f9b34fb"


class Channel(str, Enum):
    """GATT characteristics used by the watch protocol."""

    CONTROL = FOSSIL_CONTROL_CHAR_UUID
    FILE_OPERATIONS = FOSSIL_FILE_OPERATIONS_CHAR_UUID
    FILE_DATA = FOSSIL_FILE_DATA_CHAR_UUID
    AUTHENTICATION = FOSSIL_AUTHENTICATION_CHAR_UUID
    EVENTS = FOSSIL_EVENTS_CHAR_UUID
    HEART_RATE = HEART_RATE_MEASUREMENT_CHAR_UUID


class HybridHRBLEInterface(ABC):
    """Abstract base class for Hybrid HR BLE clients."""

    @abstractmethod
    async def connect(self, address: str) -> bool:
        """Connect to the watch.

        Args:
            address: The MAC address (or platform identifier) of the watch.

        Returns:
            True if connection was successful, False otherwise.
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the watch."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if currently connected to the watch."""

    @property
    @abstractmethod
    def mtu_size(self) -> int:
        """Usable payload size of a single write, in bytes."""

    @abstractmethod
    async def write_characteristic(
        self, channel: Channel, data: bytes, response: bool = True
    ) -> None:
        """Write data to one of the watch characteristics.

        Args:
            channel: The characteristic to write to.
            data: The bytes to write.
            response: Whether to request a write with response.

        Raises:
            TransportError: If the write could not be performed.
        """

    @abstractmethod
    async def register_notification_callback(
        self, channel: Channel, callback: Callable[[bytes], None]
    ) -> None:
        """Register a callback for notifications on a characteristic.

        Args:
            channel: The characteristic to subscribe to.
            callback: A function that takes bytes as an argument.
        """
