"""The Hybrid HR BLE library."""

from __future__ import annotations

import logging

from .ble_client import HybridHRBleakClient
from .coordinator import HybridHRCoordinator
from .core.errors import TransportError
from .core.models import ProtocolSettings

_LOGGER = logging.getLogger(__name__)

__version__ = "0.1.0"


async def async_connect(
    address: str,
    secret_key: bytes | str,
    settings: ProtocolSettings | None = None,
) -> HybridHRCoordinator:
    """Connect to a watch and return a ready coordinator.

    Args:
        address: The MAC address (or platform identifier) of the watch.
        secret_key: The 16-byte device key, raw or hex encoded.
        settings: Timeouts and MTU override.

    Returns:
        A coordinator with notification routing in place.
    """
    client = HybridHRBleakClient()
    if not await client.connect(address):
        raise TransportError(f"Failed to connect to watch at {address}")

    coordinator = HybridHRCoordinator(client, secret_key, settings)
    try:
        await coordinator.async_setup()
    except TransportError:
        await client.disconnect()
        raise

    _LOGGER.info("Hybrid HR watch at %s ready", address)
    return coordinator
