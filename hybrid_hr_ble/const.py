"""Constants for the Hybrid HR BLE library."""

from typing import Final

# Default exchange timeouts, in seconds
DEFAULT_AUTH_TIMEOUT: Final = 10.0
DEFAULT_TRANSFER_TIMEOUT: Final = 30.0
DEFAULT_ENCRYPTED_READ_TIMEOUT: Final = 20.0
DEFAULT_EXCHANGE_TIMEOUT: Final = 10.0
DEFAULT_CONFIRMATION_TIMEOUT: Final = 30.0
DEFAULT_PAIRING_SETTLE_DELAY: Final = 0.5

# Usable payload per write when the transport cannot report one
DEFAULT_MTU: Final = 180

ACTIVITY_FILE_MIN_SIZE: Final = 52
ACTIVITY_FILE_VERSION: Final = 22
ACTIVITY_SAMPLE_INTERVAL: Final = 60

# Preferred connection interval 15ms, latency 45, supervision 6s
CONNECTION_PARAMETERS_REQUEST: Final = bytes(
    [0x02, 0x09, 0x0C, 0x00, 0x0C, 0x00, 0x2D, 0x00, 0x58, 0x02]
)
