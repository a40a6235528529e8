"""
Core models for the Hybrid HR protocol engine.
"""

from __future__ import annotations

from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..const import (
    DEFAULT_AUTH_TIMEOUT,
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_ENCRYPTED_READ_TIMEOUT,
    DEFAULT_EXCHANGE_TIMEOUT,
    DEFAULT_PAIRING_SETTLE_DELAY,
    DEFAULT_TRANSFER_TIMEOUT,
)
from .crypto import KEY_SIZE, RANDOM_SIZE


class FileHandle(IntEnum):
    """Well-known watch files, encoded as ``(major << 8) | minor``."""

    OTA_FILE = 0x0000
    ACTIVITY_FILE = 0x0100
    HARDWARE_LOG_FILE = 0x0200
    FONT_FILE = 0x0300
    MUSIC_INFO = 0x0400
    UI_CONTROL = 0x0500
    HAND_ACTIONS = 0x0600
    ASSET_BACKGROUND_IMAGES = 0x0700
    ASSET_NOTIFICATION_IMAGES = 0x0701
    ASSET_TRANSLATIONS = 0x0702
    ASSET_REPLY_IMAGES = 0x0703
    CONFIGURATION = 0x0800
    NOTIFICATION_PLAY = 0x0900
    ALARMS = 0x0A00
    DEVICE_INFO = 0x0B00
    NOTIFICATION_FILTER = 0x0C00
    WATCH_PARAMETERS = 0x0E00
    LOOK_UP_TABLE = 0x0F00
    RATE = 0x1000
    REPLY_MESSAGES = 0x1300
    APP_CODE = 0x15FE

    @property
    def major(self) -> int:
        return handle_major(self)

    @property
    def minor(self) -> int:
        return handle_minor(self)


def handle_major(handle: int) -> int:
    """Major byte of a (possibly dynamic) file handle."""
    return (handle >> 8) & 0xFF


def handle_minor(handle: int) -> int:
    """Minor byte of a (possibly dynamic) file handle."""
    return handle & 0xFF


def handle_name(handle: int) -> str:
    """Readable name of a handle for log messages."""
    try:
        return FileHandle(handle).name
    except ValueError:
        return f"0x{handle:04x}"


class SessionCredentials(BaseModel):
    """Key material produced by one handshake.

    A new instance is created for every handshake; instances are never mutated.
    """

    model_config = ConfigDict(frozen=True)

    secret_key: bytes
    phone_random: bytes
    watch_random: bytes

    @field_validator("secret_key")
    @classmethod
    def _check_key(cls, value: bytes) -> bytes:
        if len(value) != KEY_SIZE:
            raise ValueError(f"secret_key must be {KEY_SIZE} bytes")
        return value

    @field_validator("phone_random", "watch_random")
    @classmethod
    def _check_random(cls, value: bytes) -> bytes:
        if len(value) != RANDOM_SIZE:
            raise ValueError(f"randoms must be {RANDOM_SIZE} bytes")
        return value


class TransferDirection(IntEnum):
    """Direction of a plaintext file transfer."""

    PUT = 0
    GET = 1


class TransferState(IntEnum):
    """Lifecycle of a plaintext file transfer."""

    IDLE = 0
    HEADER_SENT = 1
    AWAITING_ACK = 2
    SENDING_DATA = 3
    CLOSING = 4
    COMPLETE = 5
    FAILED = 6


class TransferSession(BaseModel):
    """State of the single in-flight file transfer."""

    handle: int
    direction: TransferDirection
    total_length: int = 0
    bytes_transferred: int = 0
    bytes_acknowledged: int = 0
    chunks_sent: int = 0
    sequence_counter: int = 0
    expected_crc32: int | None = None
    state: TransferState = TransferState.IDLE


class ReadPhase(IntEnum):
    """Phase of an encrypted read."""

    LOOKUP = 0
    ENCRYPTED_GET = 1


class EncryptedReadSession(BaseModel):
    """State of the single in-flight encrypted read."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    handle: int
    phase: ReadPhase = ReadPhase.LOOKUP
    dynamic_handle: int | None = None
    lookup_expected_size: int = 0
    file_size: int = 0
    decrypted_buffer: bytearray = Field(default_factory=bytearray)
    original_iv: bytes = b""
    iv_incrementor: int | None = None
    packet_count: int = 0


class WearingState(IntEnum):
    """Whether the watch was worn during a sample."""

    WEARING = 0
    NOT_WEARING = 1
    UNKNOWN = 2


class ActivityKind(IntEnum):
    """Workout kinds reported in workout summaries."""

    ACTIVITY = 0
    RUNNING = 1
    CYCLING = 2
    TREADMILL = 3
    CROSS_TRAINER = 4
    WEIGHTLIFTING = 5
    TRAINING = 6
    WALKING = 8
    ROWING_MACHINE = 9
    HIKING = 12
    SPINNING = 13


class ActivitySample(BaseModel):
    """One minute of activity data."""

    model_config = ConfigDict(frozen=True)

    id: int
    timestamp: int
    step_count: int = 0
    heart_rate: int = 0
    heart_rate_quality: int = 0
    variability: int = 0
    max_variability: int = 0
    calories: int = 0
    is_active: bool = False
    wearing_state: WearingState = WearingState.UNKNOWN


class SpO2Sample(BaseModel):
    """A blood oxygen reading."""

    model_config = ConfigDict(frozen=True)

    timestamp: int
    spo2: int


class WorkoutSummary(BaseModel):
    """A workout recorded on the watch."""

    model_config = ConfigDict(frozen=True)

    activity_kind: ActivityKind
    start_time: int
    end_time: int
    raw_data: bytes = b""

    @property
    def duration(self) -> int:
        return self.end_time - self.start_time


class ActivityData(BaseModel):
    """Everything decoded from one activity file."""

    samples: list[ActivitySample] = Field(default_factory=list)
    spo2_samples: list[SpO2Sample] = Field(default_factory=list)
    workout_summaries: list[WorkoutSummary] = Field(default_factory=list)

    @property
    def total_steps(self) -> int:
        return sum(sample.step_count for sample in self.samples)

    @property
    def total_calories(self) -> int:
        return sum(sample.calories for sample in self.samples)

    @property
    def average_heart_rate(self) -> float | None:
        """Mean heart rate over samples with a reading, or None."""
        readings = [sample.heart_rate for sample in self.samples if sample.heart_rate > 0]
        if not readings:
            return None
        return sum(readings) / len(readings)


class BatteryStatus(BaseModel):
    """Battery state read from the configuration file."""

    model_config = ConfigDict(frozen=True)

    percentage: int
    voltage_millivolts: int


class ProtocolSettings(BaseModel):
    """Timeouts and link parameters, in seconds and bytes."""

    model_config = ConfigDict(frozen=True)

    auth_timeout: float = Field(default=DEFAULT_AUTH_TIMEOUT, gt=0)
    transfer_timeout: float = Field(default=DEFAULT_TRANSFER_TIMEOUT, gt=0)
    encrypted_read_timeout: float = Field(default=DEFAULT_ENCRYPTED_READ_TIMEOUT, gt=0)
    exchange_timeout: float = Field(default=DEFAULT_EXCHANGE_TIMEOUT, gt=0)
    confirmation_timeout: float = Field(default=DEFAULT_CONFIRMATION_TIMEOUT, gt=0)
    pairing_settle_delay: float = Field(default=DEFAULT_PAIRING_SETTLE_DELAY, ge=0)
    mtu: int | None = Field(default=None, ge=2)
