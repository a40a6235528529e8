"""Decoder for the activity file (handle 0x0100).

The file is a 52-byte header followed by a stream of type-tagged packets
and a 4-byte CRC trailer. Most packets are per-minute samples; a few carry
timestamps, SpO2 readings and workout summaries. The stream has no length
fields for most packet kinds, so unknown bytes are skipped one at a time.
"""

from __future__ import annotations

import logging
from typing import Final

from pydantic import BaseModel, ConfigDict

from ..const import (
    ACTIVITY_FILE_MIN_SIZE,
    ACTIVITY_FILE_VERSION,
    ACTIVITY_SAMPLE_INTERVAL,
)
from .codec import ByteReader
from .errors import FileTooSmallError
from .models import (
    ActivityData,
    ActivityKind,
    ActivitySample,
    SpO2Sample,
    WearingState,
    WorkoutSummary,
)

_LOGGER = logging.getLogger(__name__)

PACKET_SAMPLE: Final = 0xCE
PACKET_WORKOUT_SUMMARY: Final = 0xE0
PACKET_WORKOUT_INFO: Final = 0xE2
PACKET_WORKOUT_GPS: Final = 0xDD
PACKET_SPO2: Final = 0xD6
PACKET_SHORT_CB: Final = 0xCB
PACKET_SHORT_CC: Final = 0xCC
PACKET_SHORT_CF: Final = 0xCF
PACKET_UNKNOWN_C2: Final = 0xC2

# Bytes that may start a packet; used for lookahead
VALID_FLAGS: Final = frozenset(
    {
        PACKET_SAMPLE,
        PACKET_WORKOUT_GPS,
        PACKET_SHORT_CB,
        PACKET_SHORT_CC,
        PACKET_SHORT_CF,
        PACKET_SPO2,
        PACKET_WORKOUT_INFO,
    }
)

WORKOUT_ATTRIBUTE_COUNT: Final = 14
WORKOUT_ATTRIBUTE_DURATION: Final = 0x02
WORKOUT_ATTRIBUTE_TYPE: Final = 0x09

_WORKOUT_TYPES: Final = {
    0x01: ActivityKind.RUNNING,
    0x02: ActivityKind.CYCLING,
    0x03: ActivityKind.TREADMILL,
    0x04: ActivityKind.CROSS_TRAINER,
    0x05: ActivityKind.WEIGHTLIFTING,
    0x06: ActivityKind.TRAINING,
    0x08: ActivityKind.WALKING,
    0x09: ActivityKind.ROWING_MACHINE,
    0x0C: ActivityKind.HIKING,
    0x0D: ActivityKind.SPINNING,
}


class ActivityFileHeader(BaseModel):
    """Fixed header of an activity file."""

    model_config = ConfigDict(frozen=True)

    version: int
    start_timestamp: int
    timezone_offset_minutes: int
    file_id: int


def workout_kind(code: int) -> ActivityKind:
    """Map a workout type code to an activity kind."""
    return _WORKOUT_TYPES.get(code, ActivityKind.ACTIVITY)


def parse_header(data: bytes) -> ActivityFileHeader:
    """Parse the activity file header.

    Args:
        data: The whole activity file.

    Returns:
        The parsed header.
    """
    if len(data) < ACTIVITY_FILE_MIN_SIZE:
        raise FileTooSmallError(len(data), ACTIVITY_FILE_MIN_SIZE)

    reader = ByteReader(data, 2)
    version = reader.u16()
    reader.position = 8
    start_timestamp = reader.u32()
    timezone_offset = reader.i16()
    file_id = reader.u16()
    return ActivityFileHeader(
        version=version,
        start_timestamp=start_timestamp,
        timezone_offset_minutes=timezone_offset,
        file_id=file_id,
    )


class _SampleBuilder:
    """Mutable accumulator for the sample being decoded."""

    def __init__(self, sample_id: int) -> None:
        self.id = sample_id
        self.step_count = 0
        self.heart_rate = 0
        self.variability = 0
        self.max_variability = 0
        self.calories = 0
        self.is_active = False

    def build(
        self, timestamp: int, heart_rate_quality: int, wearing_state: WearingState
    ) -> ActivitySample:
        return ActivitySample(
            id=self.id,
            timestamp=timestamp,
            step_count=self.step_count,
            heart_rate=self.heart_rate,
            heart_rate_quality=heart_rate_quality,
            variability=self.variability,
            max_variability=self.max_variability,
            calories=self.calories,
            is_active=self.is_active,
            wearing_state=wearing_state,
        )


class ActivityRecordDecoder:
    """Single-pass decoder turning an activity file into samples."""

    def __init__(self) -> None:
        self._data = b""
        self._reader = ByteReader(b"")
        self._result = ActivityData()
        self._current: _SampleBuilder | None = None
        self._timestamp = 0
        self._next_id = 1
        self._wearing_state = WearingState.WEARING
        self._heart_rate_quality = 0

    def decode(self, data: bytes) -> ActivityData:
        """Decode an activity file.

        Args:
            data: The decrypted activity file.

        Returns:
            Samples, SpO2 readings and workouts in file order.
        """
        header = parse_header(data)
        if header.version != ACTIVITY_FILE_VERSION:
            _LOGGER.warning(
                "Unexpected activity file version %d (expected %d)",
                header.version,
                ACTIVITY_FILE_VERSION,
            )
        _LOGGER.debug(
            "Decoding activity file %d: %d bytes from %d",
            header.file_id,
            len(data),
            header.start_timestamp,
        )

        self._data = data
        self._reader = ByteReader(data, ACTIVITY_FILE_MIN_SIZE)
        self._result = ActivityData()
        self._current = None
        self._timestamp = header.start_timestamp
        self._next_id = 1
        self._wearing_state = WearingState.WEARING
        self._heart_rate_quality = 0

        self._finish_sample()

        # The last four bytes are the file CRC
        end = len(data) - 4
        while self._reader.position < end:
            packet_type = self._reader.u8()
            try:
                self._decode_packet(packet_type)
            except IndexError:
                _LOGGER.warning(
                    "Activity file truncated inside packet 0x%02x", packet_type
                )
                break

        result = self._result
        _LOGGER.debug(
            "Decoded %d samples, %d SpO2 readings, %d workouts",
            len(result.samples),
            len(result.spo2_samples),
            len(result.workout_summaries),
        )
        return result

    def _decode_packet(self, packet_type: int) -> None:
        reader = self._reader
        if packet_type == PACKET_SAMPLE:
            self._decode_sample()
        elif packet_type == PACKET_UNKNOWN_C2:
            reader.skip(3)
        elif packet_type == PACKET_WORKOUT_INFO:
            reader.skip(9)
            following = reader.peek()
            if following is not None and following not in VALID_FLAGS:
                reader.skip(6)
        elif packet_type == PACKET_WORKOUT_SUMMARY:
            self._decode_workout_summary()
        elif packet_type == PACKET_WORKOUT_GPS:
            reader.skip(20)
        elif packet_type == PACKET_SPO2:
            reader.skip(1)
            self._add_spo2(reader.u8())
        elif packet_type in (PACKET_SHORT_CB, PACKET_SHORT_CC, PACKET_SHORT_CF):
            reader.skip(1)
        else:
            _LOGGER.debug(
                "Skipping unknown byte 0x%02x at %d", packet_type, reader.position - 1
            )

    def _decode_sample(self) -> None:
        reader = self._reader
        self._decode_wear_byte(reader.u8())
        f1 = reader.u8()
        f2 = reader.u8()

        if f1 == PACKET_WORKOUT_INFO and f2 == 0x04:
            self._timestamp = reader.u32()
            reader.skip(2)  # duration
            reader.skip(2)  # offset
        elif f1 == 0xD3:
            self._skip_workout_block()
        elif f1 in (PACKET_SHORT_CF, 0xDF):
            return
        elif f1 == PACKET_SPO2:
            self._add_spo2(reader.u8())
            reader.skip(3)
        elif f1 == 0xFE and f2 == 0xFE:
            if reader.peek() == 0xFE:
                reader.skip(1)
        elif reader.peek(2) in VALID_FLAGS:
            self._decode_variability(f1, f2)
            self._decode_heart_rate_and_calories()
            self._finish_sample()
            return

        self._decode_trailing_sample()

    def _skip_workout_block(self) -> None:
        reader = self._reader
        reader.skip(2)
        marker = reader.u8()
        following = reader.peek()

        if marker == 0xDF:
            reader.skip(1)
            if reader.peek(-3) == 0x08:
                reader.skip(11)
            elif reader.peek(4) is not None and reader.peek(4) not in VALID_FLAGS:
                reader.skip(3)
        elif marker == PACKET_WORKOUT_INFO and following == 0x04:
            reader.skip(13)
            if reader.peek() is not None and reader.peek() not in VALID_FLAGS:
                reader.skip(3)
        elif reader.peek(4) is not None and reader.peek(4) not in VALID_FLAGS:
            reader.skip(1)

    def _decode_trailing_sample(self) -> None:
        reader = self._reader
        if reader.position >= len(reader) - 4:
            return
        lower = reader.u8()
        higher = reader.u8()
        self._decode_variability(lower, higher)
        self._decode_heart_rate_and_calories()
        self._finish_sample()

    def _decode_wear_byte(self, value: int) -> None:
        wear_bits = (value & 0x18) >> 3
        if wear_bits == 0:
            self._wearing_state = WearingState.NOT_WEARING
        elif wear_bits == 1:
            self._wearing_state = WearingState.WEARING
        else:
            self._wearing_state = WearingState.UNKNOWN
        self._heart_rate_quality = (value & 0xE0) >> 5

    def _decode_variability(self, lower: int, higher: int) -> None:
        sample = self._sample()
        if lower & 0x01:
            sample.max_variability = (higher & 0x03) * 25 + 1
            sample.step_count = (lower & 0x0E) >> 1
            if lower & 0x80:
                sample.variability = (
                    512 + ((lower >> 4) & 0x07) * 64 + ((higher >> 2) & 0x3F)
                )
            else:
                sample.variability = ((lower & 0x70) << 2) | ((higher >> 2) & 0x3F)
        else:
            sample.step_count = (lower & 0xFE) >> 1
            sample.variability = higher * higher * 64
            sample.max_variability = 10000

    def _decode_heart_rate_and_calories(self) -> None:
        sample = self._sample()
        sample.heart_rate = self._reader.u8()
        calories = self._reader.u8()
        sample.calories = calories & 0x3F
        sample.is_active = bool(calories & 0x40)

    def _decode_workout_summary(self) -> None:
        reader = self._reader
        start = reader.position
        duration = 0
        kind = ActivityKind.ACTIVITY

        for _ in range(WORKOUT_ATTRIBUTE_COUNT):
            if reader.remaining < 2:
                break
            attribute = reader.u8()
            length = reader.u8()
            if reader.remaining < length:
                break
            payload = reader.read(length)
            if attribute == WORKOUT_ATTRIBUTE_DURATION and length >= 4:
                duration = int.from_bytes(payload[:4], "little")
            elif attribute == WORKOUT_ATTRIBUTE_TYPE and length >= 1:
                kind = workout_kind(payload[0])

        end_time = self._timestamp
        self._result.workout_summaries.append(
            WorkoutSummary(
                activity_kind=kind,
                start_time=end_time - duration,
                end_time=end_time,
                raw_data=self._data[start : reader.position],
            )
        )
        _LOGGER.debug("Workout summary: %s for %ds", kind.name, duration)

    def _add_spo2(self, value: int) -> None:
        self._result.spo2_samples.append(SpO2Sample(timestamp=self._timestamp, spo2=value))

    def _sample(self) -> _SampleBuilder:
        if self._current is None:
            self._current = _SampleBuilder(self._next_id)
            self._next_id += 1
        return self._current

    def _finish_sample(self) -> None:
        if self._current is not None:
            self._result.samples.append(
                self._current.build(
                    self._timestamp, self._heart_rate_quality, self._wearing_state
                )
            )
            self._timestamp += ACTIVITY_SAMPLE_INTERVAL
        self._current = _SampleBuilder(self._next_id)
        self._next_id += 1
