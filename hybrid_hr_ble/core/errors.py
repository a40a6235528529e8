"""Exceptions raised by the Hybrid HR protocol engine.

Errors are organised along two axes. The kind classes (timeout, rejection,
malformed response...) are shared by every exchange, while the component
classes (:class:`AuthError`, :class:`FileTransferError`...) say which part
of the protocol failed. Concrete errors inherit from both, so callers can
catch whichever axis they care about.
"""

from __future__ import annotations


class HybridHRError(Exception):
    """Base class for all Hybrid HR errors."""


class TransportError(HybridHRError):
    """The BLE transport failed to perform an operation."""


class OperationInProgressError(HybridHRError):
    """Another exchange currently owns the BLE link."""

    def __init__(self, active: str | None, requested: str) -> None:
        super().__init__(
            f"Cannot start {requested}: {active or 'another operation'} is in progress"
        )
        self.active = active
        self.requested = requested


class NotAuthenticatedError(HybridHRError):
    """The operation requires a completed handshake."""


class ProtocolTimeoutError(HybridHRError, TimeoutError):
    """The watch did not answer in time."""


class InvalidResponseError(HybridHRError):
    """The watch answered with a frame that could not be interpreted."""


class WriteFailedError(HybridHRError):
    """A request could not be written to the watch."""


class RejectedError(HybridHRError):
    """The watch answered with a non-success status code."""

    def __init__(self, status: int, message: str | None = None) -> None:
        super().__init__(message or f"Rejected by watch with status 0x{status:02x}")
        self.status = status


# --- Authentication ---


class AuthError(HybridHRError):
    """Base class for authentication failures."""


class NoSecretKeyError(AuthError):
    """No secret key was configured."""


class InvalidKeyFormatError(AuthError, ValueError):
    """The secret key is not 16 bytes (or 32 hex characters)."""


class ChallengeMismatchError(AuthError):
    """The watch did not echo the phone random correctly."""

    def __init__(self, expected: bytes, actual: bytes) -> None:
        super().__init__(
            f"Challenge mismatch: expected {expected.hex()}, got {actual.hex()}"
        )
        self.expected = expected
        self.actual = actual


class AuthTimeoutError(AuthError, ProtocolTimeoutError):
    """The handshake did not complete in time."""


class AuthRejectedError(AuthError, RejectedError):
    """The watch refused the handshake or the pairing request."""


class AuthInvalidResponseError(AuthError, InvalidResponseError):
    """Malformed authentication frame."""


class AuthWriteFailedError(AuthError, WriteFailedError):
    """An authentication frame could not be written."""


# --- File transfer ---


class FileTransferError(HybridHRError):
    """Base class for file transfer failures."""


class TransferInProgressError(FileTransferError, OperationInProgressError):
    """A transfer was requested while another exchange owns the link."""


class TransferRejectedError(FileTransferError, RejectedError):
    """The watch answered a transfer frame with an error status."""


class InvalidCRCError(FileTransferError):
    """A CRC reported by the watch does not match the local one."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"CRC mismatch: expected 0x{expected:08x}, got 0x{actual:08x}"
        )
        self.expected = expected
        self.actual = actual


class UnexpectedHandleError(FileTransferError):
    """The watch answered for a different file handle."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Unexpected file handle: expected 0x{expected:04x}, got 0x{actual:04x}"
        )
        self.expected = expected
        self.actual = actual


class InvalidDecryptionError(FileTransferError):
    """No IV stride produced a plausible packet header."""

    def __init__(self, packet_index: int) -> None:
        super().__init__(f"Could not decrypt packet {packet_index}")
        self.packet_index = packet_index


class EmptyFileError(FileTransferError):
    """The watch announced a zero-length file."""


class TransferTimeoutError(FileTransferError, ProtocolTimeoutError):
    """The transfer did not complete in time."""


class TransferInvalidResponseError(FileTransferError, InvalidResponseError):
    """Malformed file transfer frame."""


class TransferWriteFailedError(FileTransferError, WriteFailedError):
    """A transfer frame could not be written."""


# --- Payload decoding ---


class ActivityParseError(HybridHRError):
    """An activity file could not be decoded."""


class FileTooSmallError(ActivityParseError):
    """The activity file is shorter than its fixed header."""

    def __init__(self, size: int, minimum: int) -> None:
        super().__init__(f"Activity file too small: {size} bytes (minimum {minimum})")
        self.size = size
        self.minimum = minimum


class ConfigurationError(HybridHRError):
    """A configuration file or item is missing or malformed."""
