"""Encrypted file reads.

Reading a protected file takes three exchanges on one link claim: a fresh
handshake, a lookup resolving the dynamic handle of the file type, and an
encrypted get whose packets are AES-CTR encrypted with an IV derived from
the handshake randoms. The watch advances the IV by an undocumented stride
per packet; it is recovered by trial decryption of the second packet.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Final

from .ble_interface import Channel, HybridHRBLEInterface
from .codec import crc32, read_u16
from .crypto import aes_ctr_crypt, build_file_iv, increment_iv
from .errors import (
    EmptyFileError,
    InvalidDecryptionError,
    TransferInProgressError,
    TransferInvalidResponseError,
    TransferTimeoutError,
    UnexpectedHandleError,
)
from .file_transfer import check_crc, check_status, write_frame
from .link import LinkGuard, ResponseRouter
from .models import (
    EncryptedReadSession,
    ProtocolSettings,
    ReadPhase,
    SessionCredentials,
    handle_name,
)
from .protocol import (
    LAST_PACKET_FLAG,
    ResponseKind,
    build_file_get_request,
    build_file_lookup_request,
    is_full_data_ack,
    parse_file_response,
)
from .session_manager import AuthenticationEngine

_LOGGER = logging.getLogger(__name__)

# Candidate IV strides tried on the second packet
IV_STRIDE_RANGE: Final = range(0x1E, 0x30)


class EncryptedReadCoordinator:
    """Fetches encrypted files from the watch."""

    def __init__(
        self,
        client: HybridHRBLEInterface,
        router: ResponseRouter,
        link: LinkGuard,
        authentication: AuthenticationEngine,
        settings: ProtocolSettings | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            client: Transport used to reach the watch.
            router: Router receiving the watch notifications.
            link: Guard shared by every exchange on this link.
            authentication: Engine running the handshake before each fetch.
            settings: Timeouts.
        """
        self._client = client
        self._router = router
        self._link = link
        self._authentication = authentication
        self._settings = settings or ProtocolSettings()
        self._session: EncryptedReadSession | None = None

    @property
    def session(self) -> EncryptedReadSession | None:
        """The in-flight read, if any."""
        return self._session

    async def fetch(self, handle: int) -> bytes:
        """Authenticate, resolve and download an encrypted file.

        Args:
            handle: Static handle of the file type to read.

        Returns:
            The decrypted file contents.
        """
        async with self._link.claim("fetch", TransferInProgressError):
            credentials = await self._authentication.perform_handshake()

            self._session = EncryptedReadSession(handle=handle)
            try:
                return await asyncio.wait_for(
                    self._read(self._session, credentials),
                    self._settings.encrypted_read_timeout,
                )
            except asyncio.TimeoutError as err:
                _LOGGER.error(
                    "Encrypted read of %s timed out after %.1fs",
                    handle_name(handle),
                    self._settings.encrypted_read_timeout,
                )
                raise TransferTimeoutError(
                    f"Watch did not complete the read of {handle_name(handle)}"
                ) from err
            finally:
                self._session = None

    async def _read(
        self, session: EncryptedReadSession, credentials: SessionCredentials
    ) -> bytes:
        dynamic_handle = await self._lookup(session)
        session.dynamic_handle = dynamic_handle
        session.phase = ReadPhase.ENCRYPTED_GET
        session.original_iv = build_file_iv(
            credentials.phone_random, credentials.watch_random
        )
        return await self._encrypted_get(session, credentials.secret_key)

    async def _lookup(self, session: EncryptedReadSession) -> int:
        _LOGGER.debug("Looking up dynamic handle for %s", handle_name(session.handle))

        buffer = bytearray()

        def _collect(packet: bytes) -> None:
            buffer.extend(packet[1:])

        announce_slot = self._router.expect(
            Channel.FILE_OPERATIONS, ResponseKind.LOOKUP_INIT
        )
        done_slot = self._router.expect(
            Channel.FILE_OPERATIONS, ResponseKind.DATA_ACK, accept=is_full_data_ack
        )
        self._router.attach_sink(Channel.FILE_DATA, _collect)
        try:
            await write_frame(
                self._client,
                Channel.FILE_OPERATIONS,
                build_file_lookup_request(session.handle),
            )
            announce = parse_file_response(await announce_slot.wait())
            check_status(announce, "lookup")
            if not announce.length:
                raise EmptyFileError(
                    f"Watch has no {handle_name(session.handle)} file"
                )
            session.lookup_expected_size = announce.length

            completion = parse_file_response(await done_slot.wait())
        finally:
            self._router.detach_sink(Channel.FILE_DATA)
            self._router.release(announce_slot, done_slot)

        check_status(completion, "lookup completion")
        if len(buffer) > session.lookup_expected_size:
            raise TransferInvalidResponseError(
                f"Lookup returned {len(buffer)} bytes, expected {session.lookup_expected_size}"
            )
        check_crc(crc32(bytes(buffer)), completion.crc32)
        if len(buffer) < 2:
            raise TransferInvalidResponseError("Lookup data too short for a handle")

        dynamic_handle = read_u16(buffer, 0)
        _LOGGER.debug(
            "Resolved %s to dynamic handle 0x%04x",
            handle_name(session.handle),
            dynamic_handle,
        )
        return dynamic_handle

    async def _encrypted_get(self, session: EncryptedReadSession, key: bytes) -> bytes:
        assert session.dynamic_handle is not None
        handle = session.dynamic_handle

        packets: list[bytes] = []
        init_slot = self._router.expect(Channel.FILE_OPERATIONS, ResponseKind.GET_INIT)
        done_slot = self._router.expect(
            Channel.FILE_OPERATIONS, ResponseKind.DATA_ACK, accept=is_full_data_ack
        )
        self._router.attach_sink(Channel.FILE_DATA, packets.append)
        try:
            await write_frame(
                self._client, Channel.FILE_OPERATIONS, build_file_get_request(handle)
            )
            response = parse_file_response(await init_slot.wait())
            check_status(response, "encrypted get")
            if response.handle != handle:
                raise UnexpectedHandleError(handle, response.handle)
            session.file_size = response.length or 0
            _LOGGER.debug("Encrypted file size: %d bytes", session.file_size)

            completion = parse_file_response(await done_slot.wait())
        finally:
            self._router.detach_sink(Channel.FILE_DATA)
            self._router.release(init_slot, done_slot)

        check_status(completion, "encrypted get completion")
        for packet in packets:
            if self._decrypt_packet(session, key, packet):
                break

        data = bytes(session.decrypted_buffer)
        check_crc(crc32(data), completion.crc32)
        if len(data) != session.file_size:
            raise TransferInvalidResponseError(
                f"Decrypted {len(data)} bytes, expected {session.file_size}"
            )

        _LOGGER.info(
            "Read %d bytes from %s", len(data), handle_name(session.handle)
        )
        return data

    def _decrypt_packet(
        self, session: EncryptedReadSession, key: bytes, packet: bytes
    ) -> bool:
        """Decrypt one data packet into the session buffer.

        Returns:
            True if the packet is flagged as the last one.
        """
        index = session.packet_count
        if index == 0:
            plain = aes_ctr_crypt(key, session.original_iv, packet)
        elif index == 1:
            plain = self._discover_stride(session, key, packet)
        else:
            assert session.iv_incrementor is not None
            iv = increment_iv(session.original_iv, session.iv_incrementor * index)
            plain = aes_ctr_crypt(key, iv, packet)

        session.packet_count += 1
        if not plain:
            return False
        session.decrypted_buffer.extend(plain[1:])
        return bool(plain[0] & LAST_PACKET_FLAG)

    def _discover_stride(
        self, session: EncryptedReadSession, key: bytes, packet: bytes
    ) -> bytes:
        projected = len(session.decrypted_buffer) + len(packet) - 1
        expected_header = 0x81 if projected == session.file_size else 0x01

        for stride in IV_STRIDE_RANGE:
            iv = increment_iv(session.original_iv, stride)
            plain = aes_ctr_crypt(key, iv, packet)
            if plain and plain[0] == expected_header:
                _LOGGER.debug("Discovered IV stride 0x%02x", stride)
                session.iv_incrementor = stride
                return plain

        _LOGGER.error("No IV stride decrypts packet 1")
        raise InvalidDecryptionError(1)
