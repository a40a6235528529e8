"""Plaintext file put and get."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from ..const import DEFAULT_MTU
from .ble_interface import Channel, HybridHRBLEInterface
from .codec import crc32
from .errors import (
    InvalidCRCError,
    TransferInProgressError,
    TransferInvalidResponseError,
    TransferRejectedError,
    TransferTimeoutError,
    TransferWriteFailedError,
    TransportError,
    UnexpectedHandleError,
)
from .link import LinkGuard, ResponseRouter
from .models import (
    ProtocolSettings,
    TransferDirection,
    TransferSession,
    TransferState,
    handle_name,
)
from .protocol import (
    FILE_END_OFFSET,
    LAST_PACKET_FLAG,
    FileResponse,
    ResponseKind,
    build_data_chunks,
    build_file_close_request,
    build_file_get_request,
    build_file_put_request,
    describe_status,
    is_full_data_ack,
    parse_file_response,
)

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


def check_status(response: FileResponse, stage: str) -> None:
    """Raise if a file response reports an error status."""
    if not response.is_success:
        _LOGGER.error(
            "Watch rejected %s for %s: %s",
            stage,
            handle_name(response.handle),
            describe_status(response.status),
        )
        raise TransferRejectedError(
            response.status,
            f"{stage} rejected with status {describe_status(response.status)}",
        )


def check_crc(expected: int, actual: int | None) -> None:
    """Raise if a CRC reported by the watch does not match the local one."""
    if actual is None:
        raise TransferInvalidResponseError("Response carries no CRC")
    if actual != expected:
        _LOGGER.error("CRC mismatch: local 0x%08x, watch 0x%08x", expected, actual)
        raise InvalidCRCError(expected, actual)


async def write_frame(
    client: HybridHRBLEInterface, channel: Channel, data: bytes, response: bool = True
) -> None:
    """Write one transfer frame, mapping transport failures."""
    try:
        await client.write_characteristic(channel, data, response=response)
    except TransportError as err:
        _LOGGER.error("Failed to write %s frame: %s", channel.name, err)
        raise TransferWriteFailedError(str(err)) from err


class FileTransferEngine:
    """Moves whole files to and from the watch without encryption."""

    def __init__(
        self,
        client: HybridHRBLEInterface,
        router: ResponseRouter,
        link: LinkGuard,
        settings: ProtocolSettings | None = None,
    ) -> None:
        """Initialize the transfer engine.

        Args:
            client: Transport used to reach the watch.
            router: Router receiving the watch notifications.
            link: Guard shared by every exchange on this link.
            settings: Timeouts and MTU override.
        """
        self._client = client
        self._router = router
        self._link = link
        self._settings = settings or ProtocolSettings()
        self._session: TransferSession | None = None

    @property
    def session(self) -> TransferSession | None:
        """The in-flight transfer, if any."""
        return self._session

    @property
    def mtu(self) -> int:
        if self._settings.mtu is not None:
            return self._settings.mtu
        try:
            return self._client.mtu_size
        except TransportError:
            _LOGGER.debug("Transport MTU unavailable, using %d", DEFAULT_MTU)
            return DEFAULT_MTU

    async def put_file(self, handle: int, data: bytes) -> None:
        """Upload a file.

        Args:
            handle: Destination file handle.
            data: File contents, usually a file container.
        """
        async with self._link.claim("put_file", TransferInProgressError):
            self._session = TransferSession(
                handle=handle,
                direction=TransferDirection.PUT,
                total_length=len(data),
                expected_crc32=crc32(data),
            )
            try:
                await self._run(self._put(self._session, data))
            except Exception:
                self._session.state = TransferState.FAILED
                raise
            finally:
                self._session = None

    async def get_file(
        self,
        handle: int,
        start_offset: int = 0,
        end_offset: int = FILE_END_OFFSET,
    ) -> bytes:
        """Download a plaintext file.

        Args:
            handle: File handle to read.
            start_offset: First byte to read.
            end_offset: End of the range, 0xFFFFFFFF for the whole file.

        Returns:
            The file contents.
        """
        async with self._link.claim("get_file", TransferInProgressError):
            self._session = TransferSession(
                handle=handle, direction=TransferDirection.GET
            )
            try:
                return await self._run(
                    self._get(self._session, start_offset, end_offset)
                )
            except Exception:
                self._session.state = TransferState.FAILED
                raise
            finally:
                self._session = None

    async def _run(self, exchange: Awaitable[_T]) -> _T:
        try:
            return await asyncio.wait_for(exchange, self._settings.transfer_timeout)
        except asyncio.TimeoutError as err:
            _LOGGER.error(
                "File transfer timed out after %.1fs", self._settings.transfer_timeout
            )
            raise TransferTimeoutError("Watch did not complete the transfer") from err

    async def _put(self, session: TransferSession, data: bytes) -> None:
        handle = session.handle
        _LOGGER.info("Putting %d bytes to %s", len(data), handle_name(handle))

        init_slot = self._router.expect(Channel.FILE_OPERATIONS, ResponseKind.PUT_INIT)
        try:
            await write_frame(
                self._client,
                Channel.FILE_OPERATIONS,
                build_file_put_request(handle, len(data)),
            )
            session.state = TransferState.HEADER_SENT
            response = parse_file_response(await init_slot.wait())
        finally:
            self._router.release(init_slot)
        check_status(response, "put")

        chunks = build_data_chunks(data, self.mtu)
        _LOGGER.debug("Sending %d bytes in %d chunks", len(data), len(chunks))

        # The watch paces the upload: each ack or continuation releases one chunk
        frames: asyncio.Queue[bytes] = asyncio.Queue()
        self._router.attach_sink(Channel.FILE_OPERATIONS, frames.put_nowait)
        try:
            session.state = TransferState.SENDING_DATA
            await self._advance(session, data, chunks)
            while session.state != TransferState.COMPLETE:
                await self._on_put_frame(session, data, chunks, await frames.get())
        finally:
            self._router.detach_sink(Channel.FILE_OPERATIONS)

        _LOGGER.info("Put of %s complete", handle_name(handle))

    async def _on_put_frame(
        self,
        session: TransferSession,
        data: bytes,
        chunks: list[bytes],
        frame: bytes,
    ) -> None:
        response = parse_file_response(frame)

        if response.kind == ResponseKind.DATA_ACK:
            check_status(response, "data")
            if not is_full_data_ack(frame):
                await self._advance(session, data, chunks)
                return
            if response.handle != session.handle:
                raise UnexpectedHandleError(session.handle, response.handle)
            # Full acks carry a running CRC over everything sent so far
            check_crc(crc32(data[: session.bytes_transferred]), response.crc32)
            _LOGGER.debug(
                "Watch confirmed %d of %d bytes", session.bytes_transferred, len(data)
            )
            session.bytes_acknowledged = session.bytes_transferred
            await self._advance(session, data, chunks)
        elif response.kind == ResponseKind.CONTINUATION:
            await self._advance(session, data, chunks)
        elif response.kind == ResponseKind.COMPLETE:
            if session.state != TransferState.CLOSING:
                raise TransferInvalidResponseError(
                    f"Watch completed {handle_name(session.handle)} before close"
                )
            check_status(response, "close")
            session.state = TransferState.COMPLETE
        else:
            _LOGGER.debug("Ignoring file response during put: %s", frame.hex())

    async def _advance(
        self, session: TransferSession, data: bytes, chunks: list[bytes]
    ) -> None:
        """Send the next chunk, or close once every byte is confirmed."""
        if session.state in (TransferState.CLOSING, TransferState.COMPLETE):
            return

        index = session.chunks_sent
        if index < len(chunks):
            chunk = chunks[index]
            await write_frame(self._client, Channel.FILE_DATA, chunk, response=False)
            session.chunks_sent += 1
            session.bytes_transferred += len(chunk) - 1
            session.sequence_counter = (session.sequence_counter + 1) & 0xFF
            if session.chunks_sent == len(chunks):
                session.state = TransferState.AWAITING_ACK
            return

        # Nothing left to send; close after the final CRC ack, or at once if empty
        if data and session.bytes_acknowledged < len(data):
            return
        session.state = TransferState.CLOSING
        await write_frame(
            self._client,
            Channel.FILE_OPERATIONS,
            build_file_close_request(session.handle),
        )

    async def _get(
        self, session: TransferSession, start_offset: int, end_offset: int
    ) -> bytes:
        handle = session.handle
        _LOGGER.info("Getting %s", handle_name(handle))

        packets: list[bytes] = []
        init_slot = self._router.expect(Channel.FILE_OPERATIONS, ResponseKind.GET_INIT)
        done_slot = self._router.expect(
            Channel.FILE_OPERATIONS, ResponseKind.DATA_ACK, accept=is_full_data_ack
        )
        self._router.attach_sink(Channel.FILE_DATA, packets.append)
        try:
            await write_frame(
                self._client,
                Channel.FILE_OPERATIONS,
                build_file_get_request(handle, start_offset, end_offset),
            )
            session.state = TransferState.AWAITING_ACK
            response = parse_file_response(await init_slot.wait())
            check_status(response, "get")
            if response.handle != handle:
                raise UnexpectedHandleError(handle, response.handle)
            session.total_length = response.length or 0
            session.state = TransferState.SENDING_DATA

            completion = parse_file_response(await done_slot.wait())
        finally:
            self._router.detach_sink(Channel.FILE_DATA)
            self._router.release(init_slot, done_slot)

        check_status(completion, "get completion")
        buffer = bytearray()
        for packet in packets:
            if not packet:
                continue
            buffer += packet[1:]
            session.sequence_counter = (session.sequence_counter + 1) & 0xFF
            if packet[0] & LAST_PACKET_FLAG:
                break
        session.bytes_transferred = len(buffer)

        check_crc(crc32(bytes(buffer)), completion.crc32)
        if len(buffer) != session.total_length:
            raise TransferInvalidResponseError(
                f"Received {len(buffer)} bytes, expected {session.total_length}"
            )

        session.state = TransferState.COMPLETE
        _LOGGER.info("Get of %s complete: %d bytes", handle_name(handle), len(buffer))
        return bytes(buffer)
