"""Ownership of the BLE link and routing of watch responses.

The watch handles one exchange at a time. :class:`LinkGuard` makes that
explicit: every public operation claims the link and a second caller fails
fast instead of queueing. :class:`ResponseRouter` delivers notifications to
one-shot :class:`ResponseSlot` objects registered before the matching
request is written, or to a sink for streamed file data.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable

from .ble_interface import Channel
from .errors import OperationInProgressError
from .protocol import frame_key

_LOGGER = logging.getLogger(__name__)

FramePredicate = Callable[[bytes], bool]


class LinkGuard:
    """Single owner of the BLE link."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._active: str | None = None

    @property
    def active_operation(self) -> str | None:
        """Name of the operation currently holding the link."""
        return self._active

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    @contextlib.asynccontextmanager
    async def claim(
        self,
        operation: str,
        error: type[OperationInProgressError] = OperationInProgressError,
    ) -> AsyncIterator[None]:
        """Hold the link for the duration of an exchange.

        Args:
            operation: Name used in logs and errors.
            error: Exception raised if the link is busy.
        """
        if self._lock.locked():
            _LOGGER.debug(
                "Refusing %s while %s holds the link", operation, self._active
            )
            raise error(self._active, operation)

        async with self._lock:
            self._active = operation
            _LOGGER.debug("Link claimed by %s", operation)
            try:
                yield
            finally:
                _LOGGER.debug("Link released by %s", operation)
                self._active = None


class ResponseSlot:
    """An expectation for exactly one frame."""

    def __init__(
        self,
        router: ResponseRouter,
        channel: Channel,
        key: int,
        accept: FramePredicate | None,
    ) -> None:
        self.channel = channel
        self.key = key
        self._router = router
        self._accept = accept
        self._future: asyncio.Future[bytes] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def done(self) -> bool:
        return self._future.done()

    def accepts(self, data: bytes) -> bool:
        return self._accept is None or self._accept(data)

    def resolve(self, data: bytes) -> None:
        if not self._future.done():
            self._future.set_result(data)

    def cancel(self) -> None:
        if not self._future.done():
            self._future.cancel()

    async def wait(self) -> bytes:
        """Wait for the frame; the slot is released whatever the outcome."""
        try:
            return await self._future
        finally:
            self._router.release(self)


class ResponseRouter:
    """Dispatch notifications to waiting slots and data sinks."""

    def __init__(self) -> None:
        self._slots: dict[tuple[Channel, int], ResponseSlot] = {}
        self._sinks: dict[Channel, Callable[[bytes], None]] = {}

    @property
    def pending(self) -> int:
        """Number of registered slots still waiting for a frame."""
        return len(self._slots)

    def expect(
        self,
        channel: Channel,
        key: int,
        accept: FramePredicate | None = None,
    ) -> ResponseSlot:
        """Register a slot for the next frame with the given key.

        Must be called before the request that triggers the frame is written.

        Args:
            channel: Characteristic the frame will arrive on.
            key: Routing key, see :func:`frame_key`.
            accept: Optional filter; rejected frames leave the slot waiting.

        Returns:
            The registered slot.
        """
        slot = ResponseSlot(self, channel, int(key), accept)
        previous = self._slots.get((channel, slot.key))
        if previous is not None:
            _LOGGER.debug("Replacing stale slot for %s/0x%02x", channel.name, slot.key)
            previous.cancel()
        self._slots[(channel, slot.key)] = slot
        return slot

    def release(self, *slots: ResponseSlot) -> None:
        """Drop slots that are no longer awaited."""
        for slot in slots:
            if self._slots.get((slot.channel, slot.key)) is slot:
                del self._slots[(slot.channel, slot.key)]
            slot.cancel()

    def attach_sink(self, channel: Channel, sink: Callable[[bytes], None]) -> None:
        """Stream every frame of a characteristic into a sink."""
        self._sinks[channel] = sink

    def detach_sink(self, channel: Channel) -> None:
        self._sinks.pop(channel, None)

    def dispatch(self, channel: Channel, data: bytes) -> None:
        """Route one notification.

        Args:
            channel: Characteristic the frame arrived on.
            data: The raw frame.
        """
        _LOGGER.debug("Received %s frame: %s", channel.name, data.hex())

        sink = self._sinks.get(channel)
        if sink is not None:
            sink(data)
            return

        key = frame_key(channel, data)
        slot = self._slots.get((channel, key)) if key is not None else None
        if slot is None:
            _LOGGER.debug("Discarding unsolicited %s frame: %s", channel.name, data.hex())
            return

        if not slot.accepts(data):
            _LOGGER.debug("Ignoring %s frame not matching slot: %s", channel.name, data.hex())
            return

        del self._slots[(channel, key)]
        slot.resolve(data)
