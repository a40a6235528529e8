from __future__ import annotations

import asyncio
import logging
from enum import IntEnum

from .ble_interface import Channel, HybridHRBLEInterface
from .crypto import (
    aes_cbc_decrypt,
    aes_cbc_encrypt,
    generate_random_bytes,
    load_secret_key,
)
from .errors import (
    AuthRejectedError,
    AuthTimeoutError,
    AuthWriteFailedError,
    ChallengeMismatchError,
    NoSecretKeyError,
    NotAuthenticatedError,
    TransportError,
)
from .link import LinkGuard, ResponseRouter
from .models import ProtocolSettings, SessionCredentials
from .protocol import (
    AuthResponse,
    ControlResponse,
    build_auth_response,
    build_auth_start,
    build_confirm_on_device,
    build_confirmation_check,
    build_pairing_check,
    build_pairing_request,
    parse_auth_challenge,
    parse_status_byte,
)

_LOGGER = logging.getLogger(__name__)


class AuthenticationState(IntEnum):
    """Authentication state of the link."""

    UNAUTHENTICATED = 0
    HANDSHAKING = 1
    AUTHENTICATED = 2


class AuthenticationEngine:
    """Runs the AES challenge-response handshake with the watch."""

    def __init__(
        self,
        client: HybridHRBLEInterface,
        router: ResponseRouter,
        link: LinkGuard,
        settings: ProtocolSettings | None = None,
        secret_key: bytes | str | None = None,
    ) -> None:
        """Initialize the authentication engine.

        Args:
            client: Transport used to reach the watch.
            router: Router receiving the watch notifications.
            link: Guard shared by every exchange on this link.
            settings: Timeouts; defaults apply when omitted.
            secret_key: The 16-byte device key, raw or hex encoded.
        """
        self._client = client
        self._router = router
        self._link = link
        self._settings = settings or ProtocolSettings()
        self._secret_key = load_secret_key(secret_key) if secret_key is not None else None
        self._credentials: SessionCredentials | None = None
        self.state = AuthenticationState.UNAUTHENTICATED

    @property
    def credentials(self) -> SessionCredentials | None:
        """Credentials of the last successful handshake."""
        return self._credentials

    def is_authenticated(self) -> bool:
        """Check if a handshake has completed on this link."""
        return (
            self.state == AuthenticationState.AUTHENTICATED
            and self._credentials is not None
        )

    def invalidate(self) -> None:
        """Forget the current credentials, e.g. after a disconnect."""
        _LOGGER.info("Invalidating authentication session")
        self._credentials = None
        self.state = AuthenticationState.UNAUTHENTICATED

    async def authenticate(
        self, secret_key: bytes | str | None = None
    ) -> SessionCredentials:
        """Authenticate with the watch, holding the link for the exchange.

        Args:
            secret_key: Key to use; also becomes the configured key.

        Returns:
            The credentials of this handshake.
        """
        if secret_key is not None:
            self._secret_key = load_secret_key(secret_key)
        async with self._link.claim("authenticate"):
            return await self.perform_handshake()

    async def perform_handshake(self) -> SessionCredentials:
        """Run a handshake. The caller must hold the link.

        Returns:
            Fresh credentials; earlier ones are superseded.
        """
        if self._secret_key is None:
            raise NoSecretKeyError("No secret key configured for authentication")

        self.state = AuthenticationState.HANDSHAKING
        try:
            credentials = await asyncio.wait_for(
                self._handshake(self._secret_key), self._settings.auth_timeout
            )
        except asyncio.TimeoutError as err:
            self.invalidate()
            _LOGGER.error(
                "Authentication timed out after %.1fs", self._settings.auth_timeout
            )
            raise AuthTimeoutError("Watch did not complete the handshake") from err
        except Exception:
            self.invalidate()
            raise

        self._credentials = credentials
        self.state = AuthenticationState.AUTHENTICATED
        _LOGGER.info("Authenticated with watch")
        return credentials

    async def _handshake(self, secret_key: bytes) -> SessionCredentials:
        phone_random = generate_random_bytes()
        _LOGGER.debug("Starting handshake with phone random %s", phone_random.hex())

        challenge_slot = self._router.expect(Channel.AUTHENTICATION, AuthResponse.CHALLENGE)
        try:
            await self._write(Channel.AUTHENTICATION, build_auth_start(phone_random))
            challenge = parse_auth_challenge(await challenge_slot.wait())
        finally:
            self._router.release(challenge_slot)

        plain = aes_cbc_decrypt(secret_key, challenge)
        watch_random = plain[:8]
        echoed = plain[8:16]
        if echoed != phone_random:
            _LOGGER.error("Watch did not echo the phone random")
            raise ChallengeMismatchError(phone_random, echoed)

        _LOGGER.debug("Received watch random %s", watch_random.hex())
        encrypted = aes_cbc_encrypt(secret_key, plain[8:16] + plain[:8])

        result_slot = self._router.expect(Channel.AUTHENTICATION, AuthResponse.RESULT)
        try:
            await self._write(Channel.AUTHENTICATION, build_auth_response(encrypted))
            status = parse_status_byte(await result_slot.wait())
        finally:
            self._router.release(result_slot)

        if status != 0x00:
            _LOGGER.error("Watch rejected authentication with status 0x%02x", status)
            raise AuthRejectedError(status)

        return SessionCredentials(
            secret_key=secret_key,
            phone_random=phone_random,
            watch_random=watch_random,
        )

    # --- POST-AUTHENTICATION EXCHANGES ---

    async def initialize_after_authentication(self) -> bool:
        """Complete device confirmation and pairing after a handshake.

        Returns:
            True if the watch is confirmed and paired.
        """
        if not self.is_authenticated():
            raise NotAuthenticatedError("Authenticate before confirming or pairing")

        async with self._link.claim("initialize"):
            if await self.check_needs_confirmation():
                _LOGGER.info("Waiting for confirmation on the watch")
                if not await self.confirm_on_device():
                    _LOGGER.warning("Watch confirmation was not granted")
                    return False

            if not await self.check_pairing():
                await self.perform_pairing()

        _LOGGER.info("Watch confirmed and paired")
        return True

    async def check_needs_confirmation(self) -> bool:
        """Ask the watch whether on-device confirmation is required."""
        status = await self._exchange(
            Channel.AUTHENTICATION,
            AuthResponse.CONFIRMATION_CHECK,
            build_confirmation_check(),
            self._settings.exchange_timeout,
        )
        _LOGGER.debug("Confirmation check status 0x%02x", status)
        return status == 0x00

    async def confirm_on_device(self) -> bool:
        """Request confirmation and wait for the user to grant it."""
        slot = self._router.expect(
            Channel.AUTHENTICATION,
            AuthResponse.CONFIRM_ON_DEVICE,
            accept=lambda data: len(data) >= 4 and data[2] == 0x00,
        )
        try:
            await self._write(Channel.AUTHENTICATION, build_confirm_on_device())
            frame = await asyncio.wait_for(
                slot.wait(), self._settings.confirmation_timeout
            )
        except asyncio.TimeoutError:
            _LOGGER.warning(
                "No confirmation within %.0fs", self._settings.confirmation_timeout
            )
            return False
        finally:
            self._router.release(slot)
        return frame[3] == 0x01

    async def check_pairing(self) -> bool:
        """Ask the watch whether it is paired with this phone."""
        status = await self._exchange(
            Channel.CONTROL,
            ControlResponse.PAIRING,
            build_pairing_check(),
            self._settings.exchange_timeout,
        )
        _LOGGER.debug("Pairing status 0x%02x", status)
        return status == 0x01

    async def perform_pairing(self) -> bool:
        """Pair with the watch."""
        _LOGGER.info("Pairing with watch")
        status = await self._exchange(
            Channel.CONTROL,
            ControlResponse.PAIRING,
            build_pairing_request(),
            self._settings.exchange_timeout,
        )
        if status != 0x01:
            _LOGGER.error("Watch rejected pairing with status 0x%02x", status)
            raise AuthRejectedError(status, f"Pairing rejected with status 0x{status:02x}")

        await asyncio.sleep(self._settings.pairing_settle_delay)
        return True

    async def _exchange(
        self, channel: Channel, key: int, request: bytes, timeout: float
    ) -> int:
        """Write a short request and return the status byte of its answer."""
        slot = self._router.expect(channel, key)
        try:
            await self._write(channel, request)
            frame = await asyncio.wait_for(slot.wait(), timeout)
        except asyncio.TimeoutError as err:
            raise AuthTimeoutError(
                f"No answer to {request.hex()} within {timeout:.0f}s"
            ) from err
        finally:
            self._router.release(slot)
        return parse_status_byte(frame)

    async def _write(self, channel: Channel, data: bytes) -> None:
        _LOGGER.debug("Writing %s frame: %s", channel.name, data.hex())
        try:
            await self._client.write_characteristic(channel, data)
        except TransportError as err:
            _LOGGER.error("Failed to write %s frame: %s", channel.name, err)
            raise AuthWriteFailedError(str(err)) from err
