"""Tests for the authentication handshake and pairing exchanges."""

import pytest

from hybrid_hr_ble.core import crypto
from hybrid_hr_ble.core.ble_interface import Channel
from hybrid_hr_ble.core.errors import (
    AuthError,
    AuthRejectedError,
    AuthTimeoutError,
    AuthWriteFailedError,
    ChallengeMismatchError,
    InvalidKeyFormatError,
    NoSecretKeyError,
    NotAuthenticatedError,
    ProtocolTimeoutError,
    RejectedError,
)
from hybrid_hr_ble.core.link import LinkGuard, ResponseRouter
from hybrid_hr_ble.core.session_manager import AuthenticationEngine, AuthenticationState

from fake_watch import SECRET_KEY


async def test_handshake_success(coordinator, watch):
    """A handshake yields credentials matching the watch's randoms."""
    credentials = await coordinator.authenticate()

    assert credentials.secret_key == SECRET_KEY
    assert watch.handshakes == [(credentials.phone_random, credentials.watch_random)]
    assert coordinator.authentication.is_authenticated()

    start, response = watch.frames(Channel.AUTHENTICATION)
    assert start == bytes([0x02, 0x01, 0x01]) + credentials.phone_random
    assert response[:3] == bytes([0x02, 0x02, 0x01])
    assert crypto.aes_cbc_decrypt(SECRET_KEY, response[3:]) == (
        credentials.phone_random + credentials.watch_random
    )
    assert coordinator.router.pending == 0


async def test_each_handshake_uses_fresh_randoms(coordinator, watch):
    """Every handshake supersedes the previous credentials."""
    first = await coordinator.authenticate()
    second = await coordinator.authenticate()

    assert first.phone_random != second.phone_random
    assert coordinator.credentials == second
    assert len(watch.handshakes) == 2


async def test_handshake_rejected(coordinator, watch):
    """A non-zero result status is reported with the status code."""
    watch.auth_status = 0x8C

    with pytest.raises(AuthRejectedError) as err:
        await coordinator.authenticate()

    assert err.value.status == 0x8C
    assert isinstance(err.value, RejectedError)
    assert coordinator.credentials is None
    assert coordinator.authentication.state == AuthenticationState.UNAUTHENTICATED


async def test_challenge_mismatch(coordinator, watch):
    """A watch using another key does not echo the phone random."""
    watch.challenge_key = bytes(16)

    with pytest.raises(ChallengeMismatchError):
        await coordinator.authenticate()

    # The response frame is never sent
    assert len(watch.frames(Channel.AUTHENTICATION)) == 1


async def test_handshake_timeout(coordinator, watch):
    """A silent watch times out and late answers are dropped."""
    watch.silent = True

    with pytest.raises(AuthTimeoutError) as err:
        await coordinator.authenticate()

    assert isinstance(err.value, ProtocolTimeoutError)
    assert isinstance(err.value, TimeoutError)
    assert coordinator.router.pending == 0

    watch.notify(Channel.AUTHENTICATION, bytes([0x03, 0x01, 0x00, 0x00]) + bytes(16))
    assert coordinator.credentials is None
    assert not coordinator.link.is_busy


async def test_write_failure(coordinator, watch):
    """Transport failures surface as write errors with the cause attached."""
    watch.fail_writes = True

    with pytest.raises(AuthWriteFailedError) as err:
        await coordinator.authenticate()

    assert err.value.__cause__ is not None
    assert coordinator.router.pending == 0


async def test_missing_and_invalid_keys(watch, settings):
    """Authentication requires a well-formed key."""
    engine = AuthenticationEngine(watch, ResponseRouter(), LinkGuard(), settings)

    with pytest.raises(NoSecretKeyError):
        await engine.authenticate()

    with pytest.raises(InvalidKeyFormatError):
        await engine.authenticate("not hex")

    with pytest.raises(AuthError):
        AuthenticationEngine(watch, ResponseRouter(), LinkGuard(), settings, b"short")


async def test_initialize_requires_handshake(coordinator):
    """Confirmation and pairing need a completed handshake."""
    with pytest.raises(NotAuthenticatedError):
        await coordinator.initialize_after_authentication()


async def test_initialize_already_paired(coordinator, watch):
    """A paired watch needing no confirmation only answers the checks."""
    await coordinator.authenticate()

    assert await coordinator.initialize_after_authentication()
    assert watch.frames(Channel.AUTHENTICATION)[-1] == bytes([0x01, 0x07])
    assert watch.frames(Channel.CONTROL) == [bytes([0x01, 0x16])]


async def test_initialize_confirms_and_pairs(coordinator, watch):
    """Confirmation and pairing run when the watch asks for them."""
    watch.needs_confirmation = True
    watch.paired = False
    await coordinator.authenticate()

    assert await coordinator.initialize_after_authentication()
    assert bytes([0x02, 0x06, 0x30, 0x75, 0x00, 0x00, 0x00]) in watch.frames(
        Channel.AUTHENTICATION
    )
    assert watch.frames(Channel.CONTROL) == [bytes([0x01, 0x16]), bytes([0x02, 0x16])]
    assert watch.paired


async def test_confirmation_not_granted(coordinator, watch):
    """No answer to the confirmation request yields False."""
    watch.needs_confirmation = True
    watch.confirm_result = None
    await coordinator.authenticate()

    assert not await coordinator.initialize_after_authentication()
    assert watch.frames(Channel.CONTROL) == []
    assert coordinator.router.pending == 0


async def test_pairing_rejected(coordinator, watch):
    """A refused pairing request raises with its status."""
    watch.paired = False
    watch.pair_status = 0x02
    await coordinator.authenticate()

    with pytest.raises(AuthRejectedError) as err:
        await coordinator.initialize_after_authentication()

    assert err.value.status == 0x02
