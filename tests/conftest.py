"""Shared fixtures."""

from __future__ import annotations

import pytest

from fake_watch import SECRET_KEY, FakeWatch
from hybrid_hr_ble.coordinator import HybridHRCoordinator
from hybrid_hr_ble.core.models import ProtocolSettings


@pytest.fixture
def watch() -> FakeWatch:
    """Return a simulated watch."""
    return FakeWatch()


@pytest.fixture
def settings() -> ProtocolSettings:
    """Return settings with short timeouts."""
    return ProtocolSettings(
        auth_timeout=0.2,
        transfer_timeout=0.2,
        encrypted_read_timeout=0.2,
        exchange_timeout=0.2,
        confirmation_timeout=0.2,
        pairing_settle_delay=0,
    )


@pytest.fixture
async def coordinator(
    watch: FakeWatch, settings: ProtocolSettings
) -> HybridHRCoordinator:
    """Return a coordinator wired to the simulated watch."""
    coordinator = HybridHRCoordinator(watch, SECRET_KEY, settings)
    await coordinator.async_setup()
    return coordinator
