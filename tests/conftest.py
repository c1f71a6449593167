"""Shared fixtures: manual clock, wallet registry, fake chain and a wired coordinator."""

from __future__ import annotations

import pytest

from guild_multisig.coordinator import MultisigCoordinator
from guild_multisig.core.clock import ManualClock
from guild_multisig.integrations.executor import InMemoryWalletRegistry, default_executor
from guild_multisig.ledger.storage import MemoryStorage
from guild_multisig.notifications.fanout import NotificationFanout

from tests.helpers import FakeChainClient, RecordingSink

WALLET_NAMES = (
    "dev", "artist", "ceo", "lead", "a", "b", "c",
    "leader", "officer1", "officer2", "marketing", "community",
)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def wallets() -> InMemoryWalletRegistry:
    return InMemoryWalletRegistry({name: f"signer-{name}" for name in WALLET_NAMES})


@pytest.fixture
def chain() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def recorder() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def storage(clock) -> MemoryStorage:
    return MemoryStorage(clock)


@pytest.fixture
def make_coordinator(clock, wallets, chain, recorder):
    """Factory so a test can rebuild a coordinator over the same storage."""

    def build(storage) -> MultisigCoordinator:
        coordinator = MultisigCoordinator(
            storage=storage,
            wallets=wallets,
            executor=default_executor(chain, wallets),
            fanout=NotificationFanout([recorder]),
            clock=clock,
        )
        coordinator.initialize()
        return coordinator

    return build


@pytest.fixture
def coordinator(make_coordinator, storage) -> MultisigCoordinator:
    return make_coordinator(storage)
