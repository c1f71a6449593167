"""Test doubles shared across the suite."""

from __future__ import annotations

import itertools
from typing import Any

from guild_multisig.integrations.executor import ChainTransaction
from guild_multisig.notifications.events import NotificationEvent
from guild_multisig.notifications.sinks import NotificationSink


class FakeChainClient:
    """Chain client that records calls and fails on request."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_methods: set[str] = set()
        self.fail_recipients: set[str] = set()
        self._counter = itertools.count(1)

    def _tx(self, method: str, signer: Any, **kwargs: Any) -> ChainTransaction:
        self.calls.append((method, kwargs))
        if method in self.fail_methods or kwargs.get("to") in self.fail_recipients:
            raise RuntimeError(f"{method} reverted")
        n = next(self._counter)
        return ChainTransaction(
            hash=f"0x{n:064x}",
            contract_address=f"0x{n:040x}",
            sender=f"0xsigner-{signer}",
        )

    async def create_erc20_token(self, signer, **kwargs):
        return self._tx("create_erc20_token", signer, **kwargs)

    async def create_move_token(self, signer, **kwargs):
        return self._tx("create_move_token", signer, **kwargs)

    async def create_nft_collection(self, signer, **kwargs):
        return self._tx("create_nft_collection", signer, **kwargs)

    async def mint_nft(self, signer, **kwargs):
        return self._tx("mint_nft", signer, **kwargs)

    async def send_native(self, signer, **kwargs):
        return self._tx("send_native", signer, **kwargs)

    async def transfer_token(self, signer, **kwargs):
        return self._tx("transfer_token", signer, **kwargs)


class RecordingSink(NotificationSink):
    """Keeps every delivered event."""

    name = "recorder"

    def __init__(self, result: bool = True) -> None:
        self.events: list[NotificationEvent] = []
        self.result = result

    async def deliver(self, event: NotificationEvent) -> bool:
        self.events.append(event)
        return self.result

    def kinds(self) -> list[str]:
        return [e.kind.value for e in self.events]

