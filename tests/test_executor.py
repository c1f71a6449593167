"""
Tests for the operation executor and its built-in chain adapters.

Validates:
- Receipt shape for every built-in operation
- Signer resolution through the wallet registry
- Partial and total failure of batch rewards
- Dispatch, custom adapters and error wrapping
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from guild_multisig.core.errors import ExecutionError
from guild_multisig.core.operations import OperationTag, parse_params
from guild_multisig.core.schema import Proposal
from guild_multisig.integrations.executor import (
    InMemoryWalletRegistry,
    OperationExecutor,
    default_executor,
)

from tests.helpers import FakeChainClient

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def approved(operation: str, params: dict, proposer: str = "ceo") -> Proposal:
    return Proposal(
        id=f"prop_{operation}",
        group_id="group_1",
        proposer_wallet_name=proposer,
        operation=operation,
        params=parse_params(operation, params),
        required_approvals=(proposer,),
        created_at=T0,
        expires_at=T0 + timedelta(days=7),
    )


class TestChainAdapters:
    """Each built-in tag calls the chain client and returns a receipt."""

    def setup_method(self):
        self.chain = FakeChainClient()
        self.wallets = InMemoryWalletRegistry({"ceo": "key-ceo"})
        self.executor = default_executor(self.chain, self.wallets)

    def test_every_tag_registered(self):
        for tag in OperationTag:
            assert self.executor.has_adapter(tag.value)
        assert not self.executor.has_adapter("guildUpgrade")

    @pytest.mark.asyncio
    async def test_erc20_token(self):
        receipt = await self.executor.run(approved(
            "createERC20Token", {"name": "Gold", "symbol": "GLD", "initialSupply": "1000000"}
        ))
        assert receipt == {
            "type": "tokenCreation",
            "contractAddress": f"0x{1:040x}",
            "transactionHash": f"0x{1:064x}",
            "tokenName": "Gold",
            "tokenSymbol": "GLD",
        }
        method, kwargs = self.chain.calls[0]
        assert method == "create_erc20_token"
        assert kwargs == {"name": "Gold", "symbol": "GLD", "decimals": 18, "initial_supply": "1000000"}

    @pytest.mark.asyncio
    async def test_move_token(self):
        receipt = await self.executor.run(approved(
            "createMoveToken", {"name": "Gem", "symbol": "GEM"}
        ))
        assert receipt["type"] == "moveTokenCreation"
        assert self.chain.calls[0][1]["decimals"] == 8
        assert self.chain.calls[0][1]["monitor_supply"] is True

    @pytest.mark.asyncio
    async def test_nft_collection(self):
        receipt = await self.executor.run(approved(
            "createNFTCollection",
            {"name": "Heroes", "symbol": "HERO", "maxSupply": 500, "baseURI": "ipfs://h/"},
        ))
        assert receipt["type"] == "nftCollection"
        assert receipt["collectionName"] == "Heroes"
        assert self.chain.calls[0][1]["base_uri"] == "ipfs://h/"

    @pytest.mark.asyncio
    async def test_mint(self):
        receipt = await self.executor.run(approved(
            "mintNFT", {"contractAddress": "0xC", "to": "0xPlayer", "tokenId": 42}
        ))
        assert receipt["type"] == "nftMint"
        assert receipt["tokenId"] == "42"
        assert receipt["recipient"] == "0xPlayer"

    @pytest.mark.asyncio
    async def test_eth_transfer(self):
        receipt = await self.executor.run(approved("transferETH", {"to": "0xA", "amount": "2.5"}))
        assert receipt["type"] == "ethTransfer"
        assert receipt["from"] == "0xsigner-key-ceo"
        assert receipt["amount"] == "2.5"
        assert self.chain.calls == [("send_native", {"to": "0xA", "amount": "2.5"})]

    @pytest.mark.asyncio
    async def test_emergency_stop_needs_no_chain(self):
        receipt = await self.executor.run(approved("emergencyStop", {"reason": "exploit"}))
        assert receipt == {"type": "emergencyStop", "groupId": "group_1", "reason": "exploit"}
        assert self.chain.calls == []

    @pytest.mark.asyncio
    async def test_missing_signer(self):
        with pytest.raises(ExecutionError, match="No signer"):
            await self.executor.run(approved("transferETH", {"to": "0xA", "amount": "1"}, proposer="dev"))
        assert self.chain.calls == []

    @pytest.mark.asyncio
    async def test_chain_error_wrapped(self):
        self.chain.fail_methods.add("send_native")
        with pytest.raises(ExecutionError, match="transferETH failed") as info:
            await self.executor.run(approved("transferETH", {"to": "0xA", "amount": "1"}))
        assert isinstance(info.value.__cause__, RuntimeError)


class TestBatchRewards:
    """Batch items are independent; only a total wipe-out fails the batch."""

    def setup_method(self):
        self.chain = FakeChainClient()
        self.executor = default_executor(self.chain, InMemoryWalletRegistry({"ceo": "key"}))
        self.proposal = approved("batchPlayerRewards", {
            "rewards": [
                {"recipient": "p1", "type": "token", "tokenAddress": "0xT", "amount": "10"},
                {"recipient": "p2", "type": "nft", "contractAddress": "0xN", "tokenId": 9},
                {"recipient": "p3", "type": "token", "tokenAddress": "0xT", "amount": "5"},
            ]
        })

    @pytest.mark.asyncio
    async def test_all_delivered_in_order(self):
        receipt = await self.executor.run(self.proposal)
        assert receipt["successful"] == 3
        assert [m for m, _ in self.chain.calls] == ["transfer_token", "mint_nft", "transfer_token"]

    @pytest.mark.asyncio
    async def test_partial_failure_succeeds(self):
        self.chain.fail_recipients.add("p2")
        receipt = await self.executor.run(self.proposal)
        assert receipt["totalRequested"] == 3
        assert receipt["successful"] == 2
        assert receipt["failed"] == 1
        assert receipt["items"][1] == {
            "recipient": "p2",
            "type": "nft",
            "success": False,
            "error": "mint_nft reverted",
        }

    @pytest.mark.asyncio
    async def test_total_failure_carries_receipt(self):
        self.chain.fail_recipients.update({"p1", "p2", "p3"})
        with pytest.raises(ExecutionError) as info:
            await self.executor.run(self.proposal)
        assert info.value.receipt["failed"] == 3
        assert len(info.value.receipt["items"]) == 3


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_unregistered_tag(self):
        with pytest.raises(ExecutionError, match="No adapter"):
            await OperationExecutor().run(approved("guildUpgrade", {"level": 2}))

    @pytest.mark.asyncio
    async def test_custom_adapter(self):
        executor = OperationExecutor()

        async def upgrade(proposal, wallets):
            return {"type": "guildUpgrade", "level": proposal.params["level"]}

        executor.register("guildUpgrade", upgrade)
        assert await executor.run(approved("guildUpgrade", {"level": 2})) == {
            "type": "guildUpgrade",
            "level": 2,
        }

    @pytest.mark.asyncio
    async def test_adapter_receives_wallet_registry(self):
        seen = []

        async def payout(proposal, wallets):
            seen.append(wallets.resolve(proposal.proposer_wallet_name))
            return {"type": "payout"}

        executor = OperationExecutor({"payout": payout}, InMemoryWalletRegistry({"ceo": "key-ceo"}))
        await executor.run(approved("payout", {}))
        await executor.run(approved("payout", {}), InMemoryWalletRegistry({"ceo": "other-key"}))
        assert seen == ["key-ceo", "other-key"]

    @pytest.mark.asyncio
    async def test_adapter_execution_error_passes_through(self):
        original = ExecutionError("quota exhausted", receipt={"type": "x"})

        async def failing(proposal, wallets):
            raise original

        executor = OperationExecutor({"guildUpgrade": failing})
        with pytest.raises(ExecutionError) as info:
            await executor.run(approved("guildUpgrade", {}))
        assert info.value is original
