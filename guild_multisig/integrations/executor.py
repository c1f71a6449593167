"""
Guild Multisig — On-chain operation execution.

The coordinator never talks to a chain directly. Once a proposal holds all
of its required approvals it hands the proposal to an ``OperationExecutor``,
which dispatches on the operation tag to an adapter. Adapters resolve the
proposer's signer from the wallet registry, call the ``ChainClient`` and
return a JSON-serializable receipt.

Any adapter failure surfaces as ``ExecutionError``; the coordinator marks the
proposal failed and does not retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Protocol

from guild_multisig.core.errors import ExecutionError
from guild_multisig.core.operations import (
    BatchPlayerRewardsParams,
    CreateERC20TokenParams,
    CreateMoveTokenParams,
    CreateNFTCollectionParams,
    EmergencyStopParams,
    MintNFTParams,
    OperationTag,
    TransferETHParams,
)
from guild_multisig.core.schema import Proposal

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════
# Collaborator protocols
# ════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ChainTransaction:
    """What a chain client reports back for one submitted transaction."""

    hash: str
    contract_address: str | None = None
    sender: str | None = None


class WalletRegistry(Protocol):
    """Maps wallet names to signers. Keys never leave the registry."""

    def resolve(self, wallet_name: str) -> Any | None: ...


class InMemoryWalletRegistry:
    """Registry backed by a dict of ``name -> signer``."""

    def __init__(self, wallets: Mapping[str, Any] | None = None) -> None:
        self._wallets: dict[str, Any] = dict(wallets or {})

    def register(self, wallet_name: str, signer: Any) -> None:
        self._wallets[wallet_name] = signer

    def resolve(self, wallet_name: str) -> Any | None:
        return self._wallets.get(wallet_name)

    def names(self) -> list[str]:
        return list(self._wallets)

    def __contains__(self, wallet_name: object) -> bool:
        return wallet_name in self._wallets


class ChainClient(Protocol):
    """Chain operations the built-in adapters need."""

    async def create_erc20_token(
        self, signer: Any, *, name: str, symbol: str, decimals: int, initial_supply: str
    ) -> ChainTransaction: ...

    async def create_move_token(
        self, signer: Any, *, name: str, symbol: str, decimals: int, monitor_supply: bool
    ) -> ChainTransaction: ...

    async def create_nft_collection(
        self, signer: Any, *, name: str, symbol: str, base_uri: str, max_supply: int,
        mint_price: str | None,
    ) -> ChainTransaction: ...

    async def mint_nft(
        self, signer: Any, *, contract_address: str, to: str, token_id: str, metadata_uri: str
    ) -> ChainTransaction: ...

    async def send_native(self, signer: Any, *, to: str, amount: str) -> ChainTransaction: ...

    async def transfer_token(
        self, signer: Any, *, token_address: str, to: str, amount: str
    ) -> ChainTransaction: ...


Adapter = Callable[[Proposal, WalletRegistry], Awaitable[dict[str, Any]]]


# ════════════════════════════════════════════════════════════════
# Built-in adapters
# ════════════════════════════════════════════════════════════════


class ChainAdapters:
    """The built-in adapters, sharing one chain client."""

    def __init__(self, chain: ChainClient) -> None:
        self.chain = chain

    def signer_for(self, proposal: Proposal, wallets: WalletRegistry) -> Any:
        signer = wallets.resolve(proposal.proposer_wallet_name)
        if signer is None:
            raise ExecutionError(
                f"No signer available for proposer '{proposal.proposer_wallet_name}'"
            )
        return signer

    def as_mapping(self) -> dict[str, Adapter]:
        return {
            OperationTag.CREATE_ERC20_TOKEN.value: self.create_erc20_token,
            OperationTag.CREATE_MOVE_TOKEN.value: self.create_move_token,
            OperationTag.CREATE_NFT_COLLECTION.value: self.create_nft_collection,
            OperationTag.MINT_NFT.value: self.mint_nft,
            OperationTag.TRANSFER_ETH.value: self.transfer_eth,
            OperationTag.BATCH_PLAYER_REWARDS.value: self.batch_player_rewards,
            OperationTag.EMERGENCY_STOP.value: self.emergency_stop,
        }

    async def create_erc20_token(
        self, proposal: Proposal, wallets: WalletRegistry
    ) -> dict[str, Any]:
        params = CreateERC20TokenParams.model_validate(proposal.params)
        tx = await self.chain.create_erc20_token(
            self.signer_for(proposal, wallets),
            name=params.name,
            symbol=params.symbol,
            decimals=params.decimals,
            initial_supply=params.initial_supply,
        )
        return {
            "type": "tokenCreation",
            "contractAddress": tx.contract_address,
            "transactionHash": tx.hash,
            "tokenName": params.name,
            "tokenSymbol": params.symbol,
        }

    async def create_move_token(
        self, proposal: Proposal, wallets: WalletRegistry
    ) -> dict[str, Any]:
        params = CreateMoveTokenParams.model_validate(proposal.params)
        tx = await self.chain.create_move_token(
            self.signer_for(proposal, wallets),
            name=params.name,
            symbol=params.symbol,
            decimals=params.decimals,
            monitor_supply=params.monitor_supply,
        )
        return {
            "type": "moveTokenCreation",
            "contractAddress": tx.contract_address,
            "transactionHash": tx.hash,
            "tokenName": params.name,
            "tokenSymbol": params.symbol,
        }

    async def create_nft_collection(
        self, proposal: Proposal, wallets: WalletRegistry
    ) -> dict[str, Any]:
        params = CreateNFTCollectionParams.model_validate(proposal.params)
        tx = await self.chain.create_nft_collection(
            self.signer_for(proposal, wallets),
            name=params.name,
            symbol=params.symbol,
            base_uri=params.base_uri or "",
            max_supply=params.max_supply,
            mint_price=params.mint_price,
        )
        return {
            "type": "nftCollection",
            "contractAddress": tx.contract_address,
            "transactionHash": tx.hash,
            "collectionName": params.name,
        }

    async def mint_nft(
        self, proposal: Proposal, wallets: WalletRegistry
    ) -> dict[str, Any]:
        params = MintNFTParams.model_validate(proposal.params)
        tx = await self.chain.mint_nft(
            self.signer_for(proposal, wallets),
            contract_address=params.contract_address,
            to=params.to,
            token_id=params.token_id,
            metadata_uri=params.metadata_uri or "",
        )
        return {
            "type": "nftMint",
            "transactionHash": tx.hash,
            "tokenId": params.token_id,
            "recipient": params.to,
        }

    async def transfer_eth(
        self, proposal: Proposal, wallets: WalletRegistry
    ) -> dict[str, Any]:
        params = TransferETHParams.model_validate(proposal.params)
        tx = await self.chain.send_native(
            self.signer_for(proposal, wallets), to=params.to, amount=params.amount
        )
        return {
            "type": "ethTransfer",
            "transactionHash": tx.hash,
            "from": tx.sender,
            "recipient": params.to,
            "amount": params.amount,
        }

    async def batch_player_rewards(
        self, proposal: Proposal, wallets: WalletRegistry
    ) -> dict[str, Any]:
        """
        Deliver each reward in order. Individual failures are recorded in the
        receipt; the batch fails only when every item failed.
        """
        params = BatchPlayerRewardsParams.model_validate(proposal.params)
        signer = self.signer_for(proposal, wallets)
        items: list[dict[str, Any]] = []
        for reward in params.rewards:
            try:
                if reward.type == "token":
                    tx = await self.chain.transfer_token(
                        signer,
                        token_address=reward.token_address or "",
                        to=reward.recipient,
                        amount=reward.amount or "0",
                    )
                else:
                    tx = await self.chain.mint_nft(
                        signer,
                        contract_address=reward.contract_address or "",
                        to=reward.recipient,
                        token_id=reward.token_id or "",
                        metadata_uri=reward.metadata_uri or "",
                    )
            except Exception as exc:
                logger.warning(
                    "Reward to %s in %s failed: %s", reward.recipient, proposal.id, exc
                )
                items.append({
                    "recipient": reward.recipient,
                    "type": reward.type,
                    "success": False,
                    "error": str(exc),
                })
            else:
                items.append({
                    "recipient": reward.recipient,
                    "type": reward.type,
                    "success": True,
                    "transactionHash": tx.hash,
                })

        successful = sum(1 for item in items if item["success"])
        receipt = {
            "type": "batchRewards",
            "totalRequested": len(items),
            "successful": successful,
            "failed": len(items) - successful,
            "items": items,
        }
        if successful == 0:
            raise ExecutionError(f"All {len(items)} rewards failed", receipt=receipt)
        return receipt

    async def emergency_stop(
        self, proposal: Proposal, wallets: WalletRegistry
    ) -> dict[str, Any]:
        params = EmergencyStopParams.model_validate(proposal.params)
        return {
            "type": "emergencyStop",
            "groupId": proposal.group_id,
            "reason": params.reason,
        }


# ════════════════════════════════════════════════════════════════
# Dispatcher
# ════════════════════════════════════════════════════════════════


class OperationExecutor:
    """
    Routes approved proposals to the adapter registered for their tag.

    Every adapter is called as ``adapter(proposal, wallets)``. ``run`` uses the
    registry it is given, else the one passed at construction.
    """

    def __init__(
        self,
        adapters: Mapping[str, Adapter] | None = None,
        wallets: WalletRegistry | None = None,
    ) -> None:
        self.adapters: dict[str, Adapter] = dict(adapters or {})
        self.wallets: WalletRegistry = wallets if wallets is not None else InMemoryWalletRegistry()

    def register(self, operation: str, adapter: Adapter) -> None:
        self.adapters[operation] = adapter

    def has_adapter(self, operation: str) -> bool:
        return operation in self.adapters

    async def run(
        self, proposal: Proposal, wallets: WalletRegistry | None = None
    ) -> dict[str, Any]:
        adapter = self.adapters.get(proposal.operation)
        if adapter is None:
            raise ExecutionError(f"No adapter registered for {proposal.operation}")
        registry = wallets if wallets is not None else self.wallets
        logger.info("Executing %s for proposal %s", proposal.operation, proposal.id)
        try:
            return await adapter(proposal, registry)
        except ExecutionError:
            raise
        except Exception as exc:
            raise ExecutionError(f"{proposal.operation} failed: {exc}") from exc


def default_executor(chain: ChainClient, wallets: WalletRegistry) -> OperationExecutor:
    """Executor with every built-in adapter registered."""
    return OperationExecutor(ChainAdapters(chain).as_mapping(), wallets)
