"""
Guild Multisig — Operation tags and their parameter shapes.

One params model per built-in operation tag. The permission engine uses
``spend_amount`` for spending caps and the executor adapters consume the
parsed models, so both sides agree on a single definition of every shape.

Params arrive and are stored with camelCase keys (``initialSupply``,
``baseURI``); snake_case names are accepted too.
"""

from __future__ import annotations

import enum
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from guild_multisig.core.errors import InvalidParams

NATIVE_DECIMALS = 18


class OperationTag(str, enum.Enum):
    CREATE_ERC20_TOKEN = "createERC20Token"
    CREATE_MOVE_TOKEN = "createMoveToken"
    CREATE_NFT_COLLECTION = "createNFTCollection"
    MINT_NFT = "mintNFT"
    TRANSFER_ETH = "transferETH"
    BATCH_PLAYER_REWARDS = "batchPlayerRewards"
    EMERGENCY_STOP = "emergencyStop"


def parse_decimal_amount(value: Any) -> Decimal:
    """
    Parse an amount in the native asset.

    Accepts non-negative finite decimals with at most 18 fractional digits;
    raises ValueError otherwise.
    """
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"not a decimal amount: {value!r}") from None
    if not amount.is_finite():
        raise ValueError(f"amount must be finite: {value!r}")
    if amount < 0:
        raise ValueError(f"amount must not be negative: {value!r}")
    exponent = amount.as_tuple().exponent
    if isinstance(exponent, int) and -exponent > NATIVE_DECIMALS:
        raise ValueError(
            f"amount has more than {NATIVE_DECIMALS} fractional digits: {value!r}"
        )
    return amount


class OperationParams(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class CreateERC20TokenParams(OperationParams):
    name: str = Field(min_length=1)
    symbol: str = Field(min_length=1)
    initial_supply: str
    decimals: int = Field(default=18, ge=0, le=36)

    @field_validator("initial_supply", mode="before")
    @classmethod
    def _supply_as_string(cls, value: Any) -> str:
        parse_decimal_amount(value)
        return str(value)


class CreateMoveTokenParams(OperationParams):
    name: str = Field(min_length=1)
    symbol: str = Field(min_length=1)
    decimals: int = Field(default=8, ge=0, le=36)
    monitor_supply: bool = True


class CreateNFTCollectionParams(OperationParams):
    name: str = Field(min_length=1)
    symbol: str = Field(min_length=1)
    max_supply: int = Field(gt=0)
    base_uri: str | None = Field(default=None, alias="baseURI")
    mint_price: str | None = None


class MintNFTParams(OperationParams):
    contract_address: str = Field(min_length=1)
    to: str = Field(min_length=1)
    token_id: str
    metadata_uri: str | None = Field(default=None, alias="metadataURI")

    @field_validator("token_id", mode="before")
    @classmethod
    def _token_id_as_string(cls, value: Any) -> str:
        return str(value)


class TransferETHParams(OperationParams):
    to: str = Field(min_length=1)
    amount: str

    @field_validator("amount", mode="before")
    @classmethod
    def _positive_amount(cls, value: Any) -> str:
        if parse_decimal_amount(value) <= 0:
            raise ValueError("amount must be greater than zero")
        return str(value)


class RewardItem(OperationParams):
    recipient: str = Field(min_length=1)
    type: Literal["token", "nft"]
    token_address: str | None = None
    amount: str | None = None
    contract_address: str | None = None
    token_id: str | None = None
    metadata_uri: str | None = Field(default=None, alias="metadataURI")

    @field_validator("token_id", "amount", mode="before")
    @classmethod
    def _as_string(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @model_validator(mode="after")
    def _check_kind_fields(self) -> RewardItem:
        if self.type == "token":
            if not self.token_address or self.amount is None:
                raise ValueError("token rewards need tokenAddress and amount")
            parse_decimal_amount(self.amount)
        elif not self.contract_address or self.token_id is None:
            raise ValueError("nft rewards need contractAddress and tokenId")
        return self


class BatchPlayerRewardsParams(OperationParams):
    rewards: list[RewardItem] = Field(min_length=1)


class EmergencyStopParams(OperationParams):
    reason: str = ""


PARAMS_MODELS: dict[str, type[OperationParams]] = {
    OperationTag.CREATE_ERC20_TOKEN.value: CreateERC20TokenParams,
    OperationTag.CREATE_MOVE_TOKEN.value: CreateMoveTokenParams,
    OperationTag.CREATE_NFT_COLLECTION.value: CreateNFTCollectionParams,
    OperationTag.MINT_NFT.value: MintNFTParams,
    OperationTag.TRANSFER_ETH.value: TransferETHParams,
    OperationTag.BATCH_PLAYER_REWARDS.value: BatchPlayerRewardsParams,
    OperationTag.EMERGENCY_STOP.value: EmergencyStopParams,
}


def typed_params(operation: str, params: dict[str, Any]) -> OperationParams | None:
    """Validate ``params`` against the operation's model; None for custom tags."""
    model = PARAMS_MODELS.get(operation)
    if model is None:
        return None
    try:
        return model.model_validate(params)
    except ValidationError as exc:
        raise InvalidParams(f"Invalid params for {operation}: {exc}") from exc


def parse_params(operation: str, params: dict[str, Any] | None) -> dict[str, Any]:
    """
    Normalize proposal params.

    Built-in tags are validated and re-serialized with defaults filled in
    (camelCase keys). Custom tags pass through unchanged.
    """
    params = dict(params or {})
    parsed = typed_params(operation, params)
    if parsed is None:
        return params
    return parsed.model_dump(mode="json", by_alias=True, exclude_none=True)


def spend_amount(params: dict[str, Any]) -> Any | None:
    """The amount a proposal spends, when its params carry one."""
    return params.get("amount")
