from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Confirmation breakpoints and gas tiers are expressed in ether-like units
ETHER_DECIMALS = 18

WRAPPED_NATIVE_SYMBOL = "WETH"


class SupportedChain(IntEnum):
    ETHEREUM = 1
    OPTIMISM = 10
    POLYGON = 137
    ZKSYNC = 324
    BASE = 8453
    ARBITRUM = 42161
    LINEA = 59144


# The HubPool and its rate model live on mainnet
HOME_CHAIN = SupportedChain.ETHEREUM
HUB_POOL_ADDRESS = "0xc186fA914353c44b2E33eBE05f21846F1048bEda"
CONFIG_STORE_ADDRESS = "0x3B03509645713718B78951126E0A6de6f10043f5"

SPOKE_POOL_ADDRESSES: dict[SupportedChain, str] = {
    SupportedChain.ETHEREUM: "0x5c7BCd6E7De5423a257D81B442095A1a6ced35C5",
    SupportedChain.OPTIMISM: "0x6f26Bf09B1C792e3228e5467807a900A503c0281",
    SupportedChain.POLYGON: "0x9295ee1d8C5b022Be115A2AD3c30C72E34e7F096",
    SupportedChain.ZKSYNC: "0xE0B015E54d54fc84a6cB9B666099c46adE9335FF",
    SupportedChain.BASE: "0x09aea4b2242abC8bb4BB78D537A67a245A7bEC64",
    SupportedChain.ARBITRUM: "0xe35e9842fceaCA96570B734083f4a58e8F7C5f2A",
    SupportedChain.LINEA: "0x7E63A5f1a8F0B4d0934B2f2327DAED3F6bb2ee75",
}

WRAPPED_NATIVE_ADDRESSES: dict[SupportedChain, str] = {
    SupportedChain.ETHEREUM: "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
    SupportedChain.OPTIMISM: "0x4200000000000000000000000000000000000006",
    SupportedChain.POLYGON: "0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619",
    SupportedChain.ZKSYNC: "0x5AEa5775959fBC2557Cc8789bC1bf90A239D9a91",
    SupportedChain.BASE: "0x4200000000000000000000000000000000000006",
    SupportedChain.ARBITRUM: "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
    SupportedChain.LINEA: "0xe5D7C2a44FfDDf6b295A15c148167daaAf5Cf34f",
}


def parse_units(value: Decimal | int | str, decimals: int) -> int:
    """Convert a human-unit amount into raw on-chain units, truncating extra precision."""
    return int(Decimal(str(value)).scaleb(decimals))


def same_address(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return a.lower() == b.lower()


def exact_decimal(value):
    """YAML floats become Decimals via their shortest repr, not their binary expansion."""
    if isinstance(value, float):
        return Decimal(repr(value))
    return value


def _checksum(value: str) -> str:
    try:
        return Web3.to_checksum_address(value)
    except Exception as exc:  # web3 raises ValueError/InvalidAddress for malformed input
        raise ValueError(f"invalid address: {value}") from exc


class SupportedToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    symbol: str
    decimals: int = Field(ge=0, le=36)
    min_amount: Decimal = Field(ge=0)
    max_amount: Decimal = Field(ge=0)

    @field_validator("min_amount", "max_amount", mode="before")
    @classmethod
    def _amounts(cls, v):
        return exact_decimal(v)

    @field_validator("address")
    @classmethod
    def _address(cls, v: str) -> str:
        return _checksum(v)

    @model_validator(mode="after")
    def _bounds(self):
        if self.min_amount > self.max_amount:
            raise ValueError(f"{self.symbol}: min_amount {self.min_amount} exceeds max_amount {self.max_amount}")
        return self

    @property
    def min_raw(self) -> int:
        return parse_units(self.min_amount, self.decimals)

    @property
    def max_raw(self) -> int:
        return parse_units(self.max_amount, self.decimals)

    def in_range(self, raw_amount: int) -> bool:
        return self.min_raw <= raw_amount <= self.max_raw


@dataclass(frozen=True)
class ConfirmationThresholdTable:
    """Input-amount breakpoints (raw units, ascending) to required extra confirmations."""

    rows: tuple[tuple[int, int], ...]

    @classmethod
    def from_mapping(cls, mapping: dict[Decimal, int]) -> ConfirmationThresholdTable:
        rows = sorted((parse_units(k, ETHER_DECIMALS), int(v)) for k, v in mapping.items())
        return cls(rows=tuple(rows))

    def required_depth(self, amount: int) -> int | None:
        """Depth of the greatest breakpoint not exceeding ``amount``; ``None`` when none qualifies."""
        depth = None
        for breakpoint_, confirmations in self.rows:
            if breakpoint_ > amount:
                break
            depth = confirmations
        return depth


class SourceChainConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    chain_id: SupportedChain
    rpc_url: str | None = None
    polling_interval: float = Field(default=2.0, gt=0)
    block_range: int = Field(default=1000, gt=0)
    confirmation: dict[Decimal, int] = Field(default_factory=dict)

    @field_validator("confirmation", mode="before")
    @classmethod
    def _breakpoints(cls, v):
        if isinstance(v, dict):
            return {exact_decimal(k): depth for k, depth in v.items()}
        return v

    @field_validator("confirmation")
    @classmethod
    def _non_negative(cls, v: dict[Decimal, int]) -> dict[Decimal, int]:
        for k, depth in v.items():
            if k < 0 or depth < 0:
                raise ValueError(f"confirmation entries must be non-negative: {k} -> {depth}")
        return v

    @property
    def spoke_pool_address(self) -> str:
        return SPOKE_POOL_ADDRESSES[self.chain_id]

    @property
    def wrapped_native_address(self) -> str:
        return WRAPPED_NATIVE_ADDRESSES[self.chain_id]

    @property
    def thresholds(self) -> ConfirmationThresholdTable:
        return ConfirmationThresholdTable.from_mapping(self.confirmation)


class DestinationChainConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    chain_id: SupportedChain
    rpc_url: str | None = None
    eip1559: bool = True
    supported_tokens: tuple[SupportedToken, ...] = Field(min_length=1)

    @property
    def spoke_pool_address(self) -> str:
        return SPOKE_POOL_ADDRESSES[self.chain_id]

    def match_token(self, output_token: str, input_token: str, source_wrapped_native: str) -> SupportedToken | None:
        """First supported token matching ``output_token`` directly or through wrapped-native equivalence."""
        wrapped_input = same_address(input_token, source_wrapped_native)
        for token in self.supported_tokens:
            if same_address(token.address, output_token):
                return token
            if wrapped_input and token.symbol == WRAPPED_NATIVE_SYMBOL:
                return token
        return None
