from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import yaml
from eth_account import Account
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

from intent_relayer.chains.registry import (
    HOME_CHAIN,
    DestinationChainConfig,
    SourceChainConfig,
    SupportedChain,
    exact_decimal,
    parse_units,
)
from intent_relayer.errors import ConfigurationError
from intent_relayer.execution.gas import DEFAULT_GAS_TIERS, GasTier, GasTierTable

GWEI_DECIMALS = 9


class GasTierConfig(BaseModel):
    lower: Decimal = Field(ge=0)
    upper: Decimal | None = None
    fraction: Decimal = Field(gt=0, le=1)

    @field_validator("lower", "upper", "fraction", mode="before")
    @classmethod
    def _exact(cls, v):
        return exact_decimal(v)


class GasConfig(BaseModel):
    per_fill_gas_used: int = Field(default=100_000, gt=0)
    fallback_gas_price_gwei: Decimal = Field(default=Decimal("1"), gt=0)
    tiers: list[GasTierConfig] | None = None
    # destination chain id -> divisor applied to the derived gas price
    divisors: dict[int, int] = {}
    # token symbol -> home chain token used for the rate model
    l1_tokens: dict[str, str] = {
        "WETH": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        "USDC": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    }

    @field_validator("fallback_gas_price_gwei", mode="before")
    @classmethod
    def _exact(cls, v):
        return exact_decimal(v)

    @field_validator("divisors")
    @classmethod
    def _positive_divisors(cls, v: dict[int, int]) -> dict[int, int]:
        if any(d <= 0 for d in v.values()):
            raise ValueError("gas divisors must be positive")
        return v

    @field_validator("l1_tokens")
    @classmethod
    def _checksum_tokens(cls, v: dict[str, str]) -> dict[str, str]:
        return {symbol: Web3.to_checksum_address(addr) for symbol, addr in v.items()}

    def table(self) -> GasTierTable:
        tiers = DEFAULT_GAS_TIERS
        if self.tiers is not None:
            tiers = tuple(GasTier(lower=t.lower, upper=t.upper, fraction=t.fraction) for t in self.tiers)
        return GasTierTable(
            per_fill_gas_used=self.per_fill_gas_used,
            fallback_gas_price=parse_units(self.fallback_gas_price_gwei, GWEI_DECIMALS),
            tiers=tiers,
            divisors=dict(self.divisors),
        )


class ChainTableFile(BaseModel):
    """Shape of the chains YAML file."""

    home_rpc_url: str | None = None
    source_chains: list[SourceChainConfig] = Field(min_length=1)
    destination_chains: list[DestinationChainConfig] = Field(min_length=1)
    gas: GasConfig = GasConfig()


@dataclass(frozen=True)
class ChainConfigTable:
    """Validated per-chain configuration, built once at startup."""

    sources: dict[int, SourceChainConfig]
    destinations: dict[int, DestinationChainConfig]
    gas: GasTierTable
    l1_tokens: dict[str, str]
    rpc_urls: dict[int, str]

    def source(self, chain_id: int) -> SourceChainConfig | None:
        return self.sources.get(int(chain_id))

    def destination(self, chain_id: int) -> DestinationChainConfig | None:
        return self.destinations.get(int(chain_id))

    def chain_ids(self) -> set[int]:
        return {int(HOME_CHAIN), *self.sources, *self.destinations}

    def rpc_url(self, chain_id: int) -> str:
        url = self.rpc_urls.get(int(chain_id))
        if not url:
            raise ConfigurationError(f"No RPC URL configured for chain {chain_id}")
        return url

    def summary(self) -> dict:
        return {
            "source_chains": {cid: {"confirmation": {str(k): v for k, v in s.confirmation.items()}} for cid, s in self.sources.items()},
            "destination_chains": {cid: [t.symbol for t in d.supported_tokens] for cid, d in self.destinations.items()},
            "per_fill_gas_used": self.gas.per_fill_gas_used,
            "fallback_gas_price": self.gas.fallback_gas_price,
        }


class RelayerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="RELAYER_", extra="allow")

    # Config files
    chains_config: str = "config/chains.yaml"

    # Execution
    simulate: bool = True
    private_key: str | None = None
    relayer_address: str | None = None
    auto_approve: bool = False

    # RPC endpoints per chain id; override rpc_url entries in the chains file
    rpc_urls: dict[int, str] = {}

    # Polling
    resubscribe_interval_sec: float = 300.0
    block_poll_interval_sec: float = 0.2

    # Logging
    log_level: str = "INFO"
    log_dir: str | None = None

    # --- Validators to coerce empty strings in optional envs to None ---
    @field_validator("private_key", "relayer_address", "log_dir", mode="before")
    @classmethod
    def _empty_str_to_none(cls, v):
        if v == "":
            return None
        return v

    def identity(self) -> tuple[str, str | None]:
        """Relayer address and signing key; the address is derived from the key when not set."""
        if not self.simulate and not self.private_key:
            raise ConfigurationError("A private key is required when not running in simulate mode")
        address = self.relayer_address
        if self.private_key:
            try:
                derived = Account.from_key(self.private_key).address
            except Exception as exc:  # eth_account raises ValueError/binascii errors for malformed keys
                raise ConfigurationError("Invalid relayer private key") from exc
            if address and address.lower() != derived.lower():
                raise ConfigurationError(f"relayer_address {address} does not match the private key ({derived})")
            address = derived
        if not address:
            raise ConfigurationError("Relayer identity missing: set RELAYER_PRIVATE_KEY or RELAYER_RELAYER_ADDRESS")
        try:
            return Web3.to_checksum_address(address), self.private_key
        except ValueError as exc:
            raise ConfigurationError(f"Invalid relayer address: {address}") from exc


def _load_yaml(path: Path) -> dict:
    try:
        data = yaml.safe_load(path.read_text())
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Config file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Config file contains invalid YAML: {path}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {path}")
    return data


def _unique(chains: list, role: str) -> dict:
    out: dict = {}
    for chain in chains:
        cid = int(chain.chain_id)
        if cid in out:
            raise ConfigurationError(f"Duplicate {role} chain {cid}")
        out[cid] = chain
    return out


def load_chain_table(path: str | Path, settings: RelayerSettings | None = None) -> ChainConfigTable:
    """Load and validate the chains file. Any problem is a ``ConfigurationError``."""
    data = _load_yaml(Path(path))
    try:
        parsed = ChainTableFile.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid chain configuration in {path}:\n{exc}") from exc

    sources = _unique(parsed.source_chains, "source")
    destinations = _unique(parsed.destination_chains, "destination")

    for cid in parsed.gas.divisors:
        try:
            SupportedChain(cid)
        except ValueError as exc:
            raise ConfigurationError(f"Chain id {cid} is not supported") from exc

    rpc_urls: dict[int, str] = {}
    if parsed.home_rpc_url:
        rpc_urls[int(HOME_CHAIN)] = parsed.home_rpc_url
    for chain in [*parsed.source_chains, *parsed.destination_chains]:
        if chain.rpc_url:
            rpc_urls[int(chain.chain_id)] = chain.rpc_url
    if settings is not None:
        rpc_urls.update({int(k): v for k, v in settings.rpc_urls.items() if v})

    table = ChainConfigTable(
        sources=sources,
        destinations=destinations,
        gas=parsed.gas.table(),
        l1_tokens=dict(parsed.gas.l1_tokens),
        rpc_urls=rpc_urls,
    )
    for cid in table.chain_ids():
        table.rpc_url(cid)
    return table
