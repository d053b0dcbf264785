"""Fee-derived gas policy for fill transactions.

The relayer spends a fraction of its expected fee on gas. The fee is what is
left of the deposit after the depositor's requested output and the LP fee
from the HubPool rate model:

    relayerFee = inputAmount - outputAmount - inputAmount * lpFeePct / 1e18

The fraction depends on the output amount tier. Fills from the home chain,
non-positive fees and amounts outside every tier use a fixed fallback price.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction
from typing import Any, Callable

from loguru import logger

from intent_relayer.chains.registry import HOME_CHAIN, DestinationChainConfig, parse_units
from intent_relayer.errors import EstimationError
from intent_relayer.orders import NormalizedFillOrder

WEI_PER_ETHER = 10**18

# Mainnet block time used to turn a quote timestamp into a block number
AVERAGE_BLOCK_TIME_SEC = 12

FEE_MARKET_GAS_LIMIT_MULTIPLIER = 2
LEGACY_GAS_LIMIT_MULTIPLIER = 5


@dataclass(frozen=True)
class GasTier:
    lower: Decimal
    upper: Decimal | None
    fraction: Decimal

    def contains(self, amount: int, decimals: int) -> bool:
        # Both bounds are exclusive
        if amount <= parse_units(self.lower, decimals):
            return False
        return self.upper is None or amount < parse_units(self.upper, decimals)


DEFAULT_GAS_TIERS: tuple[GasTier, ...] = (
    GasTier(Decimal("0"), Decimal("0.1"), Decimal("0.5")),
    GasTier(Decimal("0.1"), Decimal("0.4"), Decimal("0.35")),
    GasTier(Decimal("0.4"), Decimal("1"), Decimal("0.25")),
    GasTier(Decimal("1"), None, Decimal("0.2")),
)


@dataclass(frozen=True)
class GasTierTable:
    per_fill_gas_used: int
    fallback_gas_price: int
    tiers: tuple[GasTier, ...] = DEFAULT_GAS_TIERS
    divisors: dict[int, int] = field(default_factory=dict)

    def select(self, output_amount: int, decimals: int) -> GasTier | None:
        for tier in self.tiers:
            if tier.contains(output_amount, decimals):
                return tier
        return None

    def gas_price(self, relayer_fee: int, output_amount: int, decimals: int, destination_chain_id: int) -> int:
        tier = self.select(output_amount, decimals)
        if tier is None:
            return self.fallback_gas_price
        price = math.ceil(Fraction(relayer_fee) * Fraction(tier.fraction) / self.per_fill_gas_used)
        divisor = self.divisors.get(int(destination_chain_id))
        if divisor:
            price = -(-price // divisor)
        return price


@dataclass(frozen=True)
class GasPolicy:
    gas_limit: int
    gas_price: int | None = None
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None

    @classmethod
    def for_price(cls, price: int, per_fill_gas_used: int, fee_market: bool) -> GasPolicy:
        if fee_market:
            return cls(
                gas_limit=per_fill_gas_used * FEE_MARKET_GAS_LIMIT_MULTIPLIER,
                max_fee_per_gas=price,
                max_priority_fee_per_gas=price,
            )
        return cls(gas_limit=per_fill_gas_used * LEGACY_GAS_LIMIT_MULTIPLIER, gas_price=price)

    @property
    def fee_market(self) -> bool:
        return self.max_fee_per_gas is not None

    def tx_params(self) -> dict:
        """Gas params as they are applied to ``build_transaction()``."""
        if self.fee_market:
            return {
                "gas": self.gas_limit,
                "maxFeePerGas": self.max_fee_per_gas,
                "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            }
        return {"gas": self.gas_limit, "gasPrice": self.gas_price}


@dataclass(frozen=True)
class RateModel:
    """Kinked utilization rate curve, all values 1e18-scaled."""

    ubar: int
    r0: int
    r1: int
    r2: int


@dataclass(frozen=True)
class RateModelQuote:
    current_utilization: int
    post_fill_utilization: int
    raw_config: str


def _parse_rate_model(data: dict) -> RateModel:
    return RateModel(ubar=int(data["UBar"]), r0=int(data["R0"]), r1=int(data["R1"]), r2=int(data["R2"]))


def resolve_rate_model(raw_config: str, origin_chain_id: int, destination_chain_id: int) -> RateModel:
    """Pick the route-specific rate model from an l1TokenConfig blob, else the token default."""
    try:
        config = json.loads(raw_config)
        route = (config.get("routeRateModel") or {}).get(f"{origin_chain_id}-{destination_chain_id}")
        return _parse_rate_model(route or config["rateModel"])
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise EstimationError(f"Malformed rate model config: {raw_config!r}") from exc


async def find_closest_block(client, timestamp: int, block_time: int = AVERAGE_BLOCK_TIME_SEC) -> int:
    latest = await client.get_latest_block()
    delta = max(0, int(latest["timestamp"]) - int(timestamp))
    return max(0, int(latest["number"]) - delta // block_time)


@dataclass
class FeeGasEstimator:
    gas_table: GasTierTable
    home_client: Any
    oracle: Any
    # token symbol -> home chain (L1) token address
    l1_tokens: dict[str, str]
    destination_lookup: Callable[[int], DestinationChainConfig | None]
    home_chain_id: int = int(HOME_CHAIN)
    log: Any = field(default=logger)

    async def estimate(self, order: NormalizedFillOrder) -> GasPolicy:
        destination = self.destination_lookup(order.destination_chain_id)
        fee_market = destination.eip1559 if destination is not None else False

        if order.origin_chain_id == self.home_chain_id:
            return self._fallback(fee_market)

        try:
            relayer_fee = await self.relayer_fee(order)
        except EstimationError:
            raise
        except Exception as exc:
            raise EstimationError(f"Rate model lookup failed for {order.describe()}: {exc}") from exc

        if relayer_fee <= 0:
            self.log.debug("Non-positive relayer fee {} for {}; using fallback gas price", relayer_fee, order.describe())
            return self._fallback(fee_market)

        price = self.gas_table.gas_price(relayer_fee, order.output_amount, order.token_decimals, order.destination_chain_id)
        self.log.debug("Gas price {} for {} (relayer fee {})", price, order.describe(), relayer_fee)
        return GasPolicy.for_price(price, self.gas_table.per_fill_gas_used, fee_market)

    async def relayer_fee(self, order: NormalizedFillOrder) -> int:
        l1_token = self.l1_tokens.get(order.token_symbol)
        if not l1_token:
            raise EstimationError(f"No home chain token configured for {order.token_symbol}")

        block_number = await find_closest_block(self.home_client, order.quote_timestamp)
        quote: RateModelQuote = await self.oracle.quote(l1_token, order.input_amount, block_number)
        rate_model = resolve_rate_model(quote.raw_config, order.origin_chain_id, order.destination_chain_id)
        lp_fee_pct = self.oracle.realized_lp_fee_pct(rate_model, quote.current_utilization, quote.post_fill_utilization)

        lp_fee = order.input_amount * lp_fee_pct // WEI_PER_ETHER
        return order.input_amount - order.output_amount - lp_fee

    def _fallback(self, fee_market: bool) -> GasPolicy:
        return GasPolicy.for_price(self.gas_table.fallback_gas_price, self.gas_table.per_fill_gas_used, fee_market)
