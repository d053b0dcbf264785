from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, localcontext

from web3 import AsyncWeb3, Web3

from intent_relayer.chains.evm import CONFIG_STORE_ABI, HUB_POOL_ABI
from intent_relayer.chains.registry import CONFIG_STORE_ADDRESS, HUB_POOL_ADDRESS
from intent_relayer.execution.gas import RateModel, RateModelQuote

_SCALE = Decimal(10**18)
_WEEKS_PER_YEAR = 52


def _fractions(model: RateModel) -> tuple[Decimal, Decimal, Decimal, Decimal]:
    return tuple(Decimal(v) / _SCALE for v in (model.ubar, model.r0, model.r1, model.r2))  # type: ignore[return-value]


def instantaneous_rate(model: RateModel, utilization: Decimal) -> Decimal:
    ubar, r0, r1, r2 = _fractions(model)
    before_kink = min(utilization, ubar) * r1 / ubar if ubar > 0 else Decimal(0)
    after_kink = max(Decimal(0), utilization - ubar) * r2 / (1 - ubar) if ubar < 1 else Decimal(0)
    return r0 + before_kink + after_kink


def area_under_rate_curve(model: RateModel, utilization: Decimal) -> Decimal:
    """Integral of the rate curve from zero to ``utilization``."""
    ubar, r0, r1, r2 = _fractions(model)
    below = min(utilization, ubar)
    area = r0 * below
    if ubar > 0:
        area += r1 * below * below / (2 * ubar)
    if utilization > ubar:
        above = utilization - ubar
        area += (r0 + r1) * above
        if ubar < 1:
            area += r2 * above * above / (2 * (1 - ubar))
    return area


def realized_lp_fee_pct(model: RateModel, utilization_before: int, utilization_after: int) -> int:
    """Weekly LP fee (1e18 scale) for moving pool utilization from before to after.

    The APY charged is the average of the rate curve over the utilization
    interval, then compounded down to a one week fee.
    """
    with localcontext() as ctx:
        ctx.prec = 60
        before = Decimal(utilization_before) / _SCALE
        after = Decimal(utilization_after) / _SCALE
        if after == before:
            apy = instantaneous_rate(model, before)
        else:
            apy = (area_under_rate_curve(model, after) - area_under_rate_curve(model, before)) / (after - before)
        weekly = (1 + apy) ** (Decimal(1) / _WEEKS_PER_YEAR) - 1
        return int((weekly * _SCALE).to_integral_value(rounding=ROUND_DOWN))


@dataclass
class HubPoolOracle:
    """Reads utilization and rate model config from the home chain HubPool."""

    w3: AsyncWeb3
    hub_pool_address: str = HUB_POOL_ADDRESS
    config_store_address: str = CONFIG_STORE_ADDRESS

    async def quote(self, l1_token: str, amount: int, block_number: int) -> RateModelQuote:
        token = Web3.to_checksum_address(l1_token)
        hub = self.w3.eth.contract(address=Web3.to_checksum_address(self.hub_pool_address), abi=HUB_POOL_ABI)
        store = self.w3.eth.contract(address=Web3.to_checksum_address(self.config_store_address), abi=CONFIG_STORE_ABI)
        current, post_fill, raw_config = await asyncio.gather(
            hub.functions.liquidityUtilizationCurrent(token).call(block_identifier=block_number),
            hub.functions.liquidityUtilizationPostRelay(token, amount).call(block_identifier=block_number),
            store.functions.l1TokenConfig(token).call(block_identifier=block_number),
        )
        return RateModelQuote(current_utilization=int(current), post_fill_utilization=int(post_fill), raw_config=str(raw_config))

    def realized_lp_fee_pct(self, model: RateModel, current_utilization: int, post_fill_utilization: int) -> int:
        return realized_lp_fee_pct(model, current_utilization, post_fill_utilization)
