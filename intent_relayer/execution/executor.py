from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from intent_relayer.chains.evm import SPOKE_POOL_ABI
from intent_relayer.chains.registry import DestinationChainConfig
from intent_relayer.execution.errors import ErrorKind, classify_error
from intent_relayer.execution.gas import GasPolicy
from intent_relayer.orders import NormalizedFillOrder

FILL_FUNCTION = "fillV3Relay"


class FillStatus(str, Enum):
    SUBMITTED = "submitted"
    SIMULATED = "simulated"
    REVERTED = "reverted"
    EXECUTION_FAILED = "execution_failed"
    TRANSACTION_FAILED = "transaction_failed"


@dataclass(frozen=True)
class FillOutcome:
    status: FillStatus
    tx_hash: str | None = None
    detail: str | None = None


@dataclass
class FillExecutor:
    """Simulates and submits ``fillV3Relay`` on one destination chain."""

    destination: DestinationChainConfig
    client: Any
    log: Any = field(default=logger)

    async def fill(self, order: NormalizedFillOrder, policy: GasPolicy, simulate_only: bool) -> FillOutcome:
        chain_id = order.destination_chain_id
        try:
            request = await self.simulate(order, policy)
            if simulate_only:
                self.log.info("Simulated {} for {}", FILL_FUNCTION, order.describe())
                return FillOutcome(FillStatus.SIMULATED)

            self.log.debug("Filling {} on chain {}", order.describe(), chain_id)
            tx_hash = await self.client.submit(request)
            self.log.debug("Filled {} on chain {}: {}", order.describe(), chain_id, tx_hash)
            receipt = await self.client.wait_for_receipt(tx_hash)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._failed(order, e)

        if receipt.get("status") != 1:
            self.log.warning("Transaction failed: {}", tx_hash)
            return FillOutcome(FillStatus.TRANSACTION_FAILED, tx_hash=tx_hash)
        self.log.info("Transaction successful: {}", tx_hash)
        return FillOutcome(FillStatus.SUBMITTED, tx_hash=tx_hash)

    async def simulate(self, order: NormalizedFillOrder, policy: GasPolicy):
        request = await self.client.simulate_call(
            to=self.destination.spoke_pool_address,
            abi=SPOKE_POOL_ABI,
            function=FILL_FUNCTION,
            # Repayment is taken on the destination chain
            args=[order.relay_data.as_tuple(), order.destination_chain_id],
            gas_params=policy.tx_params(),
        )
        self.log.debug("Simulated {} for {}", FILL_FUNCTION, order.describe())
        return request

    def _failed(self, order: NormalizedFillOrder, error: Exception) -> FillOutcome:
        classified = classify_error(error, SPOKE_POOL_ABI)
        if classified.kind is ErrorKind.REVERT:
            self.log.warning("Failed to fill {}: {}", order.describe(), classified.name)
            return FillOutcome(FillStatus.REVERTED, detail=classified.name)
        if classified.kind is ErrorKind.EXECUTION:
            self.log.warning("Failed to fill {}: {}", order.describe(), classified.name)
            self.log.warning("Error: {}", classified.detail)
            return FillOutcome(FillStatus.EXECUTION_FAILED, detail=classified.name)
        self.log.warning("Failed to fill {}: {}", order.describe(), classified.detail)
        return FillOutcome(FillStatus.EXECUTION_FAILED, detail=classified.detail)
