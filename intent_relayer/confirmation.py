from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from intent_relayer.chains.registry import SourceChainConfig
from intent_relayer.orders import NormalizedFillOrder, hex_string


class GateState(str, Enum):
    INIT = "init"
    WAITING = "waiting"
    RELEASED = "released"
    DROPPED = "dropped"

    @property
    def terminal(self) -> bool:
        return self in (GateState.RELEASED, GateState.DROPPED)


@dataclass
class ConfirmationWait:
    """State of one order inside the gate. Reaches exactly one terminal state."""

    order: NormalizedFillOrder
    state: GateState = GateState.INIT

    def advance(self, state: GateState) -> GateState:
        if self.state.terminal:
            raise RuntimeError(f"{self.order.describe()} already {self.state.value}, cannot move to {state.value}")
        self.state = state
        return state


@dataclass
class ConfirmationGate:
    """Holds an order back until its deposit block is deep enough and still canonical."""

    source: SourceChainConfig
    client: Any
    block_poll_interval: float = 0.2
    log: Any = field(default=logger)

    def required_depth(self, amount: int) -> int | None:
        return self.source.thresholds.required_depth(amount)

    async def wait(self, order: NormalizedFillOrder) -> GateState:
        wait = ConfirmationWait(order)

        depth = self.required_depth(order.input_amount)
        if depth is None:
            self.log.debug("No confirmation threshold for {} (input {})", order.describe(), order.input_amount)
            return wait.advance(GateState.DROPPED)
        if depth == 0:
            return wait.advance(GateState.RELEASED)

        wait.advance(GateState.WAITING)
        target = order.block_number + depth
        try:
            head = await self.client.get_block_number()
            if head > target:
                return wait.advance(await self._check_pinned_block(order))
            self.log.debug("Not enough confirmations for {}: current {}, target {}", order.describe(), head, target)
            return wait.advance(await self._wait_for_target(order, target))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.log.warning("Error watching blocks for {}: {}", order.describe(), e)
            return wait.advance(GateState.DROPPED)

    async def _wait_for_target(self, order: NormalizedFillOrder, target: int) -> GateState:
        blocks = self.client.new_blocks(self.block_poll_interval)
        try:
            async for block in blocks:
                if int(block["number"]) >= target:
                    return await self._check_pinned_block(order)
        finally:
            await blocks.aclose()
        self.log.warning("Block stream for chain {} ended before {} reached block {}", int(self.source.chain_id), order.describe(), target)
        return GateState.DROPPED

    async def _check_pinned_block(self, order: NormalizedFillOrder) -> GateState:
        block = await self.client.get_block(order.block_number)
        fetched = hex_string(block["hash"])
        if fetched and fetched.lower() == order.block_hash.lower():
            self.log.debug("Confirmations reached for {} at block {}", order.describe(), order.block_number)
            return GateState.RELEASED
        self.log.info("Reorg dropped {}: block {} hash {} != {}", order.describe(), order.block_number, fetched, order.block_hash)
        return GateState.DROPPED
