from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from intent_relayer.chains.evm import DEPOSIT_EVENT
from intent_relayer.chains.registry import SourceChainConfig
from intent_relayer.confirmation import ConfirmationGate, GateState
from intent_relayer.filtering import EligibilityFilter
from intent_relayer.orders import NormalizedFillOrder, RawDepositEvent


@dataclass
class ChainWatcher:
    """Watches one source chain for deposits and hands fillable ones to the pipeline.

    The log subscription is recreated every ``resubscribe_interval`` seconds.
    Scanning resumes from the block after the last scanned one, so polling
    subscriptions do not skip or repeat blocks across the restart.
    """

    source: SourceChainConfig
    client: Any
    eligibility: EligibilityFilter
    gate: ConfirmationGate
    on_release: Callable[[NormalizedFillOrder], Awaitable[Any]]
    resubscribe_interval: float = 300.0
    log: Any = field(default=logger)
    next_block: int | None = None
    _tasks: set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    @property
    def chain_id(self) -> int:
        return int(self.source.chain_id)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def run(self):
        self.log.info("Listening for {} events on chain id {}", DEPOSIT_EVENT, self.chain_id)
        while True:
            await self.watch_once()

    async def watch_once(self):
        """One subscription lifetime: consume batches until the resubscribe deadline."""
        batches = self.client.deposit_events(
            self.source.spoke_pool_address,
            self.next_block,
            self.source.polling_interval,
            self.source.block_range,
        )
        deadline = asyncio.timeout(self.resubscribe_interval)
        try:
            async with deadline:
                async for batch in batches:
                    if batch.events:
                        self.log.debug("Found {} {} events on chain {}", len(batch.events), DEPOSIT_EVENT, self.chain_id)
                        self.dispatch(batch.events)
                    self.next_block = batch.to_block + 1
        except TimeoutError as e:
            # RPC request timeouts raise the same class as the resubscribe deadline
            if deadline.expired():
                self.log.debug("Resubscribing to {} on chain {} from block {}", DEPOSIT_EVENT, self.chain_id, self.next_block)
            else:
                await self._subscription_failed(e)
        except Exception as e:
            await self._subscription_failed(e)
        finally:
            await batches.aclose()

    async def _subscription_failed(self, error: Exception):
        self.log.exception("Deposit subscription error on chain {}: {}", self.chain_id, error)
        await asyncio.sleep(self.source.polling_interval)

    def dispatch(self, events: list[RawDepositEvent]) -> list[asyncio.Task]:
        orders = self.eligibility.filter_batch(events, self.source)
        if orders:
            self.log.debug("Found {} fill orders on chain {}: {}", len(orders), self.chain_id, [o.describe() for o in orders])
        tasks = []
        for order in orders:
            task = asyncio.create_task(self._process(order))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)
        return tasks

    async def drain(self):
        """Wait for every in-flight order task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _process(self, order: NormalizedFillOrder):
        try:
            state = await self.gate.wait(order)
            if state is GateState.RELEASED:
                await self.on_release(order)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.log.exception("Unhandled error processing {}: {}", order.describe(), e)
