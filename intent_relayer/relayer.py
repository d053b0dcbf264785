from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from intent_relayer.chains.evm import MAX_UINT256, EvmChainClient
from intent_relayer.chains.registry import HOME_CHAIN
from intent_relayer.chains.watcher import ChainWatcher
from intent_relayer.config import ChainConfigTable, RelayerSettings, load_chain_table
from intent_relayer.confirmation import ConfirmationGate
from intent_relayer.errors import ConfigurationError, EstimationError
from intent_relayer.execution.executor import FillExecutor, FillOutcome
from intent_relayer.execution.gas import FeeGasEstimator
from intent_relayer.filtering import EligibilityFilter
from intent_relayer.orders import NormalizedFillOrder
from intent_relayer.providers.hub_pool import HubPoolOracle


@dataclass
class FillPipeline:
    """Released orders: gas policy first, then the fill on the destination chain."""

    estimator: FeeGasEstimator
    executors: dict[int, FillExecutor]
    simulate: bool
    log: Any = field(default=logger)

    async def handle(self, order: NormalizedFillOrder) -> FillOutcome | None:
        executor = self.executors.get(order.destination_chain_id)
        if executor is None:
            self.log.warning("No executor for destination chain {}; dropping {}", order.destination_chain_id, order.describe())
            return None
        try:
            policy = await self.estimator.estimate(order)
        except EstimationError as e:
            self.log.warning("Gas estimation failed for {}: {}", order.describe(), e)
            return None
        return await executor.fill(order, policy, simulate_only=self.simulate)


async def check_allowances(
    table: ChainConfigTable,
    clients: dict[int, Any],
    relayer_address: str,
    auto_approve: bool = False,
    log: Any = logger,
):
    """Make sure every destination SpokePool can pull each supported token from the relayer."""
    for chain_id, destination in table.destinations.items():
        client = clients[chain_id]
        spender = destination.spoke_pool_address
        for token in destination.supported_tokens:
            allowance = await client.allowance(token.address, relayer_address, spender)
            if allowance > 0:
                continue
            if not auto_approve:
                raise ConfigurationError(f"Not enough allowance of {token.symbol} on {chain_id}")
            log.info("Approving SpokePool {} for {} on chain {}", spender, token.symbol, chain_id)
            try:
                await client.approve(token.address, spender, MAX_UINT256)
            except Exception as exc:
                raise ConfigurationError(f"Approval of {token.symbol} on {chain_id} failed: {exc}") from exc


def build_clients(table: ChainConfigTable, address: str, private_key: str | None) -> dict[int, EvmChainClient]:
    return {
        cid: EvmChainClient.create(table.rpc_url(cid), cid, private_key, address)
        for cid in sorted(table.chain_ids())
    }


def build_watchers(
    settings: RelayerSettings,
    table: ChainConfigTable,
    clients: dict[int, Any],
    oracle: Any,
    relayer_address: str,
) -> list[ChainWatcher]:
    home_client = clients[int(HOME_CHAIN)]
    estimator = FeeGasEstimator(
        gas_table=table.gas,
        home_client=home_client,
        oracle=oracle,
        l1_tokens=table.l1_tokens,
        destination_lookup=table.destination,
        log=logger.bind(component="estimator"),
    )
    executors = {
        cid: FillExecutor(
            destination=destination,
            client=clients[cid],
            log=logger.bind(component="executor", chain=cid),
        )
        for cid, destination in table.destinations.items()
    }
    pipeline = FillPipeline(
        estimator=estimator,
        executors=executors,
        simulate=settings.simulate,
        log=logger.bind(component="pipeline"),
    )
    eligibility = EligibilityFilter(
        relayer_address=relayer_address,
        destination_lookup=table.destination,
        log=logger.bind(component="filter"),
    )

    watchers = []
    for cid, source in table.sources.items():
        chain_log = logger.bind(component="watcher", chain=cid)
        gate = ConfirmationGate(
            source=source,
            client=clients[cid],
            block_poll_interval=settings.block_poll_interval_sec,
            log=logger.bind(component="confirmation", chain=cid),
        )
        watchers.append(
            ChainWatcher(
                source=source,
                client=clients[cid],
                eligibility=eligibility,
                gate=gate,
                on_release=pipeline.handle,
                resubscribe_interval=settings.resubscribe_interval_sec,
                log=chain_log,
            )
        )
    return watchers


async def run_relayer(settings: RelayerSettings):
    table = load_chain_table(settings.chains_config, settings)
    relayer_address, private_key = settings.identity()
    logger.info("Relayer {} (simulate={})", relayer_address, settings.simulate)
    logger.info("Config: {}", json.dumps(table.summary(), indent=2, default=str))

    clients = build_clients(table, relayer_address, private_key)

    logger.info("Checking allowance...")
    await check_allowances(table, clients, relayer_address, settings.auto_approve)
    logger.info("Completed checking allowance")

    oracle = HubPoolOracle(w3=clients[int(HOME_CHAIN)].w3)
    watchers = build_watchers(settings, table, clients, oracle, relayer_address)
    await asyncio.gather(*(w.run() for w in watchers))
