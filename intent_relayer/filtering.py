from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from loguru import logger

from intent_relayer.chains.registry import (
    ZERO_ADDRESS,
    DestinationChainConfig,
    SourceChainConfig,
    same_address,
)
from intent_relayer.orders import NormalizedFillOrder, RawDepositEvent, RelayData


class RejectionReason(str, Enum):
    INCOMPLETE = "incomplete"
    EXCLUSIVITY_VIOLATION = "exclusivity_violation"
    UNSUPPORTED_DESTINATION = "unsupported_destination"
    NO_MATCHING_TOKEN = "no_matching_token"
    AMOUNT_OUT_OF_RANGE = "amount_out_of_range"


@dataclass(frozen=True)
class Rejection:
    reason: RejectionReason
    detail: str = ""


@dataclass
class EligibilityFilter:
    """Decides which deposits this relayer fills.

    Checks run in a fixed order and the first failing one is reported.
    """

    relayer_address: str
    # destination chain id -> config; a miss means the route is unsupported
    destination_lookup: Callable[[int], DestinationChainConfig | None]
    log: Any = field(default=logger)

    def evaluate(self, event: RawDepositEvent, source: SourceChainConfig) -> NormalizedFillOrder | Rejection:
        result = self._evaluate(event, source)
        if isinstance(result, Rejection):
            self.log.debug("Skipping deposit {} from chain {}: {} {}", event.deposit_id, int(source.chain_id), result.reason.value, result.detail)
        return result

    def filter_batch(self, events: Iterable[RawDepositEvent], source: SourceChainConfig) -> list[NormalizedFillOrder]:
        accepted: list[NormalizedFillOrder] = []
        for event in events:
            result = self.evaluate(event, source)
            if isinstance(result, NormalizedFillOrder):
                accepted.append(result)
        return accepted

    def _evaluate(self, event: RawDepositEvent, source: SourceChainConfig) -> NormalizedFillOrder | Rejection:
        if event.block_number is None or not event.block_hash:
            return Rejection(RejectionReason.INCOMPLETE, "no block number or block hash")

        if not (same_address(event.exclusive_relayer, self.relayer_address) or same_address(event.exclusive_relayer, ZERO_ADDRESS)):
            return Rejection(RejectionReason.EXCLUSIVITY_VIOLATION, f"exclusive relayer {event.exclusive_relayer}")

        destination = self.destination_lookup(event.destination_chain_id)
        if destination is None:
            return Rejection(RejectionReason.UNSUPPORTED_DESTINATION, f"destination chain {event.destination_chain_id}")

        token = destination.match_token(event.output_token, event.input_token, source.wrapped_native_address)
        if token is None:
            return Rejection(RejectionReason.NO_MATCHING_TOKEN, f"output token {event.output_token} on chain {event.destination_chain_id}")

        if not token.in_range(event.output_amount):
            return Rejection(
                RejectionReason.AMOUNT_OUT_OF_RANGE,
                f"{event.output_amount} not in [{token.min_raw}, {token.max_raw}] for {token.symbol} on chain {event.destination_chain_id}",
            )

        relay_data = RelayData(
            depositor=event.depositor,
            recipient=event.recipient,
            exclusive_relayer=event.exclusive_relayer,
            input_token=event.input_token,
            output_token=token.address,
            input_amount=event.input_amount,
            output_amount=event.output_amount,
            origin_chain_id=int(source.chain_id),
            deposit_id=int(event.deposit_id),
            fill_deadline=int(event.fill_deadline),
            exclusivity_deadline=int(event.exclusivity_deadline),
            message=event.message,
        )
        return NormalizedFillOrder(
            relay_data=relay_data,
            destination_chain_id=int(destination.chain_id),
            block_number=int(event.block_number),
            block_hash=event.block_hash,
            quote_timestamp=int(event.quote_timestamp),
            token_symbol=token.symbol,
            token_decimals=token.decimals,
        )
