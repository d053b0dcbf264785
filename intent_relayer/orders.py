from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RawDepositEvent:
    """A decoded ``V3FundsDeposited`` log as emitted by a source SpokePool."""

    depositor: str
    recipient: str
    exclusive_relayer: str
    input_token: str
    output_token: str
    input_amount: int
    output_amount: int
    destination_chain_id: int
    deposit_id: int
    quote_timestamp: int
    fill_deadline: int
    exclusivity_deadline: int
    message: bytes
    block_number: int | None
    block_hash: str | None
    tx_hash: str | None = None
    # The emitting SpokePool's chain; the event itself does not carry it
    origin_chain_id: int | None = None

    @classmethod
    def from_log(cls, log, origin_chain_id: int | None = None) -> RawDepositEvent:
        """Build from a web3 ``process_log`` result (an ``EventData`` mapping)."""
        args = log["args"]
        block_hash = log.get("blockHash")
        tx_hash = log.get("transactionHash")
        return cls(
            depositor=args["depositor"],
            recipient=args["recipient"],
            exclusive_relayer=args["exclusiveRelayer"],
            input_token=args["inputToken"],
            output_token=args["outputToken"],
            input_amount=int(args["inputAmount"]),
            output_amount=int(args["outputAmount"]),
            destination_chain_id=int(args["destinationChainId"]),
            deposit_id=int(args["depositId"]),
            quote_timestamp=int(args["quoteTimestamp"]),
            fill_deadline=int(args["fillDeadline"]),
            exclusivity_deadline=int(args["exclusivityDeadline"]),
            message=bytes(args["message"]),
            block_number=log.get("blockNumber"),
            block_hash=hex_string(block_hash),
            tx_hash=hex_string(tx_hash),
            origin_chain_id=origin_chain_id,
        )


def hex_string(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value if value.startswith("0x") else "0x" + value
    return "0x" + bytes(value).hex()


@dataclass(frozen=True)
class RelayData:
    """The ``V3RelayData`` struct passed to ``fillV3Relay``."""

    depositor: str
    recipient: str
    exclusive_relayer: str
    input_token: str
    output_token: str
    input_amount: int
    output_amount: int
    origin_chain_id: int
    deposit_id: int
    fill_deadline: int
    exclusivity_deadline: int
    message: bytes

    def as_tuple(self) -> tuple:
        return (
            self.depositor,
            self.recipient,
            self.exclusive_relayer,
            self.input_token,
            self.output_token,
            self.input_amount,
            self.output_amount,
            self.origin_chain_id,
            self.deposit_id,
            self.fill_deadline,
            self.exclusivity_deadline,
            self.message,
        )


@dataclass(frozen=True)
class NormalizedFillOrder:
    relay_data: RelayData
    destination_chain_id: int
    # Origin block pinning the deposit, used for reorg detection
    block_number: int
    block_hash: str
    quote_timestamp: int
    token_symbol: str
    token_decimals: int

    @property
    def origin_chain_id(self) -> int:
        return self.relay_data.origin_chain_id

    @property
    def input_amount(self) -> int:
        return self.relay_data.input_amount

    @property
    def output_amount(self) -> int:
        return self.relay_data.output_amount

    def describe(self) -> str:
        return f"deposit {self.relay_data.deposit_id} ({self.origin_chain_id} -> {self.destination_chain_id})"
