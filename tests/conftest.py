from __future__ import annotations

import pytest

RELAYER = "0x1111111111111111111111111111111111111111"
OTHER_RELAYER = "0x2222222222222222222222222222222222222222"
DEPOSITOR = "0x3333333333333333333333333333333333333333"
WETH_OPTIMISM = "0x4200000000000000000000000000000000000006"
WETH_BASE = "0x4200000000000000000000000000000000000006"
USDC_OPTIMISM = "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85"
USDC_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
BLOCK_HASH = "0x" + "ab" * 32


class FakeChain:
    """In-memory stand-in for EvmChainClient."""

    def __init__(self, head=100, timestamp=1_700_000_000):
        self.head = head
        self.timestamp = timestamp
        self.hashes: dict[int, str] = {}
        self.stream: list[int] = []
        self.stream_error: Exception | None = None
        self.stream_closed = 0
        self.batches: list = []
        self.subscriptions: list[int | None] = []
        self.simulated: list[dict] = []
        self.submitted: list[dict] = []
        self.simulate_error: Exception | None = None
        self.receipt_status = 1
        self.allowances: dict[str, int] = {}
        self.approved: list[tuple[str, str, int]] = []

    async def get_block_number(self):
        return self.head

    async def get_latest_block(self):
        return {"number": self.head, "timestamp": self.timestamp}

    async def get_block(self, number):
        return {"number": number, "hash": self.hashes.get(number, BLOCK_HASH)}

    async def new_blocks(self, interval):
        try:
            for number in self.stream:
                yield {"number": number}
            if self.stream_error is not None:
                raise self.stream_error
        finally:
            self.stream_closed += 1

    async def deposit_events(self, address, from_block, interval, block_range):
        self.subscriptions.append(from_block)
        while self.batches:
            yield self.batches.pop(0)

    async def simulate_call(self, to, abi, function, args, gas_params=None):
        self.simulated.append({"to": to, "function": function, "args": args, "gas_params": gas_params})
        if self.simulate_error is not None:
            raise self.simulate_error
        return {"to": to, "data": "0x", **(gas_params or {})}

    async def submit(self, tx):
        self.submitted.append(tx)
        return "0x" + "cd" * 32

    async def wait_for_receipt(self, tx_hash):
        return {"status": self.receipt_status, "transactionHash": tx_hash}

    async def allowance(self, token, owner, spender):
        return self.allowances.get(token, 0)

    async def approve(self, token, spender, amount):
        self.approved.append((token, spender, amount))
        self.allowances[token] = amount
        return "0x" + "ef" * 32


@pytest.fixture
def fake_chain():
    return FakeChain


@pytest.fixture
def source():
    from intent_relayer.chains.registry import SourceChainConfig

    return SourceChainConfig(chain_id=10, confirmation={"0": 0})


@pytest.fixture
def destination():
    from intent_relayer.chains.registry import DestinationChainConfig

    return DestinationChainConfig(
        chain_id=8453,
        supported_tokens=[
            {"address": WETH_BASE, "symbol": "WETH", "decimals": 18, "min_amount": "0.001", "max_amount": "1"},
            {"address": USDC_BASE, "symbol": "USDC", "decimals": 6, "min_amount": "10", "max_amount": "5000"},
        ],
    )


@pytest.fixture
def make_event():
    from intent_relayer.orders import RawDepositEvent

    def _make(**overrides):
        fields = dict(
            depositor=DEPOSITOR,
            recipient=DEPOSITOR,
            exclusive_relayer="0x0000000000000000000000000000000000000000",
            input_token=WETH_OPTIMISM,
            output_token=WETH_BASE,
            input_amount=10**17,
            output_amount=99 * 10**15,
            destination_chain_id=8453,
            deposit_id=7,
            quote_timestamp=1_700_000_000,
            fill_deadline=1_700_003_600,
            exclusivity_deadline=0,
            message=b"",
            block_number=100,
            block_hash=BLOCK_HASH,
            tx_hash="0x" + "01" * 32,
        )
        fields.update(overrides)
        return RawDepositEvent(**fields)

    return _make


@pytest.fixture
def make_order(make_event, source, destination):
    from intent_relayer.filtering import EligibilityFilter

    eligibility = EligibilityFilter(
        relayer_address=RELAYER,
        destination_lookup=lambda cid: destination if cid == int(destination.chain_id) else None,
    )

    def _make(**overrides):
        order = eligibility.evaluate(make_event(**overrides), source)
        assert not hasattr(order, "reason"), order
        return order

    return _make
