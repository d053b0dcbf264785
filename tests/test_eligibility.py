from __future__ import annotations

import pytest
from conftest import OTHER_RELAYER, RELAYER, USDC_BASE, USDC_OPTIMISM, WETH_BASE


@pytest.fixture
def eligibility(destination):
    from intent_relayer.filtering import EligibilityFilter

    return EligibilityFilter(
        relayer_address=RELAYER,
        destination_lookup=lambda cid: destination if cid == 8453 else None,
    )


def test_accepts_open_deposit(eligibility, source, make_event):
    from intent_relayer.orders import NormalizedFillOrder

    order = eligibility.evaluate(make_event(), source)
    assert isinstance(order, NormalizedFillOrder)
    assert order.origin_chain_id == 10
    assert order.destination_chain_id == 8453
    assert order.token_symbol == "WETH"
    assert order.block_number == 100
    assert order.relay_data.output_token == WETH_BASE


def test_exclusive_to_this_relayer_is_accepted(eligibility, source, make_event):
    from intent_relayer.orders import NormalizedFillOrder

    event = make_event(exclusive_relayer=RELAYER)
    assert isinstance(eligibility.evaluate(event, source), NormalizedFillOrder)


def test_missing_block_info_is_incomplete(eligibility, source, make_event):
    from intent_relayer.filtering import RejectionReason

    assert eligibility.evaluate(make_event(block_number=None), source).reason is RejectionReason.INCOMPLETE
    assert eligibility.evaluate(make_event(block_hash=None), source).reason is RejectionReason.INCOMPLETE


def test_exclusivity_checked_before_everything_else(eligibility, source, make_event):
    from intent_relayer.filtering import RejectionReason

    # Unsupported destination and out-of-range amount would also fail
    event = make_event(exclusive_relayer=OTHER_RELAYER, destination_chain_id=137, output_amount=1)
    assert eligibility.evaluate(event, source).reason is RejectionReason.EXCLUSIVITY_VIOLATION


def test_unsupported_destination(eligibility, source, make_event):
    from intent_relayer.filtering import RejectionReason

    assert eligibility.evaluate(make_event(destination_chain_id=137), source).reason is RejectionReason.UNSUPPORTED_DESTINATION


def test_unknown_output_token(eligibility, source, make_event):
    from intent_relayer.filtering import RejectionReason

    event = make_event(input_token=USDC_OPTIMISM, output_token="0x5555555555555555555555555555555555555555")
    assert eligibility.evaluate(event, source).reason is RejectionReason.NO_MATCHING_TOKEN


def test_wrapped_native_input_matches_weth_entry(eligibility, source, make_event):
    from intent_relayer.orders import NormalizedFillOrder

    # Output token left as zero address: resolved through the source chain's WETH
    event = make_event(output_token="0x0000000000000000000000000000000000000000")
    order = eligibility.evaluate(event, source)
    assert isinstance(order, NormalizedFillOrder)
    assert order.token_symbol == "WETH"
    assert order.relay_data.output_token == WETH_BASE


def test_output_token_matched_case_insensitively(eligibility, source, make_event):
    from intent_relayer.orders import NormalizedFillOrder

    event = make_event(input_token=USDC_OPTIMISM, output_token=USDC_BASE.lower(), input_amount=100 * 10**6, output_amount=99 * 10**6)
    order = eligibility.evaluate(event, source)
    assert isinstance(order, NormalizedFillOrder)
    assert order.token_symbol == "USDC"
    assert order.token_decimals == 6
    assert order.relay_data.output_token == USDC_BASE


@pytest.mark.parametrize(
    "amount,accepted",
    [
        (10**15, True),
        (10**15 - 1, False),
        (10**18, True),
        (10**18 + 1, False),
    ],
)
def test_amount_bounds_are_inclusive(eligibility, source, make_event, amount, accepted):
    from intent_relayer.filtering import Rejection, RejectionReason

    result = eligibility.evaluate(make_event(output_amount=amount), source)
    if accepted:
        assert not isinstance(result, Rejection)
    else:
        assert result.reason is RejectionReason.AMOUNT_OUT_OF_RANGE


def test_evaluation_is_deterministic(eligibility, source, make_event):
    event = make_event()
    assert eligibility.evaluate(event, source) == eligibility.evaluate(event, source)


def test_filter_batch_keeps_only_accepted(eligibility, source, make_event):
    events = [
        make_event(deposit_id=1),
        make_event(deposit_id=2, exclusive_relayer=OTHER_RELAYER),
        make_event(deposit_id=3, destination_chain_id=42161),
        make_event(deposit_id=4),
    ]
    orders = eligibility.filter_batch(events, source)
    assert [o.relay_data.deposit_id for o in orders] == [1, 4]


def test_confirmation_thresholds_pick_greatest_breakpoint():
    from intent_relayer.chains.registry import ConfirmationThresholdTable

    table = ConfirmationThresholdTable.from_mapping({1: 2, 10: 5})
    assert table.required_depth(5 * 10**18) == 2
    assert table.required_depth(10 * 10**18) == 5
    assert table.required_depth(50 * 10**18) == 5
    assert table.required_depth(5 * 10**17) is None


def test_parse_units_truncates():
    from intent_relayer.chains.registry import parse_units

    assert parse_units("0.001", 18) == 10**15
    assert parse_units("1.2345678", 6) == 1_234_567


def test_raw_event_from_processed_log():
    from intent_relayer.orders import RawDepositEvent

    log = {
        "args": {
            "depositor": "0x3333333333333333333333333333333333333333",
            "recipient": "0x3333333333333333333333333333333333333333",
            "exclusiveRelayer": "0x0000000000000000000000000000000000000000",
            "inputToken": WETH_BASE,
            "outputToken": WETH_BASE,
            "inputAmount": 10**17,
            "outputAmount": 99 * 10**15,
            "destinationChainId": 8453,
            "depositId": 9,
            "quoteTimestamp": 1_700_000_000,
            "fillDeadline": 1_700_003_600,
            "exclusivityDeadline": 0,
            "message": b"",
        },
        "blockNumber": 123,
        "blockHash": bytes.fromhex("ab" * 32),
        "transactionHash": None,
    }
    event = RawDepositEvent.from_log(log, 10)
    assert event.block_hash == "0x" + "ab" * 32
    assert event.tx_hash is None
    assert event.origin_chain_id == 10
    assert event.deposit_id == 9
