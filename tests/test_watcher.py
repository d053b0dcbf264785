from __future__ import annotations

import asyncio

import pytest
from conftest import OTHER_RELAYER, RELAYER


class FakeOracle:
    async def quote(self, l1_token, amount, block_number):
        from intent_relayer.execution.gas import RateModelQuote

        return RateModelQuote(
            current_utilization=0,
            post_fill_utilization=0,
            raw_config='{"rateModel": {"UBar": "0", "R0": "0", "R1": "0", "R2": "0"}}',
        )

    def realized_lp_fee_pct(self, model, current_utilization, post_fill_utilization):
        return 0


def _watcher(source_chain, dest_chain, source, destination, on_release=None, simulate=True, **kwargs):
    from intent_relayer.chains.watcher import ChainWatcher
    from intent_relayer.confirmation import ConfirmationGate
    from intent_relayer.execution.executor import FillExecutor
    from intent_relayer.execution.gas import FeeGasEstimator, GasTierTable
    from intent_relayer.filtering import EligibilityFilter
    from intent_relayer.relayer import FillPipeline

    def lookup(cid):
        return destination if cid == int(destination.chain_id) else None

    pipeline = FillPipeline(
        estimator=FeeGasEstimator(
            gas_table=GasTierTable(per_fill_gas_used=100_000, fallback_gas_price=10**9),
            home_client=source_chain,
            oracle=FakeOracle(),
            l1_tokens={"WETH": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"},
            destination_lookup=lookup,
        ),
        executors={8453: FillExecutor(destination=destination, client=dest_chain)},
        simulate=simulate,
    )
    return ChainWatcher(
        source=source,
        client=source_chain,
        eligibility=EligibilityFilter(relayer_address=RELAYER, destination_lookup=lookup),
        gate=ConfirmationGate(source=source, client=source_chain, block_poll_interval=0),
        on_release=on_release or pipeline.handle,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_deposit_flows_to_a_single_simulated_fill(fake_chain, source, destination, make_event):
    from intent_relayer.chains.evm import LogBatch

    src, dst = fake_chain(), fake_chain()
    src.batches = [
        LogBatch(
            from_block=100,
            to_block=110,
            events=[make_event(deposit_id=1), make_event(deposit_id=2, exclusive_relayer=OTHER_RELAYER)],
        )
    ]
    watcher = _watcher(src, dst, source, destination)

    await watcher.watch_once()
    await watcher.drain()

    assert len(dst.simulated) == 1
    assert dst.simulated[0]["args"][0][8] == 1
    assert dst.submitted == []
    assert watcher.next_block == 111
    assert watcher.pending == 0


@pytest.mark.asyncio
async def test_live_mode_submits(fake_chain, source, destination, make_event):
    from intent_relayer.chains.evm import LogBatch

    src, dst = fake_chain(), fake_chain()
    src.batches = [LogBatch(from_block=100, to_block=100, events=[make_event()])]
    watcher = _watcher(src, dst, source, destination, simulate=False)

    await watcher.watch_once()
    await watcher.drain()
    assert len(dst.submitted) == 1


@pytest.mark.asyncio
async def test_resubscription_resumes_after_last_scanned_block(fake_chain, source, destination):
    from intent_relayer.chains.evm import LogBatch

    src = fake_chain()
    src.batches = [LogBatch(100, 149, []), LogBatch(150, 199, [])]
    watcher = _watcher(src, fake_chain(), source, destination)

    await watcher.watch_once()
    await watcher.watch_once()
    assert src.subscriptions == [None, 200]


@pytest.mark.asyncio
async def test_subscription_recreated_after_interval(fake_chain, source, destination):
    from intent_relayer.chains.evm import LogBatch

    closed = []

    class SlowChain(fake_chain):
        async def deposit_events(self, address, from_block, interval, block_range):
            try:
                yield LogBatch(from_block or 0, 120, [])
                await asyncio.sleep(10)
            finally:
                closed.append(from_block)

    watcher = _watcher(SlowChain(), fake_chain(), source, destination, resubscribe_interval=0.05)
    await asyncio.wait_for(watcher.watch_once(), timeout=2)
    assert watcher.next_block == 121
    assert closed == [None]


@pytest.mark.asyncio
async def test_subscription_error_is_logged_not_raised(fake_chain, destination):
    from intent_relayer.chains.registry import SourceChainConfig

    class BrokenChain(fake_chain):
        async def deposit_events(self, address, from_block, interval, block_range):
            raise ConnectionError("filter not found")
            yield  # pragma: no cover

    source = SourceChainConfig(chain_id=10, polling_interval=0.01, confirmation={"0": 0})
    watcher = _watcher(BrokenChain(), fake_chain(), source, destination)
    await watcher.watch_once()
    assert watcher.next_block is None


@pytest.mark.asyncio
async def test_each_order_released_once(fake_chain, source, destination, make_event):
    from intent_relayer.chains.evm import LogBatch

    released = []

    async def on_release(order):
        released.append(order.relay_data.deposit_id)

    src = fake_chain()
    src.batches = [LogBatch(100, 100, [make_event(deposit_id=i) for i in range(5)])]
    watcher = _watcher(src, fake_chain(), source, destination, on_release=on_release)

    await watcher.watch_once()
    await watcher.drain()
    assert sorted(released) == [0, 1, 2, 3, 4]


class RecordingLog:
    def __init__(self):
        self.calls = []

    def __getattr__(self, level):
        def record(message, *args):
            self.calls.append((level, message))

        return record


@pytest.mark.asyncio
async def test_rpc_timeout_is_an_error_not_a_resubscribe(fake_chain, destination, monkeypatch):
    from intent_relayer.chains.registry import SourceChainConfig

    class TimingOutChain(fake_chain):
        async def deposit_events(self, address, from_block, interval, block_range):
            raise asyncio.TimeoutError("rpc read timeout")
            yield  # pragma: no cover

    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    monkeypatch.setattr("intent_relayer.chains.watcher.asyncio.sleep", fake_sleep)
    source = SourceChainConfig(chain_id=10, polling_interval=0.5, confirmation={"0": 0})
    log = RecordingLog()
    watcher = _watcher(TimingOutChain(), fake_chain(), source, destination, resubscribe_interval=100, log=log)

    await watcher.watch_once()
    assert [level for level, _ in log.calls] == ["exception"]
    assert sleeps == [0.5]


@pytest.mark.asyncio
async def test_expired_deadline_resubscribes_quietly(fake_chain, source, destination):
    from intent_relayer.chains.evm import LogBatch

    class SlowChain(fake_chain):
        async def deposit_events(self, address, from_block, interval, block_range):
            yield LogBatch(100, 100, [])
            await asyncio.sleep(10)

    log = RecordingLog()
    watcher = _watcher(SlowChain(), fake_chain(), source, destination, resubscribe_interval=0.05, log=log)
    await asyncio.wait_for(watcher.watch_once(), timeout=2)
    assert [level for level, _ in log.calls] == ["debug"]
