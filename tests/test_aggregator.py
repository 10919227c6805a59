"""Count aggregator tests: flush arithmetic, failure policies, and task lifecycle."""

import asyncio

import pytest

from redirector.aggregator import CountAggregator, FlushReport, epoch_millis
from redirector.cache import Entry, TokenCache
from redirector.enums import FailurePolicy
from redirector.exceptions import StorageFailure
from redirector.service import TokenService


def make_aggregator(cache: TokenCache, store, **kwargs) -> CountAggregator:
    kwargs.setdefault("clock", lambda: 1_700_000_000_000)
    return CountAggregator(cache, store, **kwargs)


@pytest.mark.asyncio
async def test_flush_writes_one_record_per_token_and_resets(service: TokenService, cache: TokenCache, store) -> None:
    registration = await service.register("https://example.com")
    for _ in range(10):
        await service.redirect(registration.token)

    report = await make_aggregator(cache, store).flush_once()

    assert report == FlushReport(tokens=1, hits=10)
    assert len(store.counts) == 1
    row = store.counts[0]
    assert (row.token, row.target, row.count, row.timestamp) == (
        registration.token,
        "https://example.com",
        10,
        1_700_000_000_000,
    )
    assert cache.get(registration.token).hits.load() == 0


@pytest.mark.asyncio
async def test_flush_skips_idle_entries(cache: TokenCache, store) -> None:
    cache.insert("idle0001", Entry.new("https://idle.example"))
    cache.insert("busy0001", Entry.new("https://busy.example", hits=3))

    report = await make_aggregator(cache, store).flush_once()

    assert report == FlushReport(tokens=1, hits=3)
    assert [row.token for row in store.counts] == ["busy0001"]


@pytest.mark.asyncio
async def test_second_flush_without_traffic_writes_nothing(cache: TokenCache, store) -> None:
    cache.insert("busy0001", Entry.new("https://busy.example", hits=3))
    aggregator = make_aggregator(cache, store)

    await aggregator.flush_once()
    report = await aggregator.flush_once()

    assert report == FlushReport()
    assert len(store.counts) == 1


@pytest.mark.asyncio
async def test_hits_during_append_survive_the_flush(cache: TokenCache, store) -> None:
    entry = Entry.new("https://example.com", hits=5)
    cache.insert("ab3k9z1q", entry)
    original_append = store.append_count

    async def append_while_traffic_arrives(token, target, timestamp, count):
        entry.hits.increment(3)
        await original_append(token, target, timestamp, count)

    store.append_count = append_while_traffic_arrives

    report = await make_aggregator(cache, store).flush_once()

    assert report.hits == 5
    assert store.counts[0].count == 5
    assert entry.hits.load() == 3


@pytest.mark.asyncio
async def test_failed_append_keeps_counter_and_raises(cache: TokenCache, store) -> None:
    entry = Entry.new("https://example.com", hits=7)
    cache.insert("ab3k9z1q", entry)
    store.fail_append = True

    with pytest.raises(StorageFailure):
        await make_aggregator(cache, store).flush_once()

    assert entry.hits.load() == 7
    assert store.counts == []


@pytest.mark.asyncio
async def test_run_fatal_policy_stops_on_failure(cache: TokenCache, store) -> None:
    cache.insert("ab3k9z1q", Entry.new("https://example.com", hits=1))
    store.fail_append = True
    aggregator = make_aggregator(cache, store, interval=0.01, policy=FailurePolicy.FATAL)

    with pytest.raises(StorageFailure):
        await asyncio.wait_for(aggregator.run(), timeout=2)
    assert cache.get("ab3k9z1q").hits.load() == 1


@pytest.mark.asyncio
async def test_run_retry_policy_flushes_after_recovery(cache: TokenCache, store) -> None:
    entry = Entry.new("https://example.com", hits=4)
    cache.insert("ab3k9z1q", entry)
    store.fail_append = True
    aggregator = make_aggregator(cache, store, interval=0.01, policy=FailurePolicy.RETRY)

    task = asyncio.create_task(aggregator.run())
    await asyncio.sleep(0.05)
    assert not task.done()
    assert entry.hits.load() == 4

    store.fail_append = False
    for _ in range(100):
        if store.counts:
            break
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert sum(row.count for row in store.counts) == 4
    assert entry.hits.load() == 0


@pytest.mark.asyncio
async def test_start_reports_fatal_failure_to_callback(cache: TokenCache, store) -> None:
    cache.insert("ab3k9z1q", Entry.new("https://example.com", hits=1))
    store.fail_append = True
    failures: list[BaseException] = []
    aggregator = make_aggregator(cache, store, interval=0.01)

    task = aggregator.start(failures.append)
    with pytest.raises(StorageFailure):
        await asyncio.wait_for(task, timeout=2)
    await asyncio.sleep(0)

    assert len(failures) == 1
    assert isinstance(failures[0], StorageFailure)
    assert not aggregator.running


@pytest.mark.asyncio
async def test_start_twice_is_rejected_and_stop_ends_loop(cache: TokenCache, store) -> None:
    failures: list[BaseException] = []
    aggregator = make_aggregator(cache, store, interval=3600)

    aggregator.start(failures.append)
    assert aggregator.running
    with pytest.raises(RuntimeError):
        aggregator.start(failures.append)

    await aggregator.stop()
    assert not aggregator.running
    assert failures == []


@pytest.mark.asyncio
async def test_stop_during_append_lets_the_cycle_finish(cache: TokenCache, store) -> None:
    entry = Entry.new("https://example.com", hits=5)
    cache.insert("ab3k9z1q", entry)
    written = asyncio.Event()
    original_append = store.append_count

    async def append_with_slow_ack(token, target, timestamp, count):
        await original_append(token, target, timestamp, count)
        written.set()
        await asyncio.sleep(0.05)

    store.append_count = append_with_slow_ack
    aggregator = make_aggregator(cache, store, interval=0.01)

    aggregator.start()
    await asyncio.wait_for(written.wait(), timeout=2)
    await aggregator.stop()
    await aggregator.drain()

    assert [row.count for row in store.counts] == [5]
    assert entry.hits.load() == 0
    assert not aggregator.running


@pytest.mark.asyncio
async def test_drain_flushes_and_swallows_failures(cache: TokenCache, store) -> None:
    cache.insert("ab3k9z1q", Entry.new("https://example.com", hits=2))
    aggregator = make_aggregator(cache, store)

    store.fail_append = True
    assert await aggregator.drain() is None
    assert cache.pending_hits() == 2

    store.fail_append = False
    assert await aggregator.drain() == FlushReport(tokens=1, hits=2)
    assert cache.pending_hits() == 0


@pytest.mark.asyncio
async def test_concurrent_redirects_during_flush_are_never_double_counted(
    service: TokenService, cache: TokenCache, store
) -> None:
    registration = await service.register("https://example.com")
    aggregator = make_aggregator(cache, store)

    async def traffic() -> None:
        for _ in range(200):
            await service.redirect(registration.token)
            await asyncio.sleep(0)

    async def flushes() -> None:
        for _ in range(20):
            await aggregator.flush_once()
            await asyncio.sleep(0)

    await asyncio.gather(traffic(), traffic(), flushes())
    await aggregator.flush_once()

    assert sum(row.count for row in store.counts) == 400
    assert all(row.count > 0 for row in store.counts)
    assert cache.get(registration.token).hits.load() == 0


def test_epoch_millis_is_milliseconds() -> None:
    # 2020-01-01 in epoch milliseconds.
    assert epoch_millis() > 1_577_836_800_000
