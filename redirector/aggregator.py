"""Background aggregation of in-memory hit counters into the count log.

Redirects only bump in-memory counters; this module periodically moves those
hits into the durable store's append-only ``counts`` table.

Flow Diagram — One Flush Cycle
==============================
::
    ┌─────────────┐
    │ sleep       │
    │ (interval)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ snapshot    │
    │ cache.items │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ observed =  │◄──────────────┐
    │ hits.load() │               │
    └──────┬──────┘               │
    ZERO?  │                      │
    ┌─────┴─────┐                 │
    │ YES        │ NO             │
    ▼            ▼                │
  skip     ┌─────────────┐        │
           │ append_count│        │
           │ (observed)  │        │
           └──────┬──────┘        │
           OK?    │               │
    ┌─────────────┴──┐            │
    │ NO              │ YES       │
    ▼                 ▼           │
 policy:        ┌─────────────┐   │
 fatal → raise  │ hits.       │   │
 retry → next   │ subtract    │───┘ next entry
 cycle          │ (observed)  │
                └─────────────┘

Key Behaviours
===============
- Only the amount written to the store is subtracted; hits recorded while the
  append is in flight stay in the counter for the next cycle.
- A failed append leaves that entry's counter untouched and aborts the cycle.
- Under FailurePolicy.FATAL the loop ends by raising StorageFailure, and the
  ``on_fatal`` callback passed to ``start`` decides how the process goes down.
- Under FailurePolicy.RETRY the failure is logged and the next cycle retries.
- ``stop`` asks the loop to exit between cycles and waits for an in-flight
  cycle to finish, so an append is never abandoned before its subtract.
- ``drain`` performs one last flush at shutdown and never raises.

Classes:
    FlushReport:  Totals for one flush cycle.
    CountAggregator:  The periodic flush loop.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from prometheus_client import Counter

from redirector.cache import TokenCache
from redirector.enums import FailurePolicy
from redirector.exceptions import StorageFailure
from redirector.store import DurableStore

__all__ = ["FlushReport", "CountAggregator", "epoch_millis"]

DEFAULT_INTERVAL_SECONDS = 10.0

FLUSH_CYCLES_TOTAL = Counter(
    "redirector_flush_cycles_total",
    "Completed count aggregator cycles",
)
FLUSH_FAILURES_TOTAL = Counter(
    "redirector_flush_failures_total",
    "Count aggregator cycles aborted by a storage failure",
)
FLUSHED_HITS_TOTAL = Counter(
    "redirector_flushed_hits_total",
    "Hits written to the durable count log",
)


def epoch_millis() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class FlushReport:
    tokens: int = 0
    hits: int = 0


class CountAggregator:
    """Periodically flushes per-token hit counters to the durable store.

    Args:
        cache: Shared token cache whose counters are drained.
        store: Destination for count records.
        interval: Seconds to sleep between cycles.
        policy: Reaction to a storage failure during a cycle.
        logger: Logger for cycle results and failures.
        clock: Returns the record timestamp in epoch milliseconds.
    """

    def __init__(
        self,
        cache: TokenCache,
        store: DurableStore,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        policy: FailurePolicy = FailurePolicy.FATAL,
        logger: logging.Logger | None = None,
        clock: Callable[[], int] = epoch_millis,
    ):
        assert interval > 0, f"interval must be positive, got {interval!r}"
        self._cache = cache
        self._store = store
        self._interval = interval
        self._policy = policy
        self._logger = logger or logging.getLogger("redirector.aggregator")
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    @property
    def policy(self) -> FailurePolicy:
        return self._policy

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def flush_once(self) -> FlushReport:
        """Flush every nonzero counter once.

        Raises:
            StorageFailure: An append failed; remaining entries were not visited.
        """
        tokens = 0
        hits = 0
        for token, entry in self._cache.items():
            observed = entry.hits.load()
            if observed == 0:
                continue
            try:
                await self._store.append_count(token, entry.target, self._clock(), observed)
            except StorageFailure:
                FLUSH_FAILURES_TOTAL.inc()
                raise
            entry.hits.subtract(observed)
            tokens += 1
            hits += observed

        FLUSH_CYCLES_TOTAL.inc()
        FLUSHED_HITS_TOTAL.inc(hits)
        return FlushReport(tokens=tokens, hits=hits)

    async def run(self) -> None:
        """Flush every ``interval`` seconds until stopped or a fatal failure."""
        self._logger.info(f"Count aggregator started (interval={self._interval}s, policy={self._policy})")
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), self._interval)
            except TimeoutError:
                pass
            else:
                break
            try:
                report = await self.flush_once()
            except StorageFailure as exc:
                if self._policy is FailurePolicy.FATAL:
                    self._logger.critical(f"Count flush failed, stopping aggregator: {exc}")
                    raise
                self._logger.error(f"Count flush failed, retrying next cycle: {exc}")
                continue
            if report.hits:
                self._logger.info(f"Flushed {report.hits} hits for {report.tokens} tokens")

    async def drain(self) -> FlushReport | None:
        """Final flush at shutdown; failures are logged and the hits are lost."""
        try:
            report = await self.flush_once()
        except StorageFailure as exc:
            self._logger.error(f"Final count flush failed, {self._cache.pending_hits()} hits unrecorded: {exc}")
            return None
        self._logger.info(f"Final flush recorded {report.hits} hits for {report.tokens} tokens")
        return report

    def start(self, on_fatal: Callable[[BaseException], None] | None = None) -> asyncio.Task:
        """Schedule ``run`` on the current event loop.

        ``on_fatal`` is called with the exception if the loop ends with an error.
        """
        if self.running:
            raise RuntimeError("Count aggregator already running")

        self._stopping.clear()
        task = asyncio.create_task(self.run(), name="count-aggregator")

        def _finished(done: asyncio.Task) -> None:
            if done.cancelled():
                return
            exc = done.exception()
            if exc is not None and on_fatal is not None:
                on_fatal(exc)

        task.add_done_callback(_finished)
        self._task = task
        return task

    async def stop(self) -> None:
        """Signal the loop to exit and wait for the current cycle to complete."""
        if self._task is None:
            return
        task, self._task = self._task, None
        self._stopping.set()
        if task.done():
            return
        try:
            await task
        except StorageFailure:
            # Already reported through on_fatal.
            return
