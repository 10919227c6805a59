"""In-process token cache with per-entry hit counters.

This module holds the only state shared between request handlers and the
background count aggregator: a striped-lock map from token to ``Entry``.

Shard Layout
============
::
    TokenCache
    ├─ shard 0  ── Lock ── {token: Entry, ...}
    ├─ shard 1  ── Lock ── {token: Entry, ...}
    ├─ ...
    └─ shard N-1 ─ Lock ── {token: Entry, ...}

    Entry
    ├─ target: str
    └─ hits: HitCounter ── Lock ── int

Counter Lifecycle
=================
::
    register ──► Entry(hits=0)
    cache miss resolved by store ──► Entry(hits=1)
    redirect hit ──► hits.increment()
    aggregator flush ──► observed = hits.load()
                         append_count(observed)
                         hits.subtract(observed)

How to Use
===========
**Step 1 — Build once at startup**::
    cache = TokenCache(shards=16)

**Step 2 — Serve lookups**::
    entry = cache.get("ab3k9z1q")
    if entry is not None:
        entry.hits.increment()

**Step 3 — Sweep for maintenance**::
    for token, entry in cache.items():
        print(token, entry.hits.load())

Key Behaviours
===============
- Keys hash onto a fixed number of shards; operations on different shards never
  contend for the same lock.
- Locks guard only dict and integer access and are never held across an await.
- ``insert`` is last-writer-wins and returns the replaced entry, if any.
- ``insert_if_absent`` keeps an existing entry and returns whichever entry is
  cached afterwards.
- ``HitCounter.subtract`` removes exactly the amount previously observed, so
  increments landing between the read and the subtract survive.
- Entries are never evicted; the cache lives as long as the process.

Classes:
    HitCounter:  Race-free integer counter with increment and exact subtract.
    Entry:  Target URL plus its pending hit counter.
    TokenCache:  Sharded concurrent mapping from token to Entry.
"""

import threading
from collections.abc import Iterator
from dataclasses import dataclass, field

__all__ = ["HitCounter", "Entry", "TokenCache"]

DEFAULT_SHARD_COUNT = 16


class HitCounter:
    """Integer counter safe to mutate from any thread or task."""

    __slots__ = ("_lock", "_value")

    def __init__(self, value: int = 0):
        if value < 0:
            raise ValueError(f"Counter must start non-negative, got {value}")
        self._lock = threading.Lock()
        self._value = value

    def increment(self, amount: int = 1) -> int:
        """Add ``amount`` and return the new value."""
        if amount < 0:
            raise ValueError(f"Increment must be non-negative, got {amount}")
        with self._lock:
            self._value += amount
            return self._value

    def load(self) -> int:
        with self._lock:
            return self._value

    def subtract(self, observed: int) -> int:
        """Remove exactly ``observed`` hits and return the residual.

        ``observed`` must come from an earlier ``load()``; since the counter only
        grows in between, the residual is the number of hits recorded after that
        read. Asking for more than is held means the caller is double counting.
        """
        if observed < 0:
            raise ValueError(f"Cannot subtract a negative amount, got {observed}")
        with self._lock:
            if observed > self._value:
                raise ValueError(f"Cannot subtract {observed} from counter holding {self._value}")
            self._value -= observed
            return self._value

    def __repr__(self) -> str:
        return f"<HitCounter({self.load()})>"


@dataclass
class Entry:
    target: str
    hits: HitCounter = field(default_factory=HitCounter)

    @classmethod
    def new(cls, target: str, hits: int = 0) -> "Entry":
        return cls(target=target, hits=HitCounter(hits))


class TokenCache:
    """Sharded concurrent mapping from token to ``Entry``.

    Each shard is a plain dict guarded by its own lock, so lookups and inserts
    for tokens landing on different shards proceed independently.

    Example:
        >>> cache = TokenCache(shards=4)
        >>> cache.insert("ab3k9z1q", Entry.new("https://example.com"))
        >>> cache.get("ab3k9z1q").target
        'https://example.com'
    """

    def __init__(self, shards: int = DEFAULT_SHARD_COUNT):
        if shards < 1:
            raise ValueError(f"shards must be a positive integer, got {shards!r}")
        self._locks = [threading.Lock() for _ in range(shards)]
        self._shards: list[dict[str, Entry]] = [{} for _ in range(shards)]

    @property
    def shard_count(self) -> int:
        return len(self._shards)

    def _shard_index(self, token: str) -> int:
        return hash(token) % len(self._shards)

    def get(self, token: str) -> Entry | None:
        index = self._shard_index(token)
        with self._locks[index]:
            return self._shards[index].get(token)

    def insert(self, token: str, entry: Entry) -> Entry | None:
        """Store ``entry`` under ``token`` and return whatever it replaced."""
        index = self._shard_index(token)
        with self._locks[index]:
            previous = self._shards[index].get(token)
            self._shards[index][token] = entry
            return previous

    def insert_if_absent(self, token: str, entry: Entry) -> Entry:
        """Store ``entry`` unless ``token`` is already cached; return the cached entry."""
        index = self._shard_index(token)
        with self._locks[index]:
            return self._shards[index].setdefault(token, entry)

    def items(self) -> list[tuple[str, Entry]]:
        """Snapshot of all (token, entry) pairs, taken one shard at a time.

        Entries inserted while the snapshot is being built may or may not appear.
        The returned entries are live: their counters keep moving.
        """
        snapshot: list[tuple[str, Entry]] = []
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                snapshot.extend(shard.items())
        return snapshot

    def pending_hits(self) -> int:
        """Total hits recorded in memory but not yet flushed."""
        return sum(entry.hits.load() for _, entry in self.items())

    def __contains__(self, token: object) -> bool:
        return isinstance(token, str) and self.get(token) is not None

    def __iter__(self) -> Iterator[str]:
        return iter([token for token, _ in self.items()])

    def __len__(self) -> int:
        total = 0
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                total += len(shard)
        return total
