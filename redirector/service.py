"""Redirect and registration business logic.

This module implements the two request paths that operate on the shared
TokenCache: the read-through redirect lookup and token registration.

Flow Diagram — Redirect
=======================
::
    ┌─────────────┐
    │ GET /:token │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ TokenCache  │
    │ .get()      │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌──────────┐  ┌──────────┐
│ store.   │  │ hits.    │
│ lookup() │  │ increment│
└────┬─────┘  └────┬─────┘
     │ found       │
     ▼             │
┌──────────┐       │
│ insert   │       │
│ Entry(1) │       │
└────┬─────┘       │
     └─────┬───────┘
           ▼
    ┌─────────────┐
    │ return      │
    │ target      │
    └─────────────┘

Flow Diagram — Registration
===========================
::
    ┌─────────────┐
    │ POST /admin │
    │ /tokens     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ generate    │
    │ token       │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ in cache?   │──► yes: TokenConflict
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ store.      │──► error: TokenConflict / StorageFailure
    │ insert_     │
    │ unique()    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ insert      │
    │ Entry(0)    │
    └─────────────┘

Key Behaviours
===============
- The redirect path never writes to the durable store.
- A failed store lookup leaves the cache untouched.
- Registration persists before publishing to the cache, so the cache never
  holds a token the store does not.
- A collision fails the registration; no second token is tried.

Classes:
    Registration:  Token and target returned by a successful registration.
    TokenService:  Redirect and registration operations over cache and store.
"""

import logging
from dataclasses import dataclass

from prometheus_client import Counter

from redirector.cache import Entry, TokenCache
from redirector.enums import CacheStatus, RequestStatus
from redirector.exceptions import StorageFailure, TokenConflict, TokenNotFound
from redirector.store import DurableStore
from redirector.tokens import DEFAULT_TOKEN_LENGTH, generate_token

__all__ = ["Registration", "TokenService"]


REDIRECT_REQUESTS_TOTAL = Counter(
    "redirector_redirect_requests_total",
    "Redirect lookups by outcome and cache status",
    ["status", "cache"],
)
REGISTRATION_REQUESTS_TOTAL = Counter(
    "redirector_registration_requests_total",
    "Token registrations by outcome",
    ["status"],
)


@dataclass(frozen=True)
class Registration:
    token: str
    target: str


class TokenService:
    """Redirect and registration operations over a shared TokenCache.

    One instance is built at startup and shared by every request handler.

    Example:
        >>> service = TokenService(cache, store)
        >>> registration = await service.register("https://example.com")
        >>> await service.redirect(registration.token)
        'https://example.com'
    """

    def __init__(
        self,
        cache: TokenCache,
        store: DurableStore,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        token_length: int = DEFAULT_TOKEN_LENGTH,
    ):
        self._cache = cache
        self._store = store
        self._logger = logger or logging.getLogger("redirector")
        self._token_length = token_length

    @property
    def cache(self) -> TokenCache:
        return self._cache

    @property
    def store(self) -> DurableStore:
        return self._store

    async def redirect(self, token: str) -> str:
        """Resolve ``token`` to its target and record one hit.

        Raises:
            TokenNotFound: Neither the cache nor the store knows the token.
            StorageFailure: The store lookup failed or timed out.
        """
        entry = self._cache.get(token)
        if entry is not None:
            entry.hits.increment()
            REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache=CacheStatus.HIT).inc()
            return entry.target

        try:
            target = await self._store.lookup(token)
        except StorageFailure as exc:
            REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR, cache=CacheStatus.MISS).inc()
            self._logger.error(f"Lookup failed for token {token}: {exc}")
            raise

        if target is None:
            REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache=CacheStatus.MISS).inc()
            self._logger.debug(f"Token not found: {token}")
            raise TokenNotFound(token)

        # A concurrent miss may have published the entry already; count the hit there.
        entry = Entry.new(target, hits=1)
        cached = self._cache.insert_if_absent(token, entry)
        if cached is not entry:
            cached.hits.increment()
        REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache=CacheStatus.MISS).inc()
        self._logger.debug(f"Cached token {token} from store")
        return target

    async def register(self, target: str) -> Registration:
        """Mint a token for ``target``, persist it, then publish it to the cache.

        Raises:
            TokenConflict: The generated token is already cached or stored.
            StorageFailure: The store insert failed or timed out.
        """
        assert target, "target must be a non-empty string"
        token = generate_token(self._token_length)

        if self._cache.get(token) is not None:
            REGISTRATION_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            self._logger.warning(f"Generated token {token} collides with a cached token")
            raise TokenConflict(token)

        try:
            await self._store.insert_unique(token, target)
        except TokenConflict:
            REGISTRATION_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            self._logger.warning(f"Generated token {token} collides with a stored token")
            raise
        except StorageFailure as exc:
            REGISTRATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.error(f"Registration of {token} failed: {exc}")
            raise

        self._cache.insert(token, Entry.new(target))
        REGISTRATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Registered token {token} -> {target}")
        return Registration(token=token, target=target)
