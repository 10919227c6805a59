"""Shared pytest fixtures: settings, an in-memory durable store, and an API client."""

from collections.abc import AsyncGenerator
from dataclasses import dataclass

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from redirector.cache import TokenCache
from redirector.config import Settings, load_settings
from redirector.exceptions import StorageFailure, TokenConflict
from redirector.main import create_app
from redirector.service import TokenService
from redirector.store import DurableStore


@dataclass(frozen=True)
class CountRow:
    token: str
    target: str
    timestamp: int
    count: int


class InMemoryStore(DurableStore):
    """DurableStore fake with switchable failures."""

    def __init__(self):
        self.tokens: dict[str, str] = {}
        self.counts: list[CountRow] = []
        self.lookups: list[str] = []
        self.fail_lookup = False
        self.fail_insert = False
        self.fail_append = False
        self.fail_ping = False

    async def lookup(self, token: str) -> str | None:
        self.lookups.append(token)
        if self.fail_lookup:
            raise StorageFailure("lookup", ConnectionError("store unreachable"))
        return self.tokens.get(token)

    async def insert_unique(self, token: str, target: str) -> None:
        if self.fail_insert:
            raise StorageFailure("insert", ConnectionError("store unreachable"))
        if token in self.tokens:
            raise TokenConflict(token)
        self.tokens[token] = target

    async def append_count(self, token: str, target: str, timestamp: int, count: int) -> None:
        if self.fail_append:
            raise StorageFailure("append_count", ConnectionError("store unreachable"))
        self.counts.append(CountRow(token, target, timestamp, count))

    async def ping(self) -> None:
        if self.fail_ping:
            raise StorageFailure("ping", ConnectionError("store unreachable"))


@pytest.fixture
def settings() -> Settings:
    return load_settings(
        POSTGRES_PASSWORD="test",
        AGGREGATOR_INTERVAL_SECONDS=3600,
        CACHE_SHARDS=4,
        LOG_LEVEL="DEBUG",
        _env_file=None,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def cache() -> TokenCache:
    return TokenCache(shards=4)


@pytest.fixture
def service(cache: TokenCache, store: InMemoryStore) -> TokenService:
    return TokenService(cache, store)


@pytest_asyncio.fixture
async def app(settings: Settings, store: InMemoryStore) -> AsyncGenerator[FastAPI, None]:
    fatal_errors: list[BaseException] = []
    application = create_app(settings, store=store, on_fatal=fatal_errors.append)
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
