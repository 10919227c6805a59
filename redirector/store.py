"""Durable store: the authoritative token mapping and the hit count log.

Operations
==========
::
    lookup(token)                              -> target | None
    insert_unique(token, target)               -> None  | TokenConflict | StorageFailure
    append_count(token, target, timestamp, n)  -> None  | StorageFailure
    ping()                                     -> None  | StorageFailure

Key Behaviours
===============
- Every call is bounded by ``timeout`` seconds; a timeout is a StorageFailure.
- A primary-key violation on insert surfaces as TokenConflict.
- Any other SQLAlchemy error surfaces as StorageFailure with the cause attached.
- Nothing in this module touches the in-memory TokenCache.

Classes:
    DurableStore:  Abstract contract the request paths and aggregator depend on.
    SQLStore:  SQLAlchemy async implementation (PostgreSQL in production).
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import TypeVar

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from redirector.exceptions import StorageFailure, TokenConflict
from redirector.models import CountRecord, Token

__all__ = ["DurableStore", "SQLStore"]

T = TypeVar("T")


class DurableStore(ABC):
    """Persistence contract for token mappings and the append-only count log."""

    @abstractmethod
    async def lookup(self, token: str) -> str | None:
        """Return the target registered for ``token``, or None."""

    @abstractmethod
    async def insert_unique(self, token: str, target: str) -> None:
        """Persist a new mapping; raise TokenConflict if ``token`` already exists."""

    @abstractmethod
    async def append_count(self, token: str, target: str, timestamp: int, count: int) -> None:
        """Append one count record. ``timestamp`` is epoch milliseconds."""

    @abstractmethod
    async def ping(self) -> None:
        """Raise StorageFailure if the store is unreachable."""


class SQLStore(DurableStore):
    """DurableStore backed by SQLAlchemy async sessions.

    Args:
        session_factory: Session factory bound to the service engine.
        timeout: Upper bound in seconds for each store call.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], timeout: float = 5.0):
        assert timeout > 0, f"timeout must be positive, got {timeout!r}"
        self._session_factory = session_factory
        self._timeout = timeout

    async def _bounded(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except TimeoutError as exc:
            raise StorageFailure(operation, exc) from exc
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            raise StorageFailure(operation, exc) from exc
        except OSError as exc:
            # Socket errors raised while the driver is still connecting.
            raise StorageFailure(operation, exc) from exc

    async def lookup(self, token: str) -> str | None:
        return await self._bounded("lookup", self._lookup(token))

    async def _lookup(self, token: str) -> str | None:
        async with self._session_factory() as session:
            result = await session.execute(select(Token.target).where(Token.token == token))
            return result.scalar_one_or_none()

    async def insert_unique(self, token: str, target: str) -> None:
        try:
            await self._bounded("insert", self._insert(token, target))
        except IntegrityError as exc:
            raise TokenConflict(token) from exc

    async def _insert(self, token: str, target: str) -> None:
        async with self._session_factory() as session:
            session.add(Token(token=token, target=target))
            await session.commit()

    async def append_count(self, token: str, target: str, timestamp: int, count: int) -> None:
        assert count > 0, f"count must be positive, got {count!r}"
        await self._bounded("append_count", self._append(token, target, timestamp, count))

    async def _append(self, token: str, target: str, timestamp: int, count: int) -> None:
        async with self._session_factory() as session:
            session.add(CountRecord(token=token, target=target, timestamp=timestamp, count=count))
            await session.commit()

    async def ping(self) -> None:
        await self._bounded("ping", self._ping())

    async def _ping(self) -> None:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
