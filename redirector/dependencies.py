"""Shared application state and FastAPI dependency providers.

All long-lived resources (token cache, durable store, services, logger) are
built once in the application lifespan and hung off ``app.state`` as a single
``AppState``. Handlers reach them through the dependency functions below.
"""

import logging
from dataclasses import dataclass

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine

from redirector.aggregator import CountAggregator
from redirector.cache import TokenCache
from redirector.config import Settings
from redirector.service import TokenService
from redirector.store import DurableStore

__all__ = ["AppState", "setup_logger", "get_app_state", "get_token_service"]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(level: str = "INFO", name: str = "redirector") -> logging.Logger:
    """Attach a stream handler to the service logger once."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level.upper())
    return logger


@dataclass
class AppState:
    """Resources shared by every request and by the aggregator task.

    Attributes:
        settings: Validated settings, read once at startup
        logger: Service logger
        cache: The process-wide token cache
        store: Durable store implementation
        service: Redirect and registration logic
        aggregator: Background count flush loop
        engine: SQLAlchemy engine when the store is SQL-backed
    """

    settings: Settings
    logger: logging.Logger
    cache: TokenCache
    store: DurableStore
    service: TokenService
    aggregator: CountAggregator
    engine: AsyncEngine | None = None


def get_app_state(request: Request) -> AppState:
    return request.app.state.redirector


def get_token_service(state: AppState = Depends(get_app_state)) -> TokenService:
    return state.service
