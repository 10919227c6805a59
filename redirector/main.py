"""FastAPI application factory for the redirector service.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │ create_app() │
    │ settings     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ startup:     │
    │ init_db()    │
    │ TokenCache   │
    │ aggregator   │
    │ .start()     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP   │
    │ requests     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ shutdown:    │
    │ aggregator   │
    │ .stop()      │
    │ .drain()     │
    │ close_db()   │
    └──────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    POSTGRES_PASSWORD=secret python -m redirector

**Step 2 — Register a token**::
    curl -X POST http://localhost:8080/admin/tokens \
         -H "Content-Type: application/json" \
         -d '{"target": "https://example.com"}'

**Step 3 — Follow it**::
    curl -i http://localhost:8080/ab3k9z1q

Key Behaviours
===============
- Tables are created automatically on startup.
- The token cache starts empty and fills from registrations and cache misses.
- If the aggregator dies under the fatal policy, the process is sent SIGTERM
  and ``app.state.fatal_error`` holds the cause.
- On shutdown the aggregator is stopped and one final flush is attempted.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["create_app"]

import os
import signal
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from redirector.aggregator import CountAggregator
from redirector.cache import TokenCache
from redirector.config import Settings, get_settings
from redirector.database import close_db, create_engine, create_session_factory, init_db
from redirector.dependencies import AppState, setup_logger
from redirector.routes import router
from redirector.service import TokenService
from redirector.store import DurableStore, SQLStore

# One instance per process so the HTTP metrics register once with the default registry.
_instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
)


def _terminate_process(app: FastAPI) -> Callable[[BaseException], None]:
    def _on_fatal(exc: BaseException) -> None:
        app.state.fatal_error = exc
        app.state.redirector.logger.critical(f"Count aggregator terminated, shutting down: {exc}")
        os.kill(os.getpid(), signal.SIGTERM)

    return _on_fatal


def create_app(
    settings: Settings | None = None,
    store: DurableStore | None = None,
    on_fatal: Callable[[BaseException], None] | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Validated settings; loaded from the environment when omitted.
        store: Durable store to use instead of the SQL store built from settings.
        on_fatal: Called if the aggregator loop dies; defaults to SIGTERM-ing the process.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        logger = setup_logger(settings.LOG_LEVEL)
        engine = None
        durable_store = store
        if durable_store is None:
            engine = create_engine(settings)
            await init_db(engine)
            durable_store = SQLStore(create_session_factory(engine), timeout=settings.STORE_TIMEOUT_SECONDS)

        cache = TokenCache(shards=settings.CACHE_SHARDS)
        aggregator = CountAggregator(
            cache,
            durable_store,
            interval=settings.AGGREGATOR_INTERVAL_SECONDS,
            policy=settings.AGGREGATOR_FAILURE_POLICY,
            logger=logger.getChild("aggregator"),
        )
        app.state.redirector = AppState(
            settings=settings,
            logger=logger,
            cache=cache,
            store=durable_store,
            service=TokenService(cache, durable_store, logger=logger, token_length=settings.TOKEN_LENGTH),
            aggregator=aggregator,
            engine=engine,
        )
        aggregator.start(on_fatal or _terminate_process(app))
        logger.info(f"{settings.APP_NAME} started")
        yield
        # Shutdown
        await aggregator.stop()
        await aggregator.drain()
        if engine is not None:
            await close_db(engine)
        logger.info(f"{settings.APP_NAME} stopped")

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Token redirector with write-behind hit counting",
        lifespan=lifespan,
    )
    app.state.fatal_error = None

    _instrumentator.instrument(app).expose(app, include_in_schema=False)

    app.include_router(router)
    return app
