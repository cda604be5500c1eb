from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from ledger_indexer.api.v1.routes_indexer import router as indexer_router
from ledger_indexer.api.v1.routes_stats import router as stats_router
from ledger_indexer.core.config import settings
from ledger_indexer.core.logging import setup_logging
from ledger_indexer.db.base import AsyncSessionLocal, engine, init_models
from ledger_indexer.domain.indexing.service import IndexEngine
from ledger_indexer.domain.ledger.client import LogClient
from ledger_indexer.domain.stats.service import StatsAggregator


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and, unless ``API_RUN_INDEXER`` is off, run the indexer in-process.

    The in-process indexer skips the page-by-page backfill: the poll loops
    start at each cursor and catch up one poll page per tick.
    """
    setup_logging()
    db_engine: AsyncEngine = app.state.db_engine or engine
    await init_models(db_engine)

    client = None
    if app.state.indexer is None:
        client = LogClient()
        app.state.indexer = IndexEngine(client, AsyncSessionLocal)
    if app.state.aggregator is None:
        app.state.aggregator = StatsAggregator(AsyncSessionLocal)

    indexer: IndexEngine = app.state.indexer
    aggregator: StatsAggregator = app.state.aggregator
    if app.state.run_indexer:
        await indexer.initialize_state()
        await indexer.start_realtime()
        aggregator.start_auto_update(settings.STATS_INTERVAL_HOURS)

    try:
        yield
    finally:
        indexer.stop()
        aggregator.stop_auto_update()
        await indexer.wait_stopped()
        await aggregator.wait_stopped()
        if client is not None:
            await client.aclose()
        await db_engine.dispose()


def create_app(
    indexer: Optional[IndexEngine] = None,
    aggregator: Optional[StatsAggregator] = None,
    db_engine: Optional[AsyncEngine] = None,
    run_indexer: Optional[bool] = None,
) -> FastAPI:
    app = FastAPI(lifespan=lifespan)
    app.state.indexer = indexer
    app.state.aggregator = aggregator
    app.state.db_engine = db_engine
    app.state.run_indexer = settings.API_RUN_INDEXER if run_indexer is None else run_indexer

    app.include_router(indexer_router)
    app.include_router(stats_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
