"""Run the indexer as a long-lived process.

    python -m ledger_indexer.run_indexer [--skip-sync] [--history-days N]

Backfills every configured topic, then follows them in real time while the
stats aggregator refreshes today's snapshot on its own timer. SIGINT/SIGTERM
stop both and close connections.
"""
import argparse
import asyncio
import logging
import signal

from ledger_indexer.core.config import settings
from ledger_indexer.core.logging import setup_logging
from ledger_indexer.db.base import AsyncSessionLocal, engine, init_models
from ledger_indexer.domain.indexing.schemas import IndexerStatus
from ledger_indexer.domain.indexing.service import IndexEngine
from ledger_indexer.domain.ledger.client import LogClient
from ledger_indexer.domain.stats.service import StatsAggregator

logger = logging.getLogger("ledger_indexer.run_indexer")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Index ledger topic messages into the record store.")
    parser.add_argument("--skip-sync", action="store_true", help="skip the historical backfill")
    parser.add_argument(
        "--history-days",
        type=int,
        default=0,
        help="backfill stats snapshots for this many past days (0 = none)",
    )
    parser.add_argument("--log-level", default=settings.LOG_LEVEL)
    return parser.parse_args(argv)


def log_status(status: IndexerStatus) -> None:
    logger.info("Running: %s", "yes" if status.is_running else "no")
    logger.info("Total indexed records: %s", status.total_indexed_records)
    logger.info("Active subscriptions: %s", status.subscriptions)
    for topic in status.topics:
        logger.info(
            "  %s status=%s last_sequence=%s processed=%s",
            topic.topic_id, topic.status, topic.last_processed_sequence, topic.total_processed,
        )
        if topic.last_error:
            logger.warning("  %s last error: %s", topic.topic_id, topic.last_error)


async def run(args: argparse.Namespace) -> None:
    topics = settings.configured_topics()
    if not topics:
        logger.warning("No topics configured; set TOPIC_MAIN or another TOPIC_* variable")

    await init_models()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    async with LogClient() as client:
        indexer = IndexEngine(client, AsyncSessionLocal, topics)
        aggregator = StatsAggregator(AsyncSessionLocal)

        await indexer.initialize_state()
        if not args.skip_sync:
            logger.info("Syncing historical data, this may take a while")
            await indexer.sync_all()

        await indexer.start_realtime()

        await aggregator.calculate_daily_stats()
        if args.history_days:
            await aggregator.generate_historical_stats(args.history_days)
        aggregator.start_auto_update(settings.STATS_INTERVAL_HOURS)

        log_status(await indexer.get_status())
        logger.info("Indexer is running, press Ctrl+C to stop")

        await stop_event.wait()

        logger.info("Shutting down indexer")
        indexer.stop()
        aggregator.stop_auto_update()
        await indexer.wait_stopped()
        await aggregator.wait_stopped()

    await engine.dispose()
    logger.info("Indexer stopped")


def main(argv=None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_level)
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
