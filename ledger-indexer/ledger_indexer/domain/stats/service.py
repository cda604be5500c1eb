# ledger_indexer/domain/stats/service.py
import asyncio
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Awaitable, Callable, List, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from ledger_indexer.core.config import settings
from ledger_indexer.db.models.indexed_records import IndexedRecord
from ledger_indexer.db.models.stats_snapshots import StatsSnapshot
from ledger_indexer.db.repositories.accounts import count_active_since, count_patients, count_providers
from ledger_indexer.db.repositories.cursors import count_cursors_processed_since, sum_total_processed
from ledger_indexer.db.repositories.records import (
    ACTIVE,
    count_records,
    count_records_by_type,
    count_shares,
    recent_indexing_latencies,
)
from ledger_indexer.db.repositories.stats import (
    get_latest_snapshot,
    get_snapshot,
    insert_snapshot,
    list_snapshots_since,
    upsert_snapshot,
)
from ledger_indexer.domain.stats.schemas import StatsSummary

logger = logging.getLogger(__name__)

# The ledger mirror offers no cheap per-day message count, so every topic that
# processed anything today adds this fixed estimate.
MESSAGES_TODAY_ESTIMATE_PER_TOPIC = 10
ACTIVE_USER_WINDOW = timedelta(days=30)
LATENCY_SAMPLE_SIZE = 100


def local_now() -> datetime:
    return datetime.now().astimezone()


class StatsAggregator:
    """Computes the daily ``StatsSnapshot`` rows.

    ``clock`` decides what "today" is: days start at midnight in the clock's
    timezone. ``sleep`` drives the auto-update timer.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = local_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _day_bounds(self, day: date) -> Tuple[datetime, datetime]:
        """UTC instants of the start of ``day`` and of the next day."""
        tz = self.clock().tzinfo or timezone.utc
        start = datetime.combine(day, time.min, tzinfo=tz)
        end = start + timedelta(days=1)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    async def calculate_daily_stats(self) -> StatsSnapshot:
        now = self.clock()
        today = now.date()
        start, end = self._day_bounds(today)
        logger.info("Calculating stats for %s", today.isoformat())

        async with self.session_factory() as db:
            total_records = await count_records(db, ACTIVE)
            records_by_type = await count_records_by_type(db, ACTIVE)
            new_records_today = await count_records(
                db, ACTIVE, IndexedRecord.indexed_at >= start, IndexedRecord.indexed_at < end
            )

            total_patients = await count_patients(db)
            total_providers = await count_providers(db)
            active_users = await count_active_since(db, (now - ACTIVE_USER_WINDOW).astimezone(timezone.utc))

            messages_total = await sum_total_processed(db)
            messages_today = MESSAGES_TODAY_ESTIMATE_PER_TOPIC * await count_cursors_processed_since(db, start)

            content_files_total = await count_records(db, ACTIVE, IndexedRecord.content_location_ref.is_not(None))
            verified_records = await count_records(db, ACTIVE, IndexedRecord.verified.is_(True))
            verification_rate = round(verified_records / total_records * 100, 2) if total_records else 0.0

            total_shares = await count_shares(db)
            active_consents = await count_shares(db, active_at=now.astimezone(timezone.utc))
            total_tokens_minted = await count_records(db, ACTIVE, IndexedRecord.nft_token_id.is_not(None))

            latencies = await recent_indexing_latencies(db, LATENCY_SAMPLE_SIZE)
            average_indexing_seconds = round(sum(latencies) / len(latencies)) if latencies else 0

            snapshot = await upsert_snapshot(db, today, {
                "total_records": total_records,
                "records_by_type": records_by_type,
                "new_records_today": new_records_today,
                "total_patients": total_patients,
                "total_providers": total_providers,
                "active_users": active_users,
                "messages_total": messages_total,
                "messages_today": messages_today,
                "content_files_total": content_files_total,
                "verified_records": verified_records,
                "verification_rate": verification_rate,
                "total_shares": total_shares,
                "active_consents": active_consents,
                "total_tokens_minted": total_tokens_minted,
                "average_indexing_seconds": average_indexing_seconds,
                "last_indexed_at": now.astimezone(timezone.utc),
            })

        logger.info("Daily stats saved: %s active records", total_records)
        return snapshot

    async def calculate_stats_for_date(self, day: date) -> StatsSnapshot:
        """Insert a reduced snapshot for a past ``day``.

        Only record counts can be reconstructed as of that day; user, ledger,
        verification, sharing and token counters are left at zero.
        """
        start, end = self._day_bounds(day)

        async with self.session_factory() as db:
            as_of = (ACTIVE, IndexedRecord.indexed_at < end)
            snapshot = await insert_snapshot(db, day, {
                "total_records": await count_records(db, *as_of),
                "records_by_type": await count_records_by_type(db, *as_of),
                "new_records_today": await count_records(
                    db, ACTIVE, IndexedRecord.indexed_at >= start, IndexedRecord.indexed_at < end
                ),
                "total_patients": 0,
                "total_providers": 0,
                "active_users": 0,
                "messages_total": 0,
                "messages_today": 0,
                "content_files_total": 0,
                "verified_records": 0,
                "verification_rate": 0.0,
                "total_shares": 0,
                "active_consents": 0,
                "total_tokens_minted": 0,
                "last_indexed_at": self.clock().astimezone(timezone.utc),
            })
        logger.info("Stats calculated for %s", day.isoformat())
        return snapshot

    async def generate_historical_stats(self, days: int = settings.STATS_HISTORY_DAYS) -> int:
        """Backfill snapshots for the last ``days`` days, today included.

        Days that already have a snapshot are skipped. Returns how many
        snapshots were inserted.
        """
        logger.info("Generating historical stats for %s days", days)
        today = self.clock().date()
        inserted = 0

        for offset in range(days):
            day = today - timedelta(days=offset)
            async with self.session_factory() as db:
                existing = await get_snapshot(db, day)
            if existing is not None:
                logger.debug("Stats for %s already exist, skipping", day.isoformat())
                continue
            await self.calculate_stats_for_date(day)
            inserted += 1

        logger.info("Historical stats generated: %s new snapshots", inserted)
        return inserted

    def start_auto_update(self, interval_hours: float = settings.STATS_INTERVAL_HOURS) -> None:
        """Recompute today's stats now and then every ``interval_hours``."""
        if self.is_running:
            logger.warning("Stats aggregator is already running")
            return

        logger.info("Starting stats aggregator (updates every %s hour(s))", interval_hours)
        self._task = asyncio.create_task(self._update_periodically(interval_hours * 3600))

    async def _update_periodically(self, interval_seconds: float) -> None:
        while True:
            try:
                await self.calculate_daily_stats()
            except Exception:
                logger.exception("Error in periodic stats calculation")
            await self.sleep(interval_seconds)

    def stop_auto_update(self) -> None:
        if self._task is None:
            return

        logger.info("Stopping stats aggregator")
        self._task.cancel()
        self._stopping = self._task
        self._task = None

    async def wait_stopped(self) -> None:
        """Wait for the timer cancelled by the last ``stop_auto_update()`` to unwind."""
        if self._stopping is not None:
            await asyncio.gather(self._stopping, return_exceptions=True)
            self._stopping = None

    async def get_summary(self) -> Optional[StatsSummary]:
        async with self.session_factory() as db:
            latest = await get_latest_snapshot(db)
        if latest is None:
            return None

        return StatsSummary(
            last_updated=latest.last_indexed_at,
            total_records=latest.total_records,
            records_by_type=latest.records_by_type,
            total_users=latest.total_patients + latest.total_providers,
            verification_rate=latest.verification_rate,
            is_running=self.is_running,
        )

    async def list_snapshots(self, days: int = settings.STATS_HISTORY_DAYS) -> List[StatsSnapshot]:
        since = self.clock().date() - timedelta(days=days)
        async with self.session_factory() as db:
            return await list_snapshots_since(db, since)
