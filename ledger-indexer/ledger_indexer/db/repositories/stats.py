
from datetime import date
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import select

from ledger_indexer.db.models.stats_snapshots import StatsSnapshot


async def get_snapshot(
    db: AsyncSession,
    day: date
) -> Optional[StatsSnapshot]:
    result = await db.execute(
        select(StatsSnapshot).where(StatsSnapshot.date == day)
    )
    return result.scalar_one_or_none()


async def get_latest_snapshot(db: AsyncSession) -> Optional[StatsSnapshot]:
    result = await db.execute(
        select(StatsSnapshot).order_by(StatsSnapshot.date.desc()).limit(1)
    )
    return result.scalar_one_or_none()


async def list_snapshots_since(
    db: AsyncSession,
    since: date
) -> List[StatsSnapshot]:
    result = await db.execute(
        select(StatsSnapshot)
        .where(StatsSnapshot.date >= since)
        .order_by(StatsSnapshot.date.desc())
    )
    return list(result.scalars().all())


async def upsert_snapshot(
    db: AsyncSession,
    day: date,
    values: dict
) -> StatsSnapshot:
    """Overwrite the snapshot for ``day`` or create it.

    Single writer per day is assumed; no row lock is taken.
    """
    snapshot = await get_snapshot(db, day)
    if snapshot is None:
        snapshot = StatsSnapshot(date=day, **values)
        db.add(snapshot)
    else:
        for field, value in values.items():
            setattr(snapshot, field, value)
    await db.commit()
    await db.refresh(snapshot)
    return snapshot


async def insert_snapshot(
    db: AsyncSession,
    day: date,
    values: dict
) -> StatsSnapshot:
    snapshot = StatsSnapshot(date=day, **values)
    db.add(snapshot)
    await db.commit()
    await db.refresh(snapshot)
    return snapshot
