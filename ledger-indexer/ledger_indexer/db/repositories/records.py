
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import and_, func, or_, select

from ledger_indexer.db.models.indexed_records import IndexedRecord, RecordShare, RecordStatus, RecordType

logger = logging.getLogger(__name__)

ACTIVE = IndexedRecord.status == RecordStatus.ACTIVE


async def get_record_by_message_id(
    db: AsyncSession,
    message_id: str
) -> Optional[IndexedRecord]:
    result = await db.execute(
        select(IndexedRecord).where(IndexedRecord.message_id == message_id)
    )
    return result.scalar_one_or_none()


async def create_record(
    db: AsyncSession,
    record: IndexedRecord
) -> Tuple[IndexedRecord, bool]:
    """Insert ``record`` unless its message id is already indexed.

    Returns the stored row and whether it was created by this call. A unique
    constraint violation from a concurrent writer resolves to the existing row.
    """
    db.add(record)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await get_record_by_message_id(db, record.message_id)
        if existing is None:
            raise
        logger.info("Message %s was indexed concurrently, keeping existing row", record.message_id)
        return existing, False
    await db.refresh(record)
    return record, True


async def count_records(db: AsyncSession, *criteria) -> int:
    result = await db.execute(
        select(func.count()).select_from(IndexedRecord).where(*criteria)
    )
    return int(result.scalar())


async def count_records_by_type(db: AsyncSession, *criteria) -> Dict[str, int]:
    """Counts per record type; every type is present, defaulting to zero."""
    result = await db.execute(
        select(IndexedRecord.record_type, func.count())
        .where(*criteria)
        .group_by(IndexedRecord.record_type)
    )
    counts = {record_type.value: 0 for record_type in RecordType}
    for record_type, count in result.all():
        counts[RecordType(record_type).value] = int(count)
    return counts


async def count_shares(
    db: AsyncSession,
    active_at: Optional[datetime] = None
) -> int:
    """Count sharing grants of active records.

    With ``active_at``, only grants without expiry or expiring at or after
    that instant are counted.
    """
    stmt = (
        select(func.count())
        .select_from(RecordShare)
        .join(IndexedRecord, RecordShare.record_id == IndexedRecord.id)
        .where(ACTIVE)
    )
    if active_at is not None:
        stmt = stmt.where(
            or_(RecordShare.expires_at.is_(None), RecordShare.expires_at >= active_at)
        )
    result = await db.execute(stmt)
    return int(result.scalar())


async def recent_indexing_latencies(
    db: AsyncSession,
    limit: int = 100
) -> List[float]:
    """Seconds between ledger consensus and indexing for the newest records."""
    result = await db.execute(
        select(IndexedRecord.indexed_at, IndexedRecord.consensus_timestamp)
        .where(and_(IndexedRecord.indexed_at.is_not(None), IndexedRecord.consensus_timestamp.is_not(None)))
        .order_by(IndexedRecord.indexed_at.desc())
        .limit(limit)
    )
    return [
        (indexed_at - consensus_at).total_seconds()
        for indexed_at, consensus_at in result.all()
    ]
