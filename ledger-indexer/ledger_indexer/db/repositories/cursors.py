
from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func, select, update

from ledger_indexer.db.models.cursors import CursorStatus, TopicCursor


async def get_cursor(
    db: AsyncSession,
    topic_id: str
) -> Optional[TopicCursor]:
    result = await db.execute(
        select(TopicCursor).where(TopicCursor.topic_id == topic_id)
    )
    return result.scalar_one_or_none()


async def list_cursors(db: AsyncSession) -> List[TopicCursor]:
    result = await db.execute(select(TopicCursor).order_by(TopicCursor.topic_id))
    return list(result.scalars().all())


async def create_cursor(
    db: AsyncSession,
    topic_id: str
) -> TopicCursor:
    cursor = TopicCursor(
        topic_id=topic_id,
        last_processed_sequence=0,
        status=CursorStatus.ACTIVE,
        total_processed=0,
    )
    db.add(cursor)
    await db.commit()
    await db.refresh(cursor)
    return cursor


async def get_or_create_cursor(
    db: AsyncSession,
    topic_id: str
) -> TopicCursor:
    cursor = await get_cursor(db, topic_id)
    if cursor is None:
        cursor = await create_cursor(db, topic_id)
    return cursor


async def advance_cursor(
    db: AsyncSession,
    topic_id: str,
    sequence_number: int,
    processed_at: datetime,
    message_id: str,
) -> None:
    """Move the cursor to a processed message and bump the processed counter.

    A single UPDATE statement, so the counter increment is atomic per row.
    """
    await db.execute(
        update(TopicCursor)
        .where(TopicCursor.topic_id == topic_id)
        .values(
            last_processed_sequence=sequence_number,
            last_processed_timestamp=processed_at,
            last_processed_message_id=message_id,
            total_processed=TopicCursor.total_processed + 1,
        )
    )
    await db.commit()


async def set_cursor_status(
    db: AsyncSession,
    topic_id: str,
    status: CursorStatus,
    **fields,
) -> None:
    await db.execute(
        update(TopicCursor)
        .where(TopicCursor.topic_id == topic_id)
        .values(status=status, **fields)
    )
    await db.commit()


async def sum_total_processed(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(TopicCursor.total_processed), 0))
    )
    return int(result.scalar())


async def count_cursors_processed_since(db: AsyncSession, since: datetime) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(TopicCursor)
        .where(TopicCursor.last_processed_timestamp >= since)
    )
    return int(result.scalar())
