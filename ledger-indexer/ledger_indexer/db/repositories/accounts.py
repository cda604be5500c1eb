
from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func, or_, select

from ledger_indexer.db.models.directory_accounts import DirectoryAccount, PATIENT_ROLE, PROVIDER_ROLES


async def find_account(
    db: AsyncSession,
    ref: str
) -> Optional[DirectoryAccount]:
    """Look an account up by its directory reference or ledger account id."""
    result = await db.execute(
        select(DirectoryAccount)
        .where(or_(DirectoryAccount.external_ref == ref, DirectoryAccount.ledger_account_id == ref))
        .limit(1)
    )
    return result.scalar_one_or_none()


async def count_patients(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count()).select_from(DirectoryAccount).where(DirectoryAccount.role == PATIENT_ROLE)
    )
    return int(result.scalar())


async def count_providers(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count()).select_from(DirectoryAccount).where(DirectoryAccount.role.in_(PROVIDER_ROLES))
    )
    return int(result.scalar())


async def count_active_since(db: AsyncSession, since: datetime) -> int:
    result = await db.execute(
        select(func.count()).select_from(DirectoryAccount).where(DirectoryAccount.last_login_at >= since)
    )
    return int(result.scalar())
