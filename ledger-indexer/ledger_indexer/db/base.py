from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.ext.asyncio.session import AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from ledger_indexer.core.config import settings

DB_URL = settings.DB_URL

# JSONB on PostgreSQL, plain JSON everywhere else (local sqlite, tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")

engine = create_async_engine(DB_URL, future=True, echo=settings.DB_ECHO)
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


def make_session_factory(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


async def init_models(bind: AsyncEngine = engine) -> None:
    """Create every table registered on ``Base`` that does not exist yet."""
    # importing the model modules registers their tables on Base.metadata
    from ledger_indexer.db.models import cursors, directory_accounts, indexed_records, stats_snapshots  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session
