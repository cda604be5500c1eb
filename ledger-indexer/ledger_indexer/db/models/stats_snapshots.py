from sqlalchemy import Column, Date, DateTime, Float, Integer, Uuid
from sqlalchemy.sql import func
import uuid

from ledger_indexer.db.base import Base, JSONType


class StatsSnapshot(Base):
    __tablename__ = "stats_snapshots"

    """Aggregate platform counters for one calendar day.

    The row for the current day is recomputed and overwritten on every stats
    cycle; rows for past days are written once and left alone. Fields that
    cannot be reconstructed for a past day (live user activity, ledger
    throughput) stay at zero on backfilled rows.
    """

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    date = Column(Date, nullable=False, unique=True, index=True)

    total_records = Column(Integer, nullable=False, default=0)
    records_by_type = Column(JSONType, nullable=False, default=dict)
    new_records_today = Column(Integer, nullable=False, default=0)

    total_patients = Column(Integer, nullable=False, default=0)
    total_providers = Column(Integer, nullable=False, default=0)
    active_users = Column(Integer, nullable=False, default=0)

    messages_total = Column(Integer, nullable=False, default=0)
    messages_today = Column(Integer, nullable=False, default=0)
    content_files_total = Column(Integer, nullable=False, default=0)

    verified_records = Column(Integer, nullable=False, default=0)
    verification_rate = Column(Float, nullable=False, default=0)

    total_shares = Column(Integer, nullable=False, default=0)
    active_consents = Column(Integer, nullable=False, default=0)
    total_tokens_minted = Column(Integer, nullable=False, default=0)

    average_indexing_seconds = Column(Integer, nullable=True)
    last_indexed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
