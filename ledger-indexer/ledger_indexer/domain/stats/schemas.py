# ledger_indexer/domain/stats/schemas.py
import datetime as dt
from pydantic import BaseModel
from typing import Dict, Optional


class StatsSnapshotOut(BaseModel):
    date: dt.date
    total_records: int
    records_by_type: Dict[str, int]
    new_records_today: int
    total_patients: int
    total_providers: int
    active_users: int
    messages_total: int
    messages_today: int
    content_files_total: int
    verified_records: int
    verification_rate: float
    total_shares: int
    active_consents: int
    total_tokens_minted: int
    average_indexing_seconds: Optional[int] = None
    last_indexed_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class StatsSummary(BaseModel):
    last_updated: Optional[dt.datetime]
    total_records: int
    records_by_type: Dict[str, int]
    total_users: int
    verification_rate: float
    is_running: bool
