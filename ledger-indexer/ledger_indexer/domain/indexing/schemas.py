# ledger_indexer/domain/indexing/schemas.py
from datetime import datetime
from pydantic import BaseModel
from typing import List, Optional


class TopicStatus(BaseModel):
    topic_id: str
    status: str
    last_processed_sequence: int
    last_processed_timestamp: Optional[datetime] = None
    total_processed: int
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class IndexerStatus(BaseModel):
    is_running: bool
    topics: List[TopicStatus]
    total_indexed_records: int
    subscriptions: int
