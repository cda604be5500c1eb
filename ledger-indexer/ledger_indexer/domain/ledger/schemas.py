# ledger_indexer/domain/ledger/schemas.py
from pydantic import BaseModel, Field
from typing import List, Optional


class LogMessage(BaseModel):
    topic_id: Optional[str] = None
    sequence_number: int
    consensus_timestamp: str
    payload: str = Field(alias="message")
    running_hash: Optional[str] = None

    class Config:
        populate_by_name = True
        frozen = True


class PageLinks(BaseModel):
    next: Optional[str] = None


class MessagePage(BaseModel):
    messages: List[LogMessage] = []
    links: Optional[PageLinks] = None

    @property
    def next_link(self) -> Optional[str]:
        return self.links.next if self.links else None

    @property
    def has_more(self) -> bool:
        return bool(self.next_link)
