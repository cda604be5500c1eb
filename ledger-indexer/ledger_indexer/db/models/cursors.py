import enum
from sqlalchemy import Column, Enum, String, DateTime, BigInteger, Integer, Text, Uuid
from sqlalchemy.sql import func
from uuid import uuid4

from ledger_indexer.db.base import Base


class CursorStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    SYNCING = "syncing"
    ERROR = "error"


class TopicCursor(Base):
    __tablename__ = "topic_cursors"

    """Tracks consumption progress of one ledger topic.

    A cursor stores the last processed sequence number, consensus timestamp and
    message id for a topic, allowing a restarted indexer to resume from where it
    stopped instead of replaying the whole topic. Failures of the last sync are
    kept on the row so operators can spot a stuck topic from a status query.
    """

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    topic_id = Column(String, nullable=False, unique=True)

    last_processed_sequence = Column(BigInteger, nullable=False, default=0)
    last_processed_timestamp = Column(DateTime(timezone=True), nullable=True)
    last_processed_message_id = Column(String, nullable=True)

    status = Column(
        Enum(CursorStatus, name="cursor_status_enum", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=CursorStatus.ACTIVE,
    )
    total_processed = Column(Integer, nullable=False, default=0)

    last_error = Column(Text, nullable=True)
    last_error_at = Column(DateTime(timezone=True), nullable=True)
    sync_started_at = Column(DateTime(timezone=True), nullable=True)
    sync_completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
