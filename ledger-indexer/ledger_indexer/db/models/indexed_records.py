# ledger_indexer/db/models/indexed_records.py
import enum
from sqlalchemy import Boolean, Column, Enum, ForeignKey, Index, Integer, String, DateTime, BigInteger, Text, Uuid
from sqlalchemy.sql import func
import uuid

from ledger_indexer.db.base import Base, JSONType

INDEXER_VERSION = "1.0.0"


class RecordType(str, enum.Enum):
    LAB_RESULT = "lab-result"
    PRESCRIPTION = "prescription"
    DIAGNOSIS = "diagnosis"
    VACCINATION = "vaccination"
    SURGERY = "surgery"
    OTHER = "other"


class RecordStatus(str, enum.Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    AMENDED = "amended"
    ARCHIVED = "archived"


class ProviderType(str, enum.Enum):
    DOCTOR = "doctor"
    LAB = "lab"
    HOSPITAL = "hospital"
    PHARMACY = "pharmacy"
    CLINIC = "clinic"
    OTHER = "other"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class IndexedRecord(Base):
    __tablename__ = "indexed_records"

    """Searchable index entry derived from one ledger message.

    The row is keyed by the source message id (the consensus timestamp string)
    so re-reading a topic never produces a second row for the same message. It
    carries the ledger position, the classified record type, resolved patient
    and provider references, content location and hash, and a free-form map of
    type-specific metadata. Status and verification may later be changed by
    write paths outside the indexer; rows are never deleted.
    """

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    message_id = Column(String, nullable=False, unique=True, index=True)
    topic_id = Column(String, nullable=False, index=True)
    consensus_timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    sequence_number = Column(BigInteger, nullable=True, index=True)

    record_type = Column(
        Enum(RecordType, name="record_type_enum", values_callable=_enum_values),
        nullable=False,
        index=True,
    )

    patient_ref = Column(String, nullable=True, index=True)
    patient_account_id = Column(String, nullable=True, index=True)
    patient_did = Column(String, nullable=True)

    provider_ref = Column(String, nullable=True)
    provider_name = Column(String, nullable=True)
    provider_account_id = Column(String, nullable=True, index=True)
    provider_did = Column(String, nullable=True)
    provider_type = Column(
        Enum(ProviderType, name="provider_type_enum", values_callable=_enum_values),
        nullable=True,
    )

    title = Column(String, nullable=True)
    record_date = Column(DateTime(timezone=True), nullable=True, index=True)
    facility = Column(String, nullable=True)

    content_location_ref = Column(String, nullable=True, index=True)
    content_url = Column(String, nullable=True)
    content_hash = Column(String, nullable=True, index=True)
    verified = Column(Boolean, nullable=False, default=False)
    verification_method = Column(String, nullable=True)

    type_metadata = Column(JSONType, nullable=False, default=dict)

    original_record_ref = Column(String, nullable=True)
    nft_token_id = Column(String, nullable=True)
    nft_serial = Column(BigInteger, nullable=True)

    status = Column(
        Enum(RecordStatus, name="record_status_enum", values_callable=_enum_values),
        nullable=False,
        default=RecordStatus.ACTIVE,
        index=True,
    )

    indexed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    indexer_version = Column(String, nullable=False, default=INDEXER_VERSION)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_indexed_records_patient_type", "patient_account_id", "record_type"),
        Index("ix_indexed_records_provider_type", "provider_account_id", "record_type"),
        Index("ix_indexed_records_topic_timestamp", "topic_id", "consensus_timestamp"),
    )


class RecordShare(Base):
    __tablename__ = "record_shares"

    """One sharing grant of an indexed record to another party.

    Grants are written by the consent workflow, not by the indexer. A grant
    without ``expires_at`` never lapses.
    """

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    record_id = Column(Uuid(as_uuid=True), ForeignKey("indexed_records.id"), nullable=False, index=True)

    account_id = Column(String, nullable=True)
    did = Column(String, nullable=True)
    name = Column(Text, nullable=True)

    shared_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
