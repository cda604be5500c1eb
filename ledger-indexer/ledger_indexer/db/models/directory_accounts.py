from sqlalchemy import Column, String, DateTime, Uuid
from sqlalchemy.sql import func
from uuid import uuid4

from ledger_indexer.db.base import Base

PATIENT_ROLE = "patient"
PROVIDER_ROLES = ("doctor", "lab", "hospital", "pharmacy")


class DirectoryAccount(Base):
    __tablename__ = "directory_accounts"

    """A person or organisation known to the platform.

    Maintained by the account service. The indexer only reads it, to attach a
    ledger account id to patient and provider references found in messages
    and to count users for the daily statistics.
    """

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    external_ref = Column(String, nullable=False, unique=True)
    role = Column(String, nullable=False, index=True)

    display_name = Column(String, nullable=True)
    ledger_account_id = Column(String, nullable=True, index=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
