from typing import Optional

from sqlalchemy.orm import sessionmaker

from ledger_indexer.db.models.directory_accounts import DirectoryAccount
from ledger_indexer.db.repositories.accounts import find_account


class AccountDirectory:
    """Best-effort resolution of patient/provider references.

    An unknown reference is not an error; the caller keeps whatever the
    message itself carried.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def lookup(self, ref: Optional[str]) -> Optional[DirectoryAccount]:
        if not ref:
            return None
        async with self.session_factory() as db:
            return await find_account(db, ref)
