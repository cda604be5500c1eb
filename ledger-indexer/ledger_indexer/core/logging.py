# ledger_indexer/core/logging.py
import logging
from typing import Optional

from ledger_indexer.core.config import settings

_configured = False


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> logging.Logger:
    """Configure the root logger once per process.

    Every module logs through ``logging.getLogger(__name__)``; this only
    installs the handler and level. Calling it again adjusts the level.
    """
    global _configured

    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())

    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt or settings.LOG_FORMAT))
        root.addHandler(handler)
        # httpx logs every request at INFO
        logging.getLogger("httpx").setLevel(logging.WARNING)
        _configured = True

    return root
