# ledger_indexer/api/v1/routes_indexer.py
from fastapi import APIRouter, Depends, Request

from ledger_indexer.domain.indexing.schemas import IndexerStatus
from ledger_indexer.domain.indexing.service import IndexEngine


router = APIRouter(prefix="/api/v1/indexer", tags=["indexer"])


def get_indexer(request: Request) -> IndexEngine:
    return request.app.state.indexer


@router.get("/status", response_model=IndexerStatus)
async def indexer_status_endpoint(
    indexer: IndexEngine = Depends(get_indexer),
):
    return await indexer.get_status()
