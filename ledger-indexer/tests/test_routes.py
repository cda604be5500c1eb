import time
from datetime import date, datetime, timezone

import httpx
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine

from conftest import MIRROR_URL, MirrorStub, message_dict
from ledger_indexer.db.base import make_session_factory
from ledger_indexer.domain.indexing.schemas import IndexerStatus, TopicStatus
from ledger_indexer.domain.indexing.service import IndexEngine
from ledger_indexer.domain.ledger.client import LogClient
from ledger_indexer.domain.stats.schemas import StatsSnapshotOut, StatsSummary
from ledger_indexer.domain.stats.service import StatsAggregator
from ledger_indexer.main import create_app

UPDATED_AT = datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc)


def snapshot(day: date, total: int) -> StatsSnapshotOut:
    return StatsSnapshotOut(
        date=day,
        total_records=total,
        records_by_type={"vaccination": total},
        new_records_today=1,
        total_patients=2,
        total_providers=1,
        active_users=2,
        messages_total=total,
        messages_today=10,
        content_files_total=0,
        verified_records=0,
        verification_rate=0.0,
        total_shares=0,
        active_consents=0,
        total_tokens_minted=0,
        average_indexing_seconds=3,
        last_indexed_at=UPDATED_AT,
    )


class FakeIndexer:
    async def get_status(self):
        return IndexerStatus(
            is_running=True,
            topics=[TopicStatus(topic_id="0.0.1001", status="active", last_processed_sequence=42, total_processed=42)],
            total_indexed_records=40,
            subscriptions=1,
        )


class FakeAggregator:
    def __init__(self, summary=None):
        self.summary = summary
        self.requested_days = []

    async def list_snapshots(self, days):
        self.requested_days.append(days)
        return [snapshot(date(2024, 3, 10), 5), snapshot(date(2024, 3, 9), 4)]

    async def get_summary(self):
        return self.summary


def make_client(aggregator=None) -> TestClient:
    return TestClient(create_app(indexer=FakeIndexer(), aggregator=aggregator or FakeAggregator()))


def test_health():
    response = make_client().get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_indexer_status():
    response = make_client().get("/api/v1/indexer/status")

    assert response.status_code == 200
    body = response.json()
    assert body["is_running"] is True
    assert body["subscriptions"] == 1
    assert body["total_indexed_records"] == 40
    assert body["topics"][0]["topic_id"] == "0.0.1001"
    assert body["topics"][0]["last_processed_sequence"] == 42


def test_stats_history_defaults_to_thirty_days():
    aggregator = FakeAggregator()
    response = make_client(aggregator).get("/api/v1/stats")

    assert response.status_code == 200
    assert [row["date"] for row in response.json()] == ["2024-03-10", "2024-03-09"]
    assert aggregator.requested_days == [30]


def test_stats_history_rejects_out_of_range_days():
    response = make_client().get("/api/v1/stats", params={"days": 0})
    assert response.status_code == 422


def test_stats_summary_not_found_before_first_snapshot():
    response = make_client().get("/api/v1/stats/summary")

    assert response.status_code == 404
    assert response.json()["detail"] == "No statistics available yet"


def test_stats_summary():
    summary = StatsSummary(
        last_updated=UPDATED_AT,
        total_records=5,
        records_by_type={"vaccination": 5},
        total_users=3,
        verification_rate=20.0,
        is_running=True,
    )
    response = make_client(FakeAggregator(summary)).get("/api/v1/stats/summary")

    assert response.status_code == 200
    body = response.json()
    assert body["total_records"] == 5
    assert body["total_users"] == 3
    assert body["is_running"] is True


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def build_services(tmp_path, mirror):
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    session_factory = make_session_factory(db_engine)
    http = httpx.AsyncClient(base_url=MIRROR_URL, transport=httpx.MockTransport(mirror.handler))
    client = LogClient(base_url=MIRROR_URL, http=http)
    indexer = IndexEngine(client, session_factory, topics={"main": "0.0.1001"}, poll_interval=0.01)
    aggregator = StatsAggregator(session_factory)
    return db_engine, indexer, aggregator


def test_lifespan_runs_indexer_and_stats_timer(tmp_path):
    mirror = MirrorStub()
    mirror.add("0.0.1001", message_dict(1), message_dict(2))
    db_engine, indexer, aggregator = build_services(tmp_path, mirror)
    app = create_app(indexer=indexer, aggregator=aggregator, db_engine=db_engine, run_indexer=True)

    with TestClient(app) as api:
        status = api.get("/api/v1/indexer/status").json()
        assert status["is_running"] is True
        assert status["subscriptions"] == 1

        assert wait_until(lambda: api.get("/api/v1/indexer/status").json()["total_indexed_records"] == 2)
        assert wait_until(lambda: api.get("/api/v1/stats/summary").status_code == 200)
        assert api.get("/api/v1/stats/summary").json()["is_running"] is True

    assert indexer.is_running is False
    assert aggregator.is_running is False


def test_read_only_lifespan_creates_tables(tmp_path):
    mirror = MirrorStub()
    db_engine, indexer, aggregator = build_services(tmp_path, mirror)
    app = create_app(indexer=indexer, aggregator=aggregator, db_engine=db_engine, run_indexer=False)

    with TestClient(app) as api:
        response = api.get("/api/v1/indexer/status")
        assert response.status_code == 200
        assert response.json() == {
            "is_running": False,
            "topics": [],
            "total_indexed_records": 0,
            "subscriptions": 0,
        }
        assert api.get("/api/v1/stats/summary").status_code == 404

    assert mirror.requests == []
