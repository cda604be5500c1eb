import asyncio
import base64
import json
from typing import Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from ledger_indexer.db.base import init_models, make_session_factory
from ledger_indexer.domain.ledger.client import LogClient
from ledger_indexer.domain.ledger.schemas import LogMessage

MIRROR_URL = "https://mirror.test"
BASE_SECONDS = 1_700_000_000


def encode_payload(content) -> str:
    return base64.b64encode(json.dumps(content).encode("utf-8")).decode("ascii")


def message_dict(
    sequence_number: int,
    content=None,
    payload: Optional[str] = None,
    topic_id: str = "0.0.1001",
    consensus_timestamp: Optional[str] = None,
) -> dict:
    if payload is None:
        payload = encode_payload(content if content is not None else {"eventType": "diagnosis"})
    return {
        "topic_id": topic_id,
        "sequence_number": sequence_number,
        "consensus_timestamp": consensus_timestamp or f"{BASE_SECONDS + sequence_number}.000000001",
        "message": payload,
    }


def make_message(sequence_number: int, content=None, **kwargs) -> LogMessage:
    return LogMessage.model_validate(message_dict(sequence_number, content, **kwargs))


class MirrorStub:
    """In-memory mirror API serving topic messages through httpx.MockTransport."""

    def __init__(self):
        self.topics: Dict[str, List[dict]] = {}
        self.failing_topics = set()
        self.failures_left = 0
        self.garbage_left = 0
        self.requests: List[httpx.Request] = []

    def add(self, topic_id: str, *messages: dict) -> None:
        self.topics.setdefault(topic_id, []).extend(messages)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.strip("/").split("/")
        topic_id = parts[3]

        if topic_id in self.failing_topics:
            return httpx.Response(500, json={"_status": {"messages": [{"message": "boom"}]}})
        if self.failures_left:
            self.failures_left -= 1
            raise httpx.ConnectError("mirror unreachable", request=request)
        if self.garbage_left:
            self.garbage_left -= 1
            return httpx.Response(200, text="<html>maintenance</html>")

        messages = self.topics.get(topic_id, [])
        if len(parts) == 6:
            for message in messages:
                if message["consensus_timestamp"] == parts[5]:
                    return httpx.Response(200, json=message)
            return httpx.Response(404, json={})

        after = 0
        bound = request.url.params.get("sequencenumber")
        if bound:
            after = int(bound.split(":", 1)[1])
        limit = int(request.url.params.get("limit", 100))

        remaining = [m for m in messages if m["sequence_number"] > after]
        page = remaining[:limit]
        next_link = None
        if len(remaining) > limit:
            next_link = f"/api/v1/topics/{topic_id}/messages?sequencenumber=gt:{page[-1]['sequence_number']}"
        return httpx.Response(200, json={"messages": page, "links": {"next": next_link}})


async def no_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def mirror() -> MirrorStub:
    return MirrorStub()


@pytest_asyncio.fixture
async def http(mirror):
    async with httpx.AsyncClient(base_url=MIRROR_URL, transport=httpx.MockTransport(mirror.handler)) as client:
        yield client


@pytest.fixture
def log_client(http) -> LogClient:
    return LogClient(base_url=MIRROR_URL, http=http, page_limit=2, poll_limit=2, page_delay=0, sleep=no_sleep)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'indexer.db'}")
    await init_models(engine)
    yield make_session_factory(engine)
    await engine.dispose()
