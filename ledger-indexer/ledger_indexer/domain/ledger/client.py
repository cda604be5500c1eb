"""Read-only client for the ledger mirror REST API.

Topic messages are fetched page by page in sequence order. ``drain`` walks a
topic's history once; ``poll`` keeps following a topic until it is stopped.
Both hand messages to the caller strictly in order and wait for the caller
before asking the mirror for more.
"""
import asyncio
import base64
import json
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

import httpx
from pydantic import ValidationError

from ledger_indexer.core.config import settings
from ledger_indexer.domain.ledger.schemas import LogMessage, MessagePage

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
BatchHandler = Callable[[List[LogMessage]], Awaitable[None]]
MessageHandler = Callable[[LogMessage], Awaitable[None]]

# Errors that make a page unusable: network/HTTP failures, bodies that are not
# JSON and bodies that do not match the mirror's page shape.
TRANSPORT_ERRORS = (httpx.HTTPError, json.JSONDecodeError, ValidationError)


class LogClient:
    def __init__(
        self,
        base_url: str = settings.MIRROR_NODE_URL,
        timeout: float = settings.MIRROR_TIMEOUT_SECONDS,
        page_limit: int = settings.PAGE_LIMIT,
        poll_limit: int = settings.POLL_LIMIT,
        page_delay: float = settings.PAGE_DELAY_SECONDS,
        http: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.base_url = base_url
        self.page_limit = page_limit
        self.poll_limit = poll_limit
        self.page_delay = page_delay
        self.sleep = sleep
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> "LogClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def fetch_page(
        self,
        topic_id: str,
        after_sequence: Optional[int] = None,
        limit: Optional[int] = None,
        order: str = "asc",
        after_timestamp: Optional[str] = None,
    ) -> MessagePage:
        """Fetch one page of topic messages after an exclusive lower bound."""
        params = {"limit": limit or self.page_limit, "order": order}
        if after_sequence:
            params["sequencenumber"] = f"gt:{after_sequence}"
        if after_timestamp:
            params["timestamp"] = f"gt:{after_timestamp}"

        response = await self.http.get(f"/api/v1/topics/{topic_id}/messages", params=params)
        response.raise_for_status()
        return MessagePage.model_validate(response.json())

    async def fetch_message(self, topic_id: str, consensus_timestamp: str) -> LogMessage:
        response = await self.http.get(f"/api/v1/topics/{topic_id}/messages/{consensus_timestamp}")
        response.raise_for_status()
        return LogMessage.model_validate(response.json())

    @staticmethod
    def decode(payload: Optional[str]) -> Optional[dict]:
        """Decode a base64 JSON payload into a dict.

        Returns None for anything that is not base64 of a UTF-8 JSON object;
        never raises for bad content.
        """
        try:
            content = json.loads(base64.b64decode(payload or "").decode("utf-8"))
        except (ValueError, TypeError, RecursionError) as exc:
            # RecursionError: JSON nested deeper than the parser allows
            logger.warning("Could not decode message payload: %s", exc)
            return None
        if not isinstance(content, dict):
            logger.warning("Message payload is %s, expected a JSON object", type(content).__name__)
            return None
        return content

    @staticmethod
    def parse_timestamp(consensus_timestamp: str) -> datetime:
        # "<seconds>.<nanos>"; only whole seconds matter for time arithmetic
        seconds = consensus_timestamp.split(".", 1)[0]
        return datetime.fromtimestamp(int(seconds), tz=timezone.utc)

    async def drain(
        self,
        topic_id: str,
        from_sequence: int,
        on_batch: BatchHandler,
    ) -> int:
        """Hand every message after ``from_sequence`` to ``on_batch``, page by page.

        Stops on an empty page or a page without a next link. Transport errors
        propagate to the caller. Returns the number of messages handed over.
        """
        current = from_sequence
        total = 0

        while True:
            page = await self.fetch_page(topic_id, after_sequence=current, limit=self.page_limit)
            if not page.messages:
                break

            await on_batch(page.messages)
            total += len(page.messages)
            current = page.messages[-1].sequence_number

            if not page.has_more:
                break
            # rate-limit courtesy between pages
            await self.sleep(self.page_delay)

        return total

    def poll(
        self,
        topic_id: str,
        from_sequence: int,
        on_message: MessageHandler,
        interval: float = settings.POLL_INTERVAL_SECONDS,
    ) -> "PollSubscription":
        """Start following ``topic_id`` after ``from_sequence``.

        Must be called from a running event loop. Returns the subscription,
        whose ``stop()`` ends the loop after the current cycle.
        """
        subscription = PollSubscription(self, topic_id, from_sequence, on_message, interval)
        subscription.start()
        return subscription


class PollSubscription:
    """Background follower of one topic.

    A producer task fetches the next page on every tick and puts the batch on
    a single-consumer queue; the consumer task runs the message handler for
    each message in order. The producer waits until the batch is consumed
    before it sleeps, so at most one batch per topic is in flight.

    Stopping is cooperative: ``stop()`` flips the running flag, which is
    checked between ticks. A fetch or handler call already in progress
    completes first.
    """

    def __init__(
        self,
        client: LogClient,
        topic_id: str,
        from_sequence: int,
        on_message: MessageHandler,
        interval: float,
    ):
        self.client = client
        self.topic_id = topic_id
        self.position = from_sequence
        self.on_message = on_message
        self.interval = interval
        self.running = False
        self._queue: "asyncio.Queue[Optional[List[LogMessage]]]" = asyncio.Queue(maxsize=1)
        self._handler_failed = False
        self._producer: Optional[asyncio.Task] = None
        self._consumer: Optional[asyncio.Task] = None

    def start(self) -> None:
        self.running = True
        self._producer = asyncio.create_task(self._produce(), name=f"poll-fetch-{self.topic_id}")
        self._consumer = asyncio.create_task(self._consume(), name=f"poll-handle-{self.topic_id}")

    def stop(self) -> None:
        self.running = False

    async def wait(self) -> None:
        """Wait for both tasks to finish after ``stop()``."""
        tasks = [task for task in (self._producer, self._consumer) if task is not None]
        if tasks:
            await asyncio.gather(*tasks)

    async def _produce(self) -> None:
        try:
            while self.running:
                try:
                    page = await self.client.fetch_page(
                        self.topic_id,
                        after_sequence=self.position,
                        limit=self.client.poll_limit,
                    )
                except TRANSPORT_ERRORS as exc:
                    logger.error("Polling topic %s failed: %s", self.topic_id, exc)
                    await self.client.sleep(self.interval * 2)
                    continue

                if page.messages:
                    await self._queue.put(page.messages)
                    await self._queue.join()

                if self._handler_failed:
                    self._handler_failed = False
                    await self.client.sleep(self.interval * 2)
                else:
                    await self.client.sleep(self.interval)
        finally:
            try:
                self._queue.put_nowait(None)
            except asyncio.QueueFull:
                self._consumer.cancel()

    async def _consume(self) -> None:
        while True:
            batch = await self._queue.get()
            try:
                if batch is None:
                    return
                for message in batch:
                    await self.on_message(message)
                    self.position = message.sequence_number
            except Exception:
                logger.exception(
                    "Handler failed for topic %s after sequence %s", self.topic_id, self.position
                )
                self._handler_failed = True
            finally:
                self._queue.task_done()
