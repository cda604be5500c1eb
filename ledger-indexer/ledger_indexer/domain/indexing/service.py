# ledger_indexer/domain/indexing/service.py
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.orm import sessionmaker

from ledger_indexer.core.config import settings
from ledger_indexer.db.models.cursors import CursorStatus, TopicCursor
from ledger_indexer.db.models.indexed_records import IndexedRecord, RecordStatus
from ledger_indexer.db.repositories.cursors import (
    advance_cursor,
    create_cursor,
    get_cursor,
    get_or_create_cursor,
    list_cursors,
    set_cursor_status,
)
from ledger_indexer.db.repositories.records import count_records, create_record, get_record_by_message_id
from ledger_indexer.domain.indexing.directory import AccountDirectory
from ledger_indexer.domain.indexing.envelope import (
    detect_provider_type,
    parse_envelope,
    parse_record_date,
)
from ledger_indexer.domain.indexing.schemas import IndexerStatus, TopicStatus
from ledger_indexer.domain.ledger.client import LogClient, PollSubscription
from ledger_indexer.domain.ledger.schemas import LogMessage

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def record_status(value: Any) -> RecordStatus:
    # unknown producer statuses index as active
    try:
        return RecordStatus(value)
    except (ValueError, TypeError):
        return RecordStatus.ACTIVE


class IndexEngine:
    """Turns ledger topic messages into indexed records.

    Each configured topic moves through ``active -> syncing -> active`` during
    backfill, or ends in ``error`` when a backfill attempt fails; the next
    ``sync_all`` retries it. Messages of one topic are handled strictly one at
    a time and the topic cursor is persisted after every message, so a restart
    replays at most the message that was in flight.

    Only one engine may consume a given topic at a time; nothing here guards
    against a second writer on the same cursor.
    """

    def __init__(
        self,
        client: LogClient,
        session_factory: sessionmaker,
        topics: Optional[Mapping[str, str]] = None,
        directory: Optional[AccountDirectory] = None,
        poll_interval: float = settings.POLL_INTERVAL_SECONDS,
        clock: Clock = utcnow,
    ):
        self.client = client
        self.session_factory = session_factory
        self.topics: Dict[str, str] = dict(settings.configured_topics() if topics is None else topics)
        self.directory = directory or AccountDirectory(session_factory)
        self.poll_interval = poll_interval
        self.clock = clock
        self.is_running = False
        self.subscriptions: List[Dict[str, Any]] = []
        self._stopping: List[PollSubscription] = []

    async def initialize_state(self) -> None:
        for name, topic_id in self.topics.items():
            async with self.session_factory() as db:
                if await get_cursor(db, topic_id) is None:
                    await create_cursor(db, topic_id)
                    logger.info("Initialized cursor for %s topic %s", name, topic_id)

    async def process_message(self, raw: LogMessage, topic_id: str) -> Optional[IndexedRecord]:
        """Index one message; safe to call again for a message already indexed.

        Returns the record, or None when the message is skipped for good
        (undecodable payload or unusable content).
        """
        content = self.client.decode(raw.payload)
        if content is None:
            logger.warning("Could not decode message %s on topic %s, skipping", raw.sequence_number, topic_id)
            return None

        timestamp = self.client.parse_timestamp(raw.consensus_timestamp)

        async with self.session_factory() as db:
            existing = await get_record_by_message_id(db, raw.consensus_timestamp)
            if existing is not None:
                logger.debug("Message %s already indexed", raw.sequence_number)
                return existing

        index_data = await self.extract_metadata(content, raw, topic_id, timestamp)
        if index_data is None:
            logger.warning("Could not extract metadata from message %s on topic %s, skipping",
                           raw.sequence_number, topic_id)
            return None

        record = IndexedRecord(
            message_id=raw.consensus_timestamp,
            topic_id=topic_id,
            consensus_timestamp=timestamp,
            sequence_number=raw.sequence_number,
            indexed_at=self.clock(),
            **index_data,
        )
        async with self.session_factory() as db:
            record, created = await create_record(db, record)
        if created:
            logger.info("Indexed %s record %s from message %s",
                        record.record_type.value, record.id, raw.sequence_number)
        return record

    async def extract_metadata(
        self,
        content: Mapping[str, Any],
        message: LogMessage,
        topic_id: str,
        timestamp: datetime,
    ) -> Optional[Dict[str, Any]]:
        """Searchable fields for an indexed record, or None if the content is unusable.

        Store errors from the directory lookup propagate; only malformed
        content is turned into None.
        """
        try:
            envelope = parse_envelope(content)

            metadata: Dict[str, Any] = {
                "record_type": envelope.kind,
                "content_location_ref": envelope.ref("content_location_ref"),
                "content_url": envelope.ref("content_url"),
                "content_hash": envelope.ref("content_hash"),
                "title": envelope.ref("title"),
                "record_date": parse_record_date(envelope.get("record_date")) or timestamp,
                "facility": envelope.ref("facility"),
                "verified": False,
                "type_metadata": envelope.details,
                "original_record_ref": envelope.ref("original_record_ref"),
                "status": record_status(envelope.get("status")),
            }

            patient_ref = envelope.ref("patient")
            if patient_ref:
                metadata["patient_ref"] = patient_ref
                metadata["patient_account_id"] = envelope.ref("patient_account_id")
                metadata["patient_did"] = envelope.ref("patient_did")

            provider_ref = envelope.ref("provider")
            if provider_ref:
                metadata["provider_ref"] = provider_ref
                metadata["provider_name"] = envelope.ref("provider_name")
                metadata["provider_account_id"] = envelope.ref("provider_account_id")
                metadata["provider_did"] = envelope.ref("provider_did")
                metadata["provider_type"] = detect_provider_type(content)

            nft_token_id = envelope.ref("nft_token_id")
            if nft_token_id:
                metadata["nft_token_id"] = nft_token_id
                serial = envelope.get("nft_serial")
                metadata["nft_serial"] = int(serial) if serial is not None else None
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning("Unusable content in message %s on topic %s: %s",
                           message.sequence_number, topic_id, exc)
            return None

        if patient_ref:
            patient = await self.directory.lookup(patient_ref)
            if patient is not None:
                metadata["patient_account_id"] = patient.ledger_account_id or metadata["patient_account_id"]
        if provider_ref and not metadata.get("provider_account_id"):
            provider = await self.directory.lookup(provider_ref)
            if provider is not None:
                metadata["provider_account_id"] = provider.ledger_account_id
                metadata["provider_name"] = metadata.get("provider_name") or provider.display_name

        location_ref = metadata["content_location_ref"]
        expected_hash = metadata["content_hash"]
        if location_ref and expected_hash:
            metadata["verified"] = await self.verify_record_hash(location_ref, expected_hash)

        return metadata

    async def verify_record_hash(self, location_ref: str, expected_hash: str) -> bool:
        # Placeholder: no content fetch or hashing scheme is defined yet, so
        # every record stays unverified.
        return False

    async def _record_progress(self, topic_id: str, message: LogMessage) -> None:
        async with self.session_factory() as db:
            await advance_cursor(
                db,
                topic_id,
                message.sequence_number,
                self.client.parse_timestamp(message.consensus_timestamp),
                message.consensus_timestamp,
            )

    async def sync_topic(self, topic_id: str, from_sequence: Optional[int] = None) -> int:
        """Backfill ``topic_id`` from its cursor (or ``from_sequence``) to the head.

        Any failure marks the cursor ``error`` and is re-raised.
        """
        async with self.session_factory() as db:
            cursor = await get_or_create_cursor(db, topic_id)
            start = cursor.last_processed_sequence if from_sequence is None else from_sequence
            await set_cursor_status(db, topic_id, CursorStatus.SYNCING, sync_started_at=self.clock())

        logger.info("Starting sync for topic %s from sequence %s", topic_id, start)

        async def handle_batch(messages: List[LogMessage]) -> None:
            for message in messages:
                await self.process_message(message, topic_id)
                await self._record_progress(topic_id, message)

        try:
            total = await self.client.drain(topic_id, start, handle_batch)
        except Exception as exc:
            logger.error("Error syncing topic %s: %s", topic_id, exc)
            async with self.session_factory() as db:
                await set_cursor_status(
                    db, topic_id, CursorStatus.ERROR, last_error=str(exc), last_error_at=self.clock()
                )
            raise

        async with self.session_factory() as db:
            await set_cursor_status(db, topic_id, CursorStatus.ACTIVE, sync_completed_at=self.clock())
        logger.info("Sync completed for topic %s, processed %s messages", topic_id, total)
        return total

    async def sync_all(self) -> Dict[str, Optional[int]]:
        """Backfill every configured topic in turn.

        A failing topic is logged and left in ``error``; the others still run.
        The result maps topic id to processed count, None for failed topics.
        """
        logger.info("Starting sync for all topics")
        results: Dict[str, Optional[int]] = {}
        for name, topic_id in self.topics.items():
            try:
                results[topic_id] = await self.sync_topic(topic_id)
            except Exception:
                logger.exception("Failed to sync %s topic %s", name, topic_id)
                results[topic_id] = None
        logger.info("All topics synced")
        return results

    async def start_realtime(self) -> None:
        if self.is_running:
            logger.warning("Indexer is already running")
            return

        logger.info("Starting real-time indexer")
        self.is_running = True

        for name, topic_id in self.topics.items():
            async with self.session_factory() as db:
                cursor = await get_or_create_cursor(db, topic_id)
                start = cursor.last_processed_sequence

            subscription = self.client.poll(
                topic_id, start, self._realtime_handler(topic_id), self.poll_interval
            )
            self.subscriptions.append({"name": name, "topic_id": topic_id, "subscription": subscription})
            logger.info("Subscribed to %s topic %s from sequence %s", name, topic_id, start)

    def _realtime_handler(self, topic_id: str):
        async def on_message(message: LogMessage) -> None:
            try:
                await self.process_message(message, topic_id)
                await self._record_progress(topic_id, message)
            except Exception:
                logger.exception("Error in real-time processing of message %s on topic %s",
                                 message.sequence_number, topic_id)
        return on_message

    def stop(self) -> None:
        """Ask every poll loop to stop; does not wait for in-flight cycles."""
        logger.info("Stopping indexer")
        self.is_running = False
        for entry in self.subscriptions:
            entry["subscription"].stop()
            logger.info("Unsubscribed from %s topic", entry["name"])
        self._stopping = [entry["subscription"] for entry in self.subscriptions]
        self.subscriptions = []

    async def wait_stopped(self) -> None:
        """Wait for the poll loops stopped by the last ``stop()`` to finish."""
        for subscription in self._stopping:
            await subscription.wait()
        self._stopping = []

    async def get_status(self) -> IndexerStatus:
        async with self.session_factory() as db:
            cursors: List[TopicCursor] = await list_cursors(db)
            total_records = await count_records(db)

        return IndexerStatus(
            is_running=self.is_running,
            topics=[
                TopicStatus(
                    topic_id=cursor.topic_id,
                    status=CursorStatus(cursor.status).value,
                    last_processed_sequence=cursor.last_processed_sequence,
                    last_processed_timestamp=cursor.last_processed_timestamp,
                    total_processed=cursor.total_processed,
                    last_error=cursor.last_error,
                    last_error_at=cursor.last_error_at,
                )
                for cursor in cursors
            ],
            total_indexed_records=total_records,
            subscriptions=len(self.subscriptions),
        )
