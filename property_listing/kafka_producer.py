import asyncio
import contextlib
import logging
from typing import Optional
from kafka import KafkaProducer

from property_listing.config import KAFKA_BROKER, KAFKA_TOPIC, PUBLISH_TIMEOUT_SECONDS
from property_listing.errors import ReplicationPublishError
from property_listing.models import PropertyRecord, ReplicationEvent
from property_listing.protocols import EventLog

logger = logging.getLogger(__name__)


class KafkaEventLog:
    """Appends replication events to the shared Kafka topic.

    Messages are keyed by property id so that every update of one record lands
    on the same partition, in commit order.
    """

    def __init__(self, broker: str = KAFKA_BROKER, topic: str = KAFKA_TOPIC, timeout: float = PUBLISH_TIMEOUT_SECONDS):
        self.topic = topic
        self._timeout = timeout
        self._producer = KafkaProducer(
            bootstrap_servers=[broker],
            key_serializer=lambda k: str(k).encode("utf-8"),
            acks="all",
            retries=3,
        )
        logger.info("Kafka producer connected (topic=%s)", topic)

    def _send(self, event: ReplicationEvent):
        future = self._producer.send(self.topic, key=event.id, value=event.encode())
        self._producer.flush()
        record_metadata = future.get(timeout=self._timeout)
        logger.info(
            "Published to %s [partition %d] offset %d",
            record_metadata.topic,
            record_metadata.partition,
            record_metadata.offset,
        )

    async def append(self, event: ReplicationEvent):
        # kafka-python blocks until the broker acknowledges
        await asyncio.to_thread(self._send, event)

    def close(self):
        self._producer.close()


class ReplicationPublisher:
    """Publishes committed writes to the replication log, one at a time, in commit order.

    The coordinator reserves a slot while it still holds the record's row lock
    and fills it after commit (or with None if the commit failed). A single
    worker drains the slots in reservation order, so two writes of the same
    record always reach the log in the order they committed.
    """

    def __init__(self, log: EventLog):
        self._log = log
        self._slots: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    async def publish(self, record: PropertyRecord) -> ReplicationEvent:
        """Append a snapshot of ``record`` to the replication log, once.

        Raises ReplicationPublishError if the log rejects or times out.
        """
        event = ReplicationEvent.from_record(record)
        try:
            await self._log.append(event)
        except Exception as e:
            raise ReplicationPublishError(f"Failed to publish property {record.id} v{record.version}: {e}") from e
        return event

    def reserve(self) -> asyncio.Future:
        """Take the next place in the publish order."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="replication-publisher")
        slot = asyncio.get_running_loop().create_future()
        self._slots.put_nowait(slot)
        return slot

    async def _drain(self):
        while True:
            slot = await self._slots.get()
            try:
                record = await slot
                if record is None:
                    continue
                await self.publish(record)
            except Exception as e:
                logger.warning("Kafka publish failed (update already committed): %s", e)
            finally:
                self._slots.task_done()

    async def wait_until_idle(self):
        """Wait until every reserved slot has been published or dropped."""
        await self._slots.join()

    async def close(self):
        await self.wait_until_idle()
        if self._worker:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
