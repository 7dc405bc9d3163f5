import asyncio
import collections
import contextlib
import logging
import threading
from typing import List, Optional
from kafka import KafkaConsumer

from property_listing.config import KAFKA_BROKER, KAFKA_GROUP_ID, KAFKA_POLL_TIMEOUT_MS, KAFKA_TOPIC
from property_listing.lag import ReplicationLagMonitor
from property_listing.models import ReplicationEvent
from property_listing.protocols import EventSubscription, RecordStore

logger = logging.getLogger(__name__)


class KafkaEventSubscription:
    """Reads the replication topic in order, one raw payload at a time.

    A new consumer group starts from the earliest retained offset; after that
    Kafka tracks the group's position. Offsets auto-commit on the next poll,
    which only happens once the previous batch has been handed out.
    """

    def __init__(
        self,
        broker: str = KAFKA_BROKER,
        topic: str = KAFKA_TOPIC,
        group_id: str = KAFKA_GROUP_ID,
        poll_timeout_ms: int = KAFKA_POLL_TIMEOUT_MS,
    ):
        self._poll_timeout_ms = poll_timeout_ms
        self._pending = collections.deque()
        self._lock = threading.Lock()
        self._consumer = KafkaConsumer(
            topic,
            bootstrap_servers=[broker],
            group_id=group_id,
            auto_offset_reset="earliest",
            enable_auto_commit=True,
        )
        logger.info("Kafka consumer connected (topic=%s, group=%s)", topic, group_id)

    def _poll(self) -> List[bytes]:
        with self._lock:
            batches = self._consumer.poll(timeout_ms=self._poll_timeout_ms)
        return [msg.value for records in batches.values() for msg in records]

    async def receive(self) -> bytes:
        while not self._pending:
            self._pending.extend(await asyncio.to_thread(self._poll))
        return self._pending.popleft()

    def close(self):
        with self._lock:
            # Uncommitted, unhandled events are redelivered after restart
            self._consumer.close(autocommit=False)


class ReplicationConsumer:
    """Applies other regions' writes to the local store, one event at a time."""

    def __init__(
        self,
        region: str,
        store: RecordStore,
        lag_monitor: ReplicationLagMonitor,
        subscription: EventSubscription,
    ):
        self.region = region
        self._store = store
        self._lag_monitor = lag_monitor
        self._subscription = subscription
        self._task: Optional[asyncio.Task] = None

    async def handle(self, payload: bytes) -> bool:
        """Apply one replication event. Returns False if it was skipped as our own write.

        The stored row is overwritten unconditionally: whichever event arrives
        last wins, even if it carries a lower version.
        """
        event = ReplicationEvent.decode(payload)

        if event.region_origin == self.region:
            return False

        logger.info("Replicating property %s v%d from region %s", event.id, event.version, event.region_origin)
        await self._store.upsert_by_key(event.to_record())
        self._lag_monitor.record_applied(event.updated_at)
        return True

    async def run(self):
        logger.info("Replication consumer running (region=%s)", self.region)
        while True:
            payload = await self._subscription.receive()
            try:
                await self.handle(payload)
            except Exception:
                # Poison events are logged and skipped
                logger.exception("Error applying replicated update, skipping event: %.200r", payload)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run(), name=f"replication-consumer-{self.region}")
        self._task.add_done_callback(self._on_done)
        return self._task

    def _on_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Replication consumer stopped – replication disabled", exc_info=exc)

    async def stop(self):
        if self._task:
            self._task.cancel()
            # A crash was already logged by _on_done
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await self._task
            self._task = None
        await asyncio.to_thread(self._subscription.close)
        logger.info("Replication consumer stopped (region=%s)", self.region)
