"""In-memory stand-ins for Postgres and Kafka, shared by the unit tests."""
import asyncio
import contextlib
from collections import defaultdict
from datetime import datetime, timezone

import pytest
from pytest_asyncio import fixture

from property_listing.coordinator import WriteCoordinator
from property_listing.kafka_consumer import ReplicationConsumer
from property_listing.kafka_producer import ReplicationPublisher
from property_listing.lag import ReplicationLagMonitor
from property_listing.models import PropertyRecord


class InMemoryTransaction:
    """Mirrors READ COMMITTED: reads see committed data plus this transaction's own writes."""

    def __init__(self, store):
        self._store = store
        self._held = []
        self.staged_records = {}
        self.staged_ledger = {}

    async def _acquire(self, lock):
        if lock not in self._held:
            await lock.acquire()
            self._held.append(lock)

    async def fetch_idempotency_record(self, request_id):
        await asyncio.sleep(0)
        if request_id in self.staged_ledger:
            return self.staged_ledger[request_id]
        return self._store.ledger.get(request_id)

    async def insert_idempotency_record(self, request_id, payload):
        # Postgres blocks a second insert of an uncommitted key until the first finishes
        await self._acquire(self._store.key_locks[request_id])
        if request_id in self._store.ledger or request_id in self.staged_ledger:
            return False
        self.staged_ledger[request_id] = payload
        return True

    async def lock_record_for_update(self, property_id):
        await self._acquire(self._store.row_locks[property_id])
        await asyncio.sleep(0)
        return self.staged_records.get(property_id) or self._store.records.get(property_id)

    async def update_record(self, property_id, price, version, region_origin):
        if self._store.fail_updates:
            raise ConnectionError("database connection lost")
        current = self.staged_records.get(property_id) or self._store.records[property_id]
        updated = current.model_copy(
            update={
                "price": price,
                "version": version,
                "region_origin": region_origin,
                "updated_at": datetime.now(timezone.utc),
            }
        )
        self.staged_records[property_id] = updated
        return updated

    def commit(self):
        self._store.records.update(self.staged_records)
        self._store.ledger.update(self.staged_ledger)
        self._store.commits += 1

    def release(self):
        for lock in reversed(self._held):
            lock.release()
        self._held.clear()


class InMemoryRecordStore:
    def __init__(self, records=()):
        self.records = {r.id: r for r in records}
        self.ledger = {}
        self.row_locks = defaultdict(asyncio.Lock)
        self.key_locks = defaultdict(asyncio.Lock)
        self.fail_updates = False
        self.fail_upserts = False
        self.fail_commits = False
        self.commits = 0
        self.rollbacks = 0

    @contextlib.asynccontextmanager
    async def transaction(self):
        tx = InMemoryTransaction(self)
        try:
            yield tx
        except BaseException:
            self.rollbacks += 1
            raise
        else:
            if self.fail_commits:
                self.rollbacks += 1
                raise ConnectionError("commit failed")
            tx.commit()
        finally:
            tx.release()

    async def get_record(self, property_id):
        return self.records.get(property_id)

    async def upsert_by_key(self, record):
        await asyncio.sleep(0)
        if self.fail_upserts:
            raise ConnectionError("database connection lost")
        self.records[record.id] = record
        return record


class InMemoryReplicationLog:
    """A single ordered topic; every subscription keeps its own read position."""

    def __init__(self):
        self.messages = []
        self.fail_appends = False
        self.closed = False
        # Optional per-event send latency, in seconds
        self.latency = lambda event: 0

    async def append(self, event):
        await asyncio.sleep(self.latency(event))
        if self.fail_appends:
            raise ConnectionError("broker unavailable")
        self.messages.append(event.encode())

    def subscribe(self):
        return InMemorySubscription(self)

    def close(self):
        self.closed = True


class InMemorySubscription:
    def __init__(self, log):
        self._log = log
        self.position = 0
        self.waiting = False
        self.closed = False

    async def receive(self):
        while self.position >= len(self._log.messages):
            self.waiting = True
            await asyncio.sleep(0.005)
        self.waiting = False
        payload = self._log.messages[self.position]
        self.position += 1
        return payload

    async def wait_until_drained(self, timeout=2.0):
        """Return once every appended message has been received and handled."""
        async def _drained():
            while not (self.waiting and self.position >= len(self._log.messages)):
                await asyncio.sleep(0.005)
        await asyncio.wait_for(_drained(), timeout)

    def close(self):
        self.closed = True


def make_record(id=1, price=150000.0, version=1, region_origin="us", updated_at=None, **extra):
    return PropertyRecord(
        id=id,
        price=price,
        version=version,
        region_origin=region_origin,
        updated_at=updated_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
        **extra,
    )


@pytest.fixture
def record_factory():
    return make_record


@fixture
async def replication_log():
    return InMemoryReplicationLog()


@fixture
async def us_store():
    return InMemoryRecordStore([make_record(id=i, price=100000.0 * i, region_origin="us") for i in range(1, 6)])


@fixture
async def eu_store():
    return InMemoryRecordStore()


@fixture
async def coordinator(us_store, replication_log):
    publisher = ReplicationPublisher(replication_log)
    yield WriteCoordinator("us", us_store, publisher)
    await publisher.close()


@fixture
async def lag_monitor():
    return ReplicationLagMonitor()


@fixture
async def eu_subscription(replication_log):
    return replication_log.subscribe()


@fixture
async def eu_consumer(eu_store, lag_monitor, eu_subscription):
    consumer = ReplicationConsumer("eu", eu_store, lag_monitor, eu_subscription)
    yield consumer
    await consumer.stop()
