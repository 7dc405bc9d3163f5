"""
Contracts between the replicated write path and its collaborators.

The coordinator, publisher and consumer only talk to these protocols. The
Postgres and Kafka classes satisfy them in production; the test suite swaps in
in-memory versions.
"""
from typing import AsyncContextManager, Optional, Protocol

from property_listing.models import PropertyRecord, ReplicationEvent


class RecordTransaction(Protocol):
    async def fetch_idempotency_record(self, request_id: str) -> Optional[dict]:
        ...

    async def insert_idempotency_record(self, request_id: str, payload: dict) -> bool:
        ...

    async def lock_record_for_update(self, property_id: int) -> Optional[PropertyRecord]:
        ...

    async def update_record(self, property_id: int, price: float, version: int, region_origin: str) -> PropertyRecord:
        ...


class RecordStore(Protocol):
    def transaction(self) -> AsyncContextManager[RecordTransaction]:
        ...

    async def get_record(self, property_id: int) -> Optional[PropertyRecord]:
        ...

    async def upsert_by_key(self, record: PropertyRecord) -> PropertyRecord:
        ...


class EventLog(Protocol):
    """Producer side of the replication channel."""

    async def append(self, event: ReplicationEvent):
        ...

    def close(self):
        ...


class EventSubscription(Protocol):
    """Consumer side of the replication channel, delivering raw payloads in log order."""

    async def receive(self) -> bytes:
        ...

    def close(self):
        ...
