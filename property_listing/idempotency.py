import logging

from property_listing.errors import DuplicateRequest
from property_listing.models import PropertyRecord
from property_listing.protocols import RecordTransaction

logger = logging.getLogger(__name__)


class IdempotencyGuard:
    """Ledger of processed ``X-Request-ID`` values.

    Both calls run inside the caller's transaction. Uniqueness comes from the
    ledger's primary key, so no locking happens here. Entries are kept forever.
    """

    async def check(self, tx: RecordTransaction, request_id: str) -> bool:
        return await tx.fetch_idempotency_record(request_id) is not None

    async def record(self, tx: RecordTransaction, request_id: str, response: PropertyRecord):
        inserted = await tx.insert_idempotency_record(request_id, response.to_payload())
        if not inserted:
            # Lost the race against a concurrent request carrying the same id
            logger.info("Concurrent duplicate detected for request %s", request_id)
            raise DuplicateRequest(request_id)
