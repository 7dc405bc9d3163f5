import logging
from typing import Optional

from property_listing.errors import MissingIdempotencyKey, PropertyNotFound, VersionConflict, DuplicateRequest
from property_listing.idempotency import IdempotencyGuard
from property_listing.kafka_producer import ReplicationPublisher
from property_listing.models import PropertyRecord
from property_listing.protocols import RecordStore

logger = logging.getLogger(__name__)


class WriteCoordinator:
    """Runs local property writes and hands committed results to replication.

    Writers racing on the same record serialize on its row lock; whoever gets
    the lock first with a matching version wins, the other sees VersionConflict.
    """

    def __init__(
        self,
        region: str,
        store: RecordStore,
        publisher: ReplicationPublisher,
        guard: Optional[IdempotencyGuard] = None,
    ):
        self.region = region
        self._store = store
        self._publisher = publisher
        self._guard = guard or IdempotencyGuard()

    async def submit_update(
        self,
        property_id: int,
        new_price: float,
        expected_version: int,
        request_id: Optional[str],
    ) -> PropertyRecord:
        if not request_id:
            raise MissingIdempotencyKey()

        slot = None
        try:
            # ── Transaction: rolled back on any exception raised inside ──
            async with self._store.transaction() as tx:
                if await self._guard.check(tx, request_id):
                    raise DuplicateRequest(request_id)

                current = await tx.lock_record_for_update(property_id)
                if current is None:
                    raise PropertyNotFound(property_id)

                if current.version != expected_version:
                    # A twin request may have committed while we waited on the lock
                    if await self._guard.check(tx, request_id):
                        raise DuplicateRequest(request_id)
                    raise VersionConflict(current.version, expected_version)

                updated = await tx.update_record(
                    property_id,
                    price=new_price,
                    version=expected_version + 1,
                    region_origin=self.region,
                )
                await self._guard.record(tx, request_id, updated)

                # Reserved under the row lock: same-record events keep commit order
                slot = self._publisher.reserve()
        except BaseException:
            if slot is not None:
                slot.set_result(None)
            raise

        logger.info("Property %s updated to v%d (request %s)", property_id, updated.version, request_id)

        # ── Published by the publisher's worker, without blocking the caller ─
        slot.set_result(updated)
        return updated

    async def wait_for_publishes(self):
        """Wait for every publish scheduled so far to finish."""
        await self._publisher.wait_until_idle()
