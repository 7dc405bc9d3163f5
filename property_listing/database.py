import contextlib
import json
import logging
from decimal import Decimal
from typing import AsyncIterator, Optional

import asyncpg

from property_listing.config import DATABASE_URL, DB_POOL_MIN_SIZE, DB_POOL_MAX_SIZE
from property_listing.models import PropertyRecord

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS properties (
    id            BIGINT PRIMARY KEY,
    price         NUMERIC(14, 2) NOT NULL,
    bedrooms      INTEGER,
    bathrooms     INTEGER,
    region_origin VARCHAR(16) NOT NULL,
    version       INTEGER NOT NULL DEFAULT 1,
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS idempotency_store (
    request_id    TEXT PRIMARY KEY,
    response_body JSONB NOT NULL,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_RECORD_COLUMNS = "id, price, bedrooms, bathrooms, region_origin, version, updated_at"

_pool = None


async def get_pool():
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(DATABASE_URL, min_size=DB_POOL_MIN_SIZE, max_size=DB_POOL_MAX_SIZE)
    return _pool


async def close_pool():
    global _pool
    if _pool:
        await _pool.close()
        _pool = None


class PostgresTransaction:
    """Operations available while a store transaction is open.

    Every method runs on the connection that owns the transaction, so row
    locks taken here are released only on commit or rollback.
    """

    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn

    async def fetch_idempotency_record(self, request_id: str) -> Optional[dict]:
        row = await self._conn.fetchrow(
            "SELECT response_body FROM idempotency_store WHERE request_id = $1",
            request_id,
        )
        if row is None:
            return None
        return json.loads(row["response_body"])

    async def insert_idempotency_record(self, request_id: str, payload: dict) -> bool:
        """Insert the ledger row; returns False if ``request_id`` already exists.

        A concurrent transaction inserting the same key blocks this one until
        it finishes, so the loser always observes the conflict.
        """
        row = await self._conn.fetchrow(
            "INSERT INTO idempotency_store (request_id, response_body) VALUES ($1, $2::jsonb) "
            "ON CONFLICT (request_id) DO NOTHING RETURNING request_id",
            request_id,
            json.dumps(payload),
        )
        return row is not None

    async def lock_record_for_update(self, property_id: int) -> Optional[PropertyRecord]:
        row = await self._conn.fetchrow(
            f"SELECT {_RECORD_COLUMNS} FROM properties WHERE id = $1 FOR UPDATE",
            property_id,
        )
        return PropertyRecord.from_row(row) if row else None

    async def update_record(self, property_id: int, price: float, version: int, region_origin: str) -> PropertyRecord:
        row = await self._conn.fetchrow(
            f"""
            UPDATE properties
            SET price         = $1,
                version       = $2,
                region_origin = $3,
                updated_at    = NOW()
            WHERE id = $4
            RETURNING {_RECORD_COLUMNS}
            """,
            Decimal(str(price)),
            version,
            region_origin,
            property_id,
        )
        return PropertyRecord.from_row(row)


class PostgresRecordStore:
    """Record store adapter over the ``properties`` and ``idempotency_store`` tables."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def init_schema(self):
        async with self._pool.acquire() as conn:
            await conn.execute(SCHEMA)
        logger.info("Database schema ready")

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresTransaction]:
        """Commit when the block exits normally, roll back on any exception."""
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                yield PostgresTransaction(conn)

    async def get_record(self, property_id: int) -> Optional[PropertyRecord]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_RECORD_COLUMNS} FROM properties WHERE id = $1",
                property_id,
            )
        return PropertyRecord.from_row(row) if row else None

    async def upsert_by_key(self, record: PropertyRecord) -> PropertyRecord:
        """Insert the record, or overwrite every column of the existing row."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO properties ({_RECORD_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (id) DO UPDATE SET
                    price         = EXCLUDED.price,
                    bedrooms      = EXCLUDED.bedrooms,
                    bathrooms     = EXCLUDED.bathrooms,
                    region_origin = EXCLUDED.region_origin,
                    version       = EXCLUDED.version,
                    updated_at    = EXCLUDED.updated_at
                RETURNING {_RECORD_COLUMNS}
                """,
                record.id,
                Decimal(str(record.price)),
                record.bedrooms,
                record.bathrooms,
                record.region_origin,
                record.version,
                record.updated_at,
            )
        return PropertyRecord.from_row(row)
