import logging
import contextlib
import uvicorn
from fastapi import FastAPI

from property_listing.bootstrap import connect_with_retry
from property_listing.config import LOG_LEVEL, PORT, REGION
from property_listing.coordinator import WriteCoordinator
from property_listing.database import PostgresRecordStore, get_pool, close_pool
from property_listing.errors import register_exception_handlers
from property_listing.kafka_consumer import KafkaEventSubscription, ReplicationConsumer
from property_listing.kafka_producer import KafkaEventLog, ReplicationPublisher
from property_listing.lag import ReplicationLagMonitor
from property_listing.routes.health import router as health_router
from property_listing.routes.properties import router as properties_router
from property_listing.routes.replication_lag import router as lag_router

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    # ── Startup ──────────────────────────────────────────────────────
    logger.info("Starting backend – region=%s", REGION)
    pool = await connect_with_retry(get_pool, "PostgreSQL")
    store = PostgresRecordStore(pool)
    await store.init_schema()

    event_log = await connect_with_retry(KafkaEventLog, "Kafka producer")
    subscription = await connect_with_retry(KafkaEventSubscription, "Kafka consumer")

    lag_monitor = ReplicationLagMonitor()
    publisher = ReplicationPublisher(event_log)
    coordinator = WriteCoordinator(REGION, store, publisher)
    consumer = ReplicationConsumer(REGION, store, lag_monitor, subscription)
    consumer.start()

    app.state.store = store
    app.state.lag_monitor = lag_monitor
    app.state.coordinator = coordinator
    app.state.consumer = consumer
    yield
    # ── Shutdown ─────────────────────────────────────────────────────
    await consumer.stop()
    await publisher.close()
    event_log.close()
    await close_pool()


def build_app(lifespan=None) -> FastAPI:
    app = FastAPI(title=f"Property Listing API ({REGION.upper()})", lifespan=lifespan)
    register_exception_handlers(app)

    # Mount routes WITHOUT a prefix – NGINX strips the region prefix from the path
    app.include_router(health_router)
    app.include_router(properties_router)
    app.include_router(lag_router)
    return app


app = build_app(lifespan)


def run():
    uvicorn.run("property_listing.main:app", host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    run()
