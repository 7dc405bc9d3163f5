import asyncio
import inspect
import logging
from typing import Any, Callable

from property_listing.config import CONNECT_RETRIES, CONNECT_RETRY_DELAY

logger = logging.getLogger(__name__)


async def connect_with_retry(
    connect: Callable[[], Any],
    what: str,
    attempts: int = CONNECT_RETRIES,
    delay: float = CONNECT_RETRY_DELAY,
):
    """Call ``connect`` until it succeeds, up to ``attempts`` times with a fixed delay.

    ``connect`` may be a plain callable (run in a worker thread, as kafka-python
    blocks while bootstrapping) or a coroutine function. The last error is
    re-raised once all attempts are used up.
    """
    for attempt in range(1, attempts + 1):
        try:
            if inspect.iscoroutinefunction(connect):
                return await connect()
            return await asyncio.to_thread(connect)
        except Exception as e:
            if attempt == attempts:
                logger.error("Could not connect to %s after %d attempts: %s", what, attempts, e)
                raise
            logger.warning("%s not ready, retrying (%d/%d)… (%s)", what, attempt, attempts, e)
            await asyncio.sleep(delay)
