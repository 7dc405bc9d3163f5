import pytest

from property_listing.bootstrap import connect_with_retry


@pytest.mark.asyncio
async def test_returns_first_successful_connection():
    calls = []

    def connect():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("not ready")
        return "connected"

    result = await connect_with_retry(connect, "broker", attempts=5, delay=0)

    assert result == "connected"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_accepts_coroutine_functions():
    async def connect():
        return "pool"

    assert await connect_with_retry(connect, "database", attempts=1, delay=0) == "pool"


@pytest.mark.asyncio
async def test_gives_up_after_bounded_attempts():
    calls = []

    async def connect():
        calls.append(1)
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await connect_with_retry(connect, "database", attempts=4, delay=0)

    assert len(calls) == 4
