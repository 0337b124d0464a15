import asyncio

import pytest

from app.context import KeyedLocks


@pytest.mark.asyncio
async def test_lock_is_dropped_after_release():
    locks = KeyedLocks()

    async with locks.lock("group-1"):
        assert len(locks) == 1

    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_is_dropped_when_body_raises():
    locks = KeyedLocks()

    with pytest.raises(RuntimeError):
        async with locks.lock("group-1"):
            raise RuntimeError("boom")

    assert len(locks) == 0


@pytest.mark.asyncio
async def test_waiters_share_one_lock_until_the_last_leaves():
    locks = KeyedLocks()
    order = []
    first_inside = asyncio.Event()

    async def first():
        async with locks.lock("group-1"):
            order.append("first-in")
            first_inside.set()
            await asyncio.sleep(0.01)
            order.append("first-out")

    async def second():
        await first_inside.wait()
        async with locks.lock("group-1"):
            order.append("second-in")
            # the first holder has gone but this task still keeps the entry alive
            assert len(locks) == 1

    await asyncio.gather(first(), second())

    assert order == ["first-in", "first-out", "second-in"]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_distinct_keys_do_not_block_each_other():
    locks = KeyedLocks()

    async with locks.lock("group-1"):
        async with locks.lock("group-2"):
            assert len(locks) == 2

    assert len(locks) == 0
