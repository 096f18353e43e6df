import asyncio

import pytest

from app.core.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLock()
    order = []

    async def worker(name):
        async with locks.acquire("goal", 1):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


@pytest.mark.asyncio
async def test_different_keys_do_not_block():
    locks = KeyedLock()
    async with locks.acquire("goal", 1):
        await asyncio.wait_for(_enter(locks, "goal", 2), timeout=1)


async def _enter(locks, kind, entity_id):
    async with locks.acquire(kind, entity_id):
        return True


@pytest.mark.asyncio
async def test_opposite_order_acquisition_does_not_deadlock():
    locks = KeyedLock()

    async def transfer(a, b):
        async with locks.acquire_many([("goal", a), ("goal", b)]):
            await asyncio.sleep(0.01)

    await asyncio.wait_for(asyncio.gather(transfer("x", "y"), transfer("y", "x")), timeout=2)


@pytest.mark.asyncio
async def test_idle_locks_are_dropped():
    locks = KeyedLock()
    async with locks.acquire("goal", 1):
        assert locks.locked("goal", 1)
        assert len(locks) == 1
    assert not locks.locked("goal", 1)
    assert len(locks) == 0
