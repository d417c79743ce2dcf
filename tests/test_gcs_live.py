"""Tests against a real GCS bucket, named by the BUCKET environment variable.
"""
import asyncio
import os
from datetime import datetime, timedelta
from random import choice
from string import ascii_letters

import pytest

import gmutex


pytestmark = pytest.mark.skipif('BUCKET' not in os.environ, reason='BUCKET is not set')


@pytest.fixture
def bucket() -> str:
    return os.environ['BUCKET']


@pytest.fixture
def random_name() -> str:
    return ''.join(choice(ascii_letters) for _ in range(20))


@pytest.fixture
async def lock(random_name: str, bucket: str):
    m = gmutex.GCS(
        bucket=bucket,
        name=random_name,
    )
    async with m:
        yield m


async def test_lock_unlock(lock: gmutex.GCS):
    await lock.acquire()
    await lock.release()


async def test_lock_unlock__subdirectory(lock: gmutex.GCS):
    lock.name += '/subpath.bin'
    await lock.acquire()
    await lock.release()


async def test_acquired_check(lock: gmutex.GCS):
    assert await lock.acquired() is False
    await lock.acquire()
    assert await lock.acquired() is True
    await lock.release()
    assert await lock.acquired() is False


async def test_cannot_lock_twice(lock: gmutex.GCS):
    await lock.acquire()
    with pytest.raises(gmutex.LockTimeoutError):
        await gmutex.lock_with_timeout(lock, 1)
    await lock.release()


async def test_can_unlock_twice(lock: gmutex.GCS):
    await lock.acquire()
    await lock.release()
    await gmutex.unlock_with_timeout(lock, 5)


async def test_lock_expired(lock: gmutex.GCS):
    now = datetime(2010, 11, 12, 13, 14, 15)
    lock.ttl = timedelta(seconds=60)
    lock.now = lambda: now  # type: ignore
    await lock.acquire()
    lock.now = lambda: now + timedelta(seconds=61)  # type: ignore
    await gmutex.lock_with_timeout(lock, 5)
    await lock.release()


async def test_parallel(random_name: str, bucket: str):
    holder = None

    async def locker(i: int) -> None:
        nonlocal holder
        async with gmutex.GCS(bucket=bucket, name=random_name) as m:
            async with m.hold(timeout=60):
                assert holder is None, f'{i} trying to lock, but already held by {holder}'
                holder = i
                await asyncio.sleep(.005)
                holder = None

    await asyncio.gather(*(locker(i) for i in range(5)))
