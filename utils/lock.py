import asyncio
import logging
import time
from contextlib import asynccontextmanager

from redis.asyncio import Redis
from redis.exceptions import LockNotOwnedError

scheduler_lock_key = "iptv_engine_scheduler_lock"
heartbeat_key = "iptv_engine_scheduler_heartbeat"
heartbeat_timeout = 300  # 5 minutes


class ReadWriteLock:
    """
    Reader-preferring lock for asyncio.

    Any number of readers may hold the lock together; a writer waits until no
    reader is active.
    """

    def __init__(self):
        self._readers = 0
        self._readers_lock = asyncio.Lock()
        self._writer_lock = asyncio.Lock()

    @asynccontextmanager
    async def read(self):
        async with self._readers_lock:
            self._readers += 1
            if self._readers == 1:
                await self._writer_lock.acquire()
        try:
            yield
        finally:
            async with self._readers_lock:
                self._readers -= 1
                if self._readers == 0:
                    self._writer_lock.release()

    @asynccontextmanager
    async def write(self):
        async with self._writer_lock:
            yield


async def acquire_scheduler_lock(client: Redis):
    current_time = int(time.time())
    # Check if another engine owns the scheduler
    last_heartbeat = await client.get(heartbeat_key)
    if last_heartbeat and (current_time - int(last_heartbeat) <= heartbeat_timeout):
        logging.info("Scheduler is still active in another process, not acquiring lock")
        return False, None

    acquired, lock = await acquire_redis_lock(
        client, scheduler_lock_key, timeout=heartbeat_timeout, block=False
    )
    if acquired:
        logging.info("Acquired scheduler lock")
        await client.set(heartbeat_key, current_time)
        return True, lock
    logging.info("Failed to acquire scheduler lock")
    return False, None


async def release_scheduler_lock(client: Redis, lock):
    logging.info("Releasing scheduler lock")
    await release_redis_lock(lock)
    await client.delete(heartbeat_key)


async def maintain_heartbeat(client: Redis, lock):
    while True:
        await asyncio.sleep(heartbeat_timeout // 2)
        await client.set(heartbeat_key, int(time.time()))
        await lock.extend(heartbeat_timeout, replace_ttl=True)


async def acquire_redis_lock(client: Redis, key: str, timeout: int = 60, block: bool = False):
    lock = client.lock(key, timeout=timeout)
    acquired = await lock.acquire(blocking=block)
    return acquired, lock


async def release_redis_lock(lock):
    try:
        await lock.release()
    except LockNotOwnedError:
        logging.error("Failed to release lock, lock not owned")
