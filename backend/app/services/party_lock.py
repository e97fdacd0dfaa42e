"""
Per-(user, party) advisory locks.

Every mutation of a party's entries runs its write and the following
balance replay while holding the party lock, so two replays for the same
party can no longer interleave.

Two layers:
- an asyncio.Lock per key serialises coroutines inside one worker
- a Redis lock (SET NX EX + compare-and-delete release) serialises workers

If Redis cannot be reached the lock degrades to the process-local layer and
logs a warning; ledger writes are not blocked by a cache outage.

While a Redis lock is held its TTL is re-armed every ttl/3 seconds, so a
long settlement keeps the lock; the TTL only runs out for a worker that
died without releasing it.

Usage:

    async with party_locks.hold(user_id, "Raj"):
        ...  # write, recalculate, commit

    # Moving an entry between parties locks both, in sorted key order
    async with party_locks.hold(user_id, "Raj", "Sita"):
        ...
"""

import asyncio
import logging
import time
import uuid
import weakref
from contextlib import asynccontextmanager, suppress
from typing import List, Optional, Tuple

from redis.exceptions import RedisError

from backend.app.core.config import settings
from backend.app.core.exceptions import LockAcquisitionError
from backend.app.core.redis_client import get_redis_client

logger = logging.getLogger(__name__)


class PartyLockManager:

    # Lua script for atomic check-and-delete (release)
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    # Lua script for atomic check-and-extend
    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    def __init__(self, ttl: int = 30, timeout: float = 10.0, retry_interval: float = 0.05):
        """
        Args:
            ttl: Redis lock TTL in seconds (auto-release after a crashed worker)
            timeout: Max seconds to wait for all requested locks
            retry_interval: Sleep between Redis acquisition attempts
        """
        self.ttl = ttl
        self.timeout = timeout
        self.retry_interval = retry_interval
        self._local: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @staticmethod
    def key(user_id: int, party_name: str) -> str:
        return f"lock:party:{user_id}:{' '.join(party_name.split()).casefold()}"

    def _local_lock(self, key: str) -> asyncio.Lock:
        lock = self._local.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._local[key] = lock
        return lock

    def is_locked(self, user_id: int, party_name: str) -> bool:
        lock = self._local.get(self.key(user_id, party_name))
        return bool(lock and lock.locked())

    async def _acquire_local(self, key: str, deadline: float) -> asyncio.Lock:
        lock = self._local_lock(key)
        remaining = max(deadline - time.monotonic(), 0)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=remaining)
        except asyncio.TimeoutError:
            raise LockAcquisitionError(key, self.timeout) from None
        return lock

    async def _acquire_remote(self, key: str, deadline: float) -> Optional[str]:
        """Returns the owner token, or None when Redis is unavailable."""
        token = uuid.uuid4().hex
        client = get_redis_client()
        while True:
            try:
                if await client.set(key, token, nx=True, ex=self.ttl):
                    return token
            except (RedisError, OSError) as exc:
                logger.warning("Redis unavailable for %s, using process-local lock only: %s", key, exc)
                return None
            if time.monotonic() >= deadline:
                raise LockAcquisitionError(key, self.timeout)
            await asyncio.sleep(self.retry_interval)

    async def _release_remote(self, key: str, token: str) -> None:
        try:
            await get_redis_client().eval(self.RELEASE_SCRIPT, 1, key, token)
        except (RedisError, OSError) as exc:
            logger.warning("Could not release %s, it expires in %ss: %s", key, self.ttl, exc)

    async def _keep_alive(self, held: Tuple[Tuple[str, str], ...]) -> None:
        """Re-arm the TTL of the held Redis locks until cancelled."""
        interval = self.ttl / 3
        while True:
            await asyncio.sleep(interval)
            for key, token in held:
                try:
                    extended = await get_redis_client().eval(self.EXTEND_SCRIPT, 1, key, token, self.ttl)
                except (RedisError, OSError) as exc:
                    logger.warning("Could not extend %s: %s", key, exc)
                    continue
                if not extended:
                    logger.error("Lock %s expired while held, another worker may hold it now", key)

    @asynccontextmanager
    async def hold(self, user_id: int, *party_names: str):
        """
        Hold the locks of one or more parties of a user.

        Raises:
            LockAcquisitionError: a lock was not acquired within `timeout`
        """
        keys = sorted({self.key(user_id, name) for name in party_names if name})
        deadline = time.monotonic() + self.timeout
        local_held: List[asyncio.Lock] = []
        remote_held: List[Tuple[str, str]] = []
        keep_alive: Optional[asyncio.Task] = None
        try:
            for key in keys:
                local_held.append(await self._acquire_local(key, deadline))
                token = await self._acquire_remote(key, deadline)
                if token is not None:
                    remote_held.append((key, token))
            if remote_held:
                keep_alive = asyncio.create_task(self._keep_alive(tuple(remote_held)))
            yield keys
        finally:
            if keep_alive is not None:
                keep_alive.cancel()
                with suppress(asyncio.CancelledError):
                    await keep_alive
            for key, token in reversed(remote_held):
                await self._release_remote(key, token)
            for lock in reversed(local_held):
                lock.release()


party_locks = PartyLockManager(ttl=settings.party_lock_ttl, timeout=settings.party_lock_timeout)
