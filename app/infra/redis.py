"""
Redis Connection Management

Redis connection with graceful degradation, plus the per-sender lock used to
serialize chat turns coming from the same phone number.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError, RedisError, LockError

from app.config import settings

# Logger
logger = logging.getLogger(__name__)

# App prefix for namespacing (allows multiple apps/versions on same Redis)
APP_PREFIX = "barberia:v1:"


class SenderLockTimeout(Exception):
    """Raised when a per-sender lock cannot be acquired in time."""
    pass


class RedisClient:
    """
    Manages Redis connection as a singleton.

    Features:
    - Connection pooling
    - Automatic retries
    - Timeouts
    - Graceful failure handling (returns None instead of raising)
    """

    _client: Optional[Redis] = None
    _connected: bool = False

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get or create Redis client.

        Returns:
            Redis client or None if connection fails
        """
        if cls._client is not None and cls._connected:
            return cls._client

        if not settings.redis_url:
            return None

        try:
            # Retry configuration: 3 retries with exponential backoff
            retry = Retry(ExponentialBackoff(), retries=3)

            cls._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5.0,
                socket_timeout=5.0,
                retry_on_timeout=True,
                retry=retry,
            )

            # Test connection
            await cls._client.ping()
            cls._connected = True
            logger.info("Redis connection established successfully")
            return cls._client

        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            cls._connected = False
            cls._client = None
            return None

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._client is not None:
            try:
                await cls._client.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                cls._client = None
                cls._connected = False

    @classmethod
    def is_connected(cls) -> bool:
        """Check if Redis is connected."""
        return cls._connected


async def get_redis() -> Optional[Redis]:
    """
    Get the shared Redis client.

    Returns None if Redis is unavailable.
    """
    return await RedisClient.get_client()


# In-process locks used when Redis is unavailable. Entries disappear once
# no coroutine holds or waits on them.
_local_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
    weakref.WeakValueDictionary()
)


class SenderLockManager:
    """
    Per-phone mutual exclusion for chat turns.

    Key pattern: barberia:v1:lock:sender:{phone}

    Uses a Redis lock when a client is available so every worker process
    agrees on ownership. Falls back to an in-process asyncio.Lock, which
    only protects a single worker.
    """

    LOCK_PREFIX = f"{APP_PREFIX}lock:sender:"

    def __init__(self, redis_client: Optional[Redis], timeout: float = 30.0):
        self.redis = redis_client
        self.timeout = timeout

    def _key(self, phone: str) -> str:
        return f"{self.LOCK_PREFIX}{phone}"

    @asynccontextmanager
    async def hold(self, phone: str) -> AsyncIterator[None]:
        """
        Hold the lock for ``phone`` for the duration of the block.

        Falls back to the in-process lock when Redis fails while acquiring.

        Raises:
            SenderLockTimeout: If the lock is not acquired within ``timeout``
        """
        if self.redis is None:
            async with self._local_hold(phone):
                yield
            return

        lock = self.redis.lock(
            self._key(phone),
            timeout=self.timeout,
            blocking_timeout=self.timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.warning(f"Redis lock unavailable for {phone}, using local lock: {e}")
            async with self._local_hold(phone):
                yield
            return

        if not acquired:
            raise SenderLockTimeout(f"Could not lock sender {phone}")

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lock expired while the turn was still running
                logger.warning(f"Sender lock for {phone} released late: {e}")
            except RedisError as e:
                logger.warning(f"Could not release sender lock for {phone}: {e}")

    @asynccontextmanager
    async def _local_hold(self, phone: str) -> AsyncIterator[None]:
        lock = _local_locks.get(phone)
        if lock is None:
            lock = asyncio.Lock()
            _local_locks[phone] = lock

        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise SenderLockTimeout(f"Could not lock sender {phone}") from None

        try:
            yield
        finally:
            lock.release()


@asynccontextmanager
async def sender_lock(phone: str) -> AsyncIterator[None]:
    """
    Serialize processing for one sender.

    Usage:
        async with sender_lock("573001112233"):
            ...
    """
    client = await get_redis()
    manager = SenderLockManager(client, timeout=settings.sender_lock_timeout_seconds)
    async with manager.hold(phone):
        yield


async def check_redis_health() -> bool:
    """
    Check Redis connectivity for health checks.

    Returns:
        True if Redis is accessible and responding, False otherwise
    """
    try:
        client = await get_redis()
        if client is None:
            return False

        await client.ping()
        return True

    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False
