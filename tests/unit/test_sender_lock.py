"""Tests for the per-sender lock."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError, LockError

from app.infra.redis import SenderLockManager, SenderLockTimeout


class TestLocalFallback:
    """Test the in-process lock used without Redis."""

    @pytest.mark.asyncio
    async def test_same_phone_is_serialized(self):
        manager = SenderLockManager(None, timeout=1.0)
        events = []

        async def turn(name):
            async with manager.hold("573001112233"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(turn("a"), turn("b"))

        assert events in (
            ["a-start", "a-end", "b-start", "b-end"],
            ["b-start", "b-end", "a-start", "a-end"],
        )

    @pytest.mark.asyncio
    async def test_different_phones_do_not_block(self):
        manager = SenderLockManager(None, timeout=0.5)

        async with manager.hold("573001112233"):
            async with manager.hold("573004445566"):
                pass

    @pytest.mark.asyncio
    async def test_timeout(self):
        manager = SenderLockManager(None, timeout=0.05)

        async with manager.hold("573001112233"):
            with pytest.raises(SenderLockTimeout):
                async with manager.hold("573001112233"):
                    pass


class TestRedisLock:
    """Test the Redis-backed lock."""

    def make_redis(self, acquired=True):
        lock = MagicMock()
        lock.acquire = AsyncMock(return_value=acquired)
        lock.release = AsyncMock()
        client = MagicMock()
        client.lock.return_value = lock
        return client, lock

    @pytest.mark.asyncio
    async def test_acquires_and_releases(self):
        client, lock = self.make_redis()
        manager = SenderLockManager(client, timeout=30.0)

        async with manager.hold("573001112233"):
            lock.release.assert_not_awaited()

        client.lock.assert_called_once_with(
            "barberia:v1:lock:sender:573001112233", timeout=30.0, blocking_timeout=30.0
        )
        lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_not_acquired(self):
        client, lock = self.make_redis(acquired=False)
        manager = SenderLockManager(client, timeout=1.0)

        with pytest.raises(SenderLockTimeout):
            async with manager.hold("573001112233"):
                pass

        lock.release.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_lock_release_is_tolerated(self):
        client, lock = self.make_redis()
        lock.release.side_effect = LockError("expired")
        manager = SenderLockManager(client, timeout=1.0)

        async with manager.hold("573001112233"):
            pass

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        client, lock = self.make_redis()
        manager = SenderLockManager(client, timeout=1.0)

        with pytest.raises(RuntimeError):
            async with manager.hold("573001112233"):
                raise RuntimeError("boom")

        lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_redis_failure_on_acquire_uses_local_lock(self):
        client, lock = self.make_redis()
        lock.acquire.side_effect = ConnectionError("redis went away")
        manager = SenderLockManager(client, timeout=1.0)
        ran = []

        async with manager.hold("573001112233"):
            ran.append(True)

        assert ran == [True]
        lock.release.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_failure_on_release_is_tolerated(self):
        client, lock = self.make_redis()
        lock.release.side_effect = ConnectionError("redis went away")
        manager = SenderLockManager(client, timeout=1.0)

        async with manager.hold("573001112233"):
            pass

        lock.release.assert_awaited_once()
