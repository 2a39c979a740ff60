"""
Redis Connection Management

Redis connection with a simple circuit breaker and keyed locks used to
serialise work per patient session and per therapist. Features graceful
degradation: when Redis is unreachable, locks fall back to in-process
asyncio locks.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, LockError, TimeoutError, RedisError

from app.config import settings

# Logger
logger = logging.getLogger(__name__)

# App prefix for namespacing (allows multiple apps/versions on same Redis)
APP_PREFIX = "therapy-intake:v1:"

# Seconds to wait before trying to reconnect after a failure
RECONNECT_COOLDOWN = 30.0


class LockTimeoutError(Exception):
    """Raised when a keyed lock could not be acquired in time."""
    pass


class RedisClient:
    """
    Manages Redis connection as a singleton with circuit breaker pattern.

    Features:
    - Automatic retries
    - Timeouts
    - Cooldown after a failed connection attempt
    """

    _client: Optional[Redis] = None
    _connected: bool = False
    _retry_after: float = 0.0

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get or create Redis client.

        Returns:
            Redis client or None if connection fails
        """
        if cls._client is not None and cls._connected:
            return cls._client

        if time.monotonic() < cls._retry_after:
            return None

        try:
            retry = Retry(ExponentialBackoff(), retries=2)

            cls._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=2.0,
                socket_timeout=2.0,
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
        except Exception as e:
            logger.error(f"Unexpected error connecting to Redis: {e}")

        cls._connected = False
        cls._client = None
        cls._retry_after = time.monotonic() + RECONNECT_COOLDOWN
        return None

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._client is not None:
            try:
                await cls._client.aclose()
                logger.info("Redis connection closed")
            except Exception as e:
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

    Returns None if Redis is unavailable (circuit breaker open).
    """
    return await RedisClient.get_client()


class KeyedLock:
    """
    Mutual exclusion per key (patient identifier, therapist id).

    Uses a Redis lock so that several worker processes agree; falls back to
    an in-process asyncio.Lock per key when Redis is unavailable. A local
    lock lives only while someone holds or waits for it.

    Keys: therapy-intake:v1:lock:{namespace}:{key}
    """

    def __init__(self, namespace: str):
        self._namespace = namespace
        # key -> (lock, holders and waiters)
        self._local_locks: dict[str, tuple[asyncio.Lock, int]] = {}

    def _key(self, key: str) -> str:
        return f"{APP_PREFIX}lock:{self._namespace}:{key}"

    def _checkout(self, key: str) -> asyncio.Lock:
        lock, users = self._local_locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._local_locks[key] = (lock, users + 1)
        return lock

    def _checkin(self, key: str) -> None:
        lock, users = self._local_locks[key]
        if users <= 1:
            del self._local_locks[key]
        else:
            self._local_locks[key] = (lock, users - 1)

    @asynccontextmanager
    async def _hold_local(self, key: str) -> AsyncGenerator[None, None]:
        lock = self._checkout(key)
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=settings.lock_wait_seconds)
            except asyncio.TimeoutError as e:
                raise LockTimeoutError(f"Timed out waiting for {self._key(key)}") from e
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncGenerator[None, None]:
        """
        Hold the lock for key for the duration of the block.

        Raises:
            LockTimeoutError: if the lock is still busy after lock_wait_seconds
        """
        client = await get_redis()

        if client is None:
            async with self._hold_local(key):
                yield
            return

        redis_lock = client.lock(
            self._key(key),
            timeout=settings.lock_timeout_seconds,
            blocking_timeout=settings.lock_wait_seconds,
        )
        acquired = await redis_lock.acquire()
        if not acquired:
            raise LockTimeoutError(f"Timed out waiting for {self._key(key)}")
        try:
            yield
        finally:
            try:
                await redis_lock.release()
            except LockError as e:
                # Lock expired while held; the work already finished
                logger.warning(f"Lock {self._key(key)} expired before release: {e}")


# Shared lock registries
session_locks = KeyedLock("session")
therapist_locks = KeyedLock("therapist")


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

    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return False
