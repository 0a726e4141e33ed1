import os
import threading
from contextlib import contextmanager
from typing import Optional
from loguru import logger
import redis
from injector import Module, provider, singleton
from redis.lock import Lock as RedisLock


class LockManager:
    """
    Per-key lock manager supporting both in-memory and Redis-based distributed locking.

    Operations on the same monitor must not overlap; handlers take the
    monitor's lock before talking to the API.

    Environment Variables:
    - LOCK_PROVIDER: "memory" or "redis" (default: memory)
    - REDIS_HOST: Redis host (default: localhost)
    - REDIS_PORT: Redis port (default: 6379)
    - REDIS_DB: Redis database number (default: 0)
    - REDIS_PASSWORD: Redis password (optional)
    - LOCK_TIMEOUT: Lock timeout in seconds (default: 30)
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.provider = os.getenv("LOCK_PROVIDER", "memory").lower()
        self.lock_timeout = int(os.getenv("LOCK_TIMEOUT", "30"))

        self._memory_locks = {}
        self._memory_locks_lock = threading.Lock()

        self._redis_client = redis_client
        if self._redis_client is not None:
            self.provider = "redis"
        elif self.provider == "redis":
            self._init_redis()

        logger.info(f"LockManager initialized with provider: {self.provider}")

    def _init_redis(self):
        """Initialize Redis client."""
        try:
            redis_host = os.getenv("REDIS_HOST", "localhost")
            redis_port = int(os.getenv("REDIS_PORT", "6379"))
            redis_db = int(os.getenv("REDIS_DB", "0"))
            redis_password = os.getenv("REDIS_PASSWORD")

            self._redis_client = redis.Redis(
                host=redis_host,
                port=redis_port,
                db=redis_db,
                password=redis_password if redis_password else None,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )

            self._redis_client.ping()
            logger.info(f"Redis connection established: {redis_host}:{redis_port}")
        except redis.RedisError as e:
            logger.error(f"Failed to initialize Redis client: {e}")
            logger.warning("Falling back to in-memory locking")
            self.provider = "memory"
            self._redis_client = None

    def _get_memory_lock(self, key: str) -> threading.Lock:
        """Get or create an in-memory lock for the given key."""
        with self._memory_locks_lock:
            if key not in self._memory_locks:
                self._memory_locks[key] = threading.Lock()
            return self._memory_locks[key]

    def _acquire(self, key: str, blocking: bool, timeout: int):
        if self.provider == "redis" and self._redis_client:
            lock = RedisLock(self._redis_client, name=f"lock:{key}", timeout=timeout)
            acquired = lock.acquire(blocking=blocking, blocking_timeout=timeout if blocking else None)
        else:
            lock = self._get_memory_lock(key)
            acquired = lock.acquire(blocking=blocking, timeout=timeout if blocking else -1)
        return lock, acquired

    @contextmanager
    def acquire_lock(self, key: str, blocking: bool = True, timeout: Optional[int] = None):
        """
        Acquire a lock for the given key.

        Args:
            key: Lock identifier
            blocking: Whether to block waiting for lock (default: True)
            timeout: Lock timeout in seconds (default: uses LOCK_TIMEOUT env var)

        Yields:
            bool: True if lock was acquired

        Example:
            with lock_manager.acquire_lock("synthetics-monitor:default/home") as acquired:
                if acquired:
                    ...
        """
        if timeout is None:
            timeout = self.lock_timeout

        try:
            lock, acquired = self._acquire(key, blocking, timeout)
        except redis.RedisError as e:
            logger.error(f"Error acquiring lock {key}: {e}")
            lock, acquired = None, False

        if acquired:
            logger.debug(f"Acquired {self.provider} lock: {key}")
        else:
            logger.warning(f"Failed to acquire {self.provider} lock: {key}")

        try:
            yield acquired
        finally:
            if acquired:
                try:
                    lock.release()
                    logger.debug(f"Released {self.provider} lock: {key}")
                except (redis.RedisError, RuntimeError) as e:
                    logger.error(f"Error releasing lock {key}: {e}")


class LockModule(Module):
    """Dependency injection module for LockManager."""

    @provider
    @singleton
    def provide_lock_manager(self) -> LockManager:
        """Provide a singleton LockManager instance."""
        return LockManager()
