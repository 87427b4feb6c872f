"""Per-session locks: in-process asyncio locks or a Redis-backed distributed lock."""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import redis.asyncio as redis
from redis.asyncio.client import Redis

from chunked_transfer.core.config import LockConfig
from chunked_transfer.core.service_protocols import SessionLockManager
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

LOCK_KEY_PREFIX = "transfer:lock:"

# KEYS[1]: lock key, ARGV[1]: timeout in seconds, ARGV[2]: owner token
ACQUIRE_SCRIPT = """
local timeout = tonumber(ARGV[1])
if timeout == nil or timeout <= 0 then
    return redis.error_reply("Invalid timeout value")
end

if redis.call("SET", KEYS[1], ARGV[2], "EX", timeout, "NX") then
    return 1
else
    return 0
end
"""

# KEYS[1]: lock key, ARGV[1]: owner token
RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
else
    return 0
end
"""


class LocalSessionLockManager:
    """
    One ``asyncio.Lock`` per session for a single server process.

    Locks are created on demand and dropped once nobody holds or waits for
    them, so idle sessions cost nothing.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    async def connect(self) -> None:
        return None

    async def disconnect(self) -> None:
        self._locks.clear()
        self._users.clear()

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        session_lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            async with session_lock:
                yield
        finally:
            self._users[session_id] -= 1
            if self._users[session_id] == 0:
                del self._users[session_id]
                del self._locks[session_id]

    @property
    def active_locks(self) -> int:
        return len(self._locks)


class RedisSessionLockManager:
    """Distributed session lock for deployments running several server processes."""

    def __init__(self, config: LockConfig):
        self.config = config
        self.redis: Optional[Redis] = None
        self._acquire_sha: Optional[str] = None
        self._release_sha: Optional[str] = None

    async def connect(self) -> None:
        """Connect to Redis and preload the lock scripts."""
        url_for_log = self.config.redis_url.split('@')[-1]
        logger.info("Connecting to Redis via URL: %s", url_for_log)

        self.redis = redis.from_url(
            self.config.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=self.config.redis_max_connections,
            socket_timeout=self.config.redis_connection_pool_timeout,
            socket_connect_timeout=self.config.redis_connection_pool_timeout,
            retry_on_timeout=True,
            health_check_interval=30,
        )

        try:
            await self.redis.ping()
            self._acquire_sha = await self.redis.script_load(ACQUIRE_SCRIPT)
            self._release_sha = await self.redis.script_load(RELEASE_SCRIPT)
        except Exception:
            await self.redis.aclose()
            self.redis = None
            raise

        logger.info("Redis lock scripts loaded")

    async def disconnect(self) -> None:
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            logger.info("Redis connection closed")

    def _lock_key(self, session_id: str) -> str:
        return f"{LOCK_KEY_PREFIX}{session_id}"

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        if self.redis is None:
            raise ConnectionError("Redis lock manager is not connected")

        token = str(uuid.uuid4())
        lock_key = self._lock_key(session_id)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.lock_wait_timeout

        while True:
            acquired = await self.redis.evalsha(
                self._acquire_sha, 1, lock_key, int(self.config.lock_timeout), token
            )
            if acquired:
                break
            if loop.time() >= deadline:
                raise TimeoutError(f"Timed out acquiring session lock: {session_id}")
            await asyncio.sleep(self.config.lock_poll_interval)

        logger.debug("Redis session lock acquired: %s", session_id)
        try:
            yield
        finally:
            await self.redis.evalsha(self._release_sha, 1, lock_key, token)
            logger.debug("Redis session lock released: %s", session_id)


def create_lock_manager(config: LockConfig) -> SessionLockManager:
    """Build the lock manager selected by configuration."""
    if config.backend == "redis":
        return RedisSessionLockManager(config)
    return LocalSessionLockManager()
