"""Redis-backed primitives: sweep run lock, alert cooldown and result cache.

All three sit on one KeyValueStore. When Redis is unreachable or not
configured the store applies its ``fail_open`` policy:

- fail_open=True (production default): lock acquisition succeeds and
  cooldown/cache lookups report "absent", so an outage never stops the sweep
  and never suppresses a real alert.
- fail_open=False: lock acquisition fails and cooldown lookups report
  "present" (worst case: nothing runs, nothing is sent).

Cache reads always miss during an outage; there is nothing to fail open to.
"""
import json
import logging
import uuid
from typing import Any, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

CRON_LOCK_KEY = "cron:monitor-health-check"

# Deletes KEYS[1] only while it still holds ARGV[1]
RELEASE_IF_OWNER = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class KeyValueStore:
    """Thin async wrapper over a Redis client with an explicit outage policy."""

    def __init__(self, client: Optional[aioredis.Redis] = None, fail_open: bool = True):
        self._client = client
        self.fail_open = fail_open

    @classmethod
    def from_url(cls, url: Optional[str], fail_open: bool = True) -> "KeyValueStore":
        """Build a store for REDIS_URL, or an unconfigured one if url is empty."""
        if not url:
            logger.warning("Redis not configured - run lock, cooldown and caching are degraded")
            return cls(None, fail_open=fail_open)
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=2,
            socket_connect_timeout=2,
        )
        return cls(client, fail_open=fail_open)

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def try_acquire(self, key: str, token: str, ttl_seconds: int) -> bool:
        """SET NX EX. True if this caller now holds the key."""
        if self._client is None:
            return self.fail_open
        try:
            result = await self._client.set(key, token, nx=True, ex=ttl_seconds)
            return bool(result)
        except RedisError as e:
            logger.error(f"Redis LOCK error for key {key}: {e}")
            return self.fail_open

    async def release(self, key: str, token: str) -> bool:
        """Delete the key if it still holds token. False if someone else owns it."""
        if self._client is None:
            return False
        try:
            return await self._client.eval(RELEASE_IF_OWNER, 1, key, token) == 1
        except RedisError as e:
            logger.error(f"Redis release error for key {key}: {e}")
            return False

    async def exists(self, key: str) -> bool:
        if self._client is None:
            return not self.fail_open
        try:
            return await self._client.exists(key) == 1
        except RedisError as e:
            logger.error(f"Redis EXISTS error for key {key}: {e}")
            return not self.fail_open

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.set(key, value, ex=ttl_seconds)
            return True
        except RedisError as e:
            logger.error(f"Redis SET error for key {key}: {e}")
            return False

    async def get(self, key: str) -> Optional[str]:
        if self._client is None:
            return None
        try:
            return await self._client.get(key)
        except RedisError as e:
            logger.error(f"Redis GET error for key {key}: {e}")
            return None

    async def close(self):
        if self._client is not None:
            await self._client.aclose()


class RunLock:
    """Mutual exclusion between sweeps across processes. The TTL bounds a crashed run."""

    def __init__(self, store: KeyValueStore, key: str = CRON_LOCK_KEY, ttl_seconds: int = 120):
        self.store = store
        self.key = key
        self.ttl_seconds = ttl_seconds
        self._token: Optional[str] = None

    async def acquire(self) -> bool:
        token = uuid.uuid4().hex
        acquired = await self.store.try_acquire(self.key, token, self.ttl_seconds)
        self._token = token if acquired else None
        return acquired

    async def release(self) -> bool:
        """Release only the lock this holder took; an expired one may belong to the next run."""
        if self._token is None:
            return False
        token, self._token = self._token, None
        released = await self.store.release(self.key, token)
        if not released and self.store.configured:
            logger.warning(f"Lock {self.key} was no longer held by this run, left in place")
        return released


class AlertCooldown:
    """Per-monitor suppression window for notifications of one kind."""

    def __init__(self, store: KeyValueStore, ttl_seconds: int = 900):
        self.store = store
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(monitor_id: int, kind: str) -> str:
        # Keyed per kind: a recovery notice must not be swallowed by the
        # downtime notice sent minutes before it.
        return f"alert:{monitor_id}:{kind}"

    async def is_active(self, monitor_id: int, kind: str) -> bool:
        return await self.store.exists(self.key(monitor_id, kind))

    async def start(self, monitor_id: int, kind: str) -> bool:
        return await self.store.set_with_ttl(self.key(monitor_id, kind), "1", self.ttl_seconds)


class ResultCache:
    """Short-lived JSON cache for expensive aggregate reads."""

    def __init__(self, store: KeyValueStore, ttl_seconds: int = 30):
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def get_json(self, key: str) -> Optional[Any]:
        cached = await self.store.get(key)
        if not cached:
            return None
        try:
            return json.loads(cached)
        except json.JSONDecodeError:
            logger.warning(f"Discarding undecodable cache entry {key}")
            return None

    async def set_json(self, key: str, value: Any) -> bool:
        return await self.store.set_with_ttl(key, json.dumps(value, default=str), self.ttl_seconds)
