"""
============================================================================
Cache Service - Redis-Backed Key/Value Store with TTL
============================================================================

Reliability Level: L6 Critical
Side Effects: Redis I/O

CACHE CONTRACT:
    get / set (with TTL) / delete / delete_pattern / exists / ttl_remaining

    Values are stored as JSON strings. Every data operation that fails at
    the storage layer degrades to a miss (or a no-op) plus a logged
    CACHE-001 error; the pipeline always has a correctness fallback in
    re-fetching from upstream.

    ping() is the one operation that raises. It is used as an explicit
    health probe at startup so the service can report a degraded cache.

    delete_pattern uses incremental SCAN rather than KEYS so a large
    keyspace never blocks the server. A concurrent set() may land between
    the scan and the delete; there is no transaction.

ERROR CODES:
    - CACHE-001: Storage operation failed (degraded to miss/no-op)
    - CACHE-002: Stored payload could not be decoded
    - CACHE-003: Backend unavailable (ping failed)
============================================================================
"""

from typing import Optional, Any, List
import json
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_TTL_SECONDS = 30

# Returned by ttl_remaining() when the key is absent or has no TTL
NO_TTL = -1


class CacheErrorCode:
    """Cache error codes for audit logging."""
    OPERATION_FAILED = "CACHE-001"
    DECODE_FAILED = "CACHE-002"
    UNAVAILABLE = "CACHE-003"


# =============================================================================
# Exceptions
# =============================================================================

class CacheUnavailableError(Exception):
    """Raised by ping() when the cache backend cannot be reached."""

    def __init__(self, message: str, error_code: str = CacheErrorCode.UNAVAILABLE):
        self.error_code = error_code
        super().__init__(f"[{error_code}] {message}")


# =============================================================================
# Cache Service
# =============================================================================

class CacheService:
    """
    JSON key/value cache over an async Redis client.

    The client is injected; tests pass an in-memory double with the same
    coroutine surface (get, set, delete, scan_iter, exists, ttl, ping,
    aclose).
    """

    def __init__(self, client: Any, default_ttl: int = DEFAULT_TTL_SECONDS):
        """
        Initialize the cache service.

        Args:
            client: redis.asyncio.Redis (decode_responses=True) or compatible
            default_ttl: TTL in seconds applied when set() gets none
        """
        if default_ttl <= 0:
            raise ValueError(f"default_ttl must be positive, got: {default_ttl}")

        self._client = client
        self._default_ttl = default_ttl

    @property
    def default_ttl(self) -> int:
        return self._default_ttl

    async def get(self, key: str) -> Optional[Any]:
        """
        Read and decode a value.

        Returns:
            Decoded value, or None on miss, storage failure or bad payload
        """
        try:
            raw = await self._client.get(key)
        except RedisError as e:
            logger.error(
                f"{CacheErrorCode.OPERATION_FAILED} Cache get failed, treating as miss | "
                f"key={key} | error={e}"
            )
            return None

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.error(
                f"{CacheErrorCode.DECODE_FAILED} Cached payload undecodable, treating as miss | "
                f"key={key} | error={e}"
            )
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Encode and store a value with a TTL.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl: TTL in seconds (default: the service default)

        Returns:
            True if the value was written
        """
        ttl = self._default_ttl if ttl is None else ttl

        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error(
                f"{CacheErrorCode.OPERATION_FAILED} Value not serializable, skipping write | "
                f"key={key} | error={e}"
            )
            return False

        try:
            await self._client.set(key, payload, ex=ttl)
        except RedisError as e:
            logger.error(
                f"{CacheErrorCode.OPERATION_FAILED} Cache set failed | "
                f"key={key} | error={e}"
            )
            return False

        return True

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            logger.error(
                f"{CacheErrorCode.OPERATION_FAILED} Cache delete failed | "
                f"key={key} | error={e}"
            )

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern.

        Returns:
            Number of keys deleted (0 on failure)
        """
        try:
            keys = []  # type: List[str]
            async for key in self._client.scan_iter(match=pattern):
                keys.append(key)

            if not keys:
                return 0

            deleted = await self._client.delete(*keys)

        except RedisError as e:
            logger.error(
                f"{CacheErrorCode.OPERATION_FAILED} Cache pattern delete failed | "
                f"pattern={pattern} | error={e}"
            )
            return 0

        logger.info(f"[CACHE] Pattern delete | pattern={pattern} | deleted={deleted}")
        return int(deleted)

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(key))
        except RedisError as e:
            logger.error(
                f"{CacheErrorCode.OPERATION_FAILED} Cache exists failed | "
                f"key={key} | error={e}"
            )
            return False

    async def ttl_remaining(self, key: str) -> int:
        """
        Seconds until the key expires.

        Returns:
            Remaining seconds, or NO_TTL (-1) if the key is absent, has no
            TTL or the lookup failed
        """
        try:
            remaining = await self._client.ttl(key)
        except RedisError as e:
            logger.error(
                f"{CacheErrorCode.OPERATION_FAILED} Cache ttl failed | "
                f"key={key} | error={e}"
            )
            return NO_TTL

        if remaining is None or remaining < 0:
            return NO_TTL
        return int(remaining)

    async def ping(self) -> None:
        """
        Probe the backend.

        Raises:
            CacheUnavailableError: If the backend cannot be reached
        """
        try:
            await self._client.ping()
        except (RedisError, OSError) as e:
            logger.error(f"{CacheErrorCode.UNAVAILABLE} Cache backend unreachable | error={e}")
            raise CacheUnavailableError(f"Cache backend unreachable: {e}") from e

    async def aclose(self) -> None:
        """Close the backend connection pool."""
        try:
            await self._client.aclose()
        except RedisError as e:
            logger.warning(
                f"{CacheErrorCode.OPERATION_FAILED} Cache close failed | error={e}"
            )


# =============================================================================
# Factory Functions
# =============================================================================

def create_redis_client(
    host: str = "localhost",
    port: int = 6379,
    password: Optional[str] = None,
) -> aioredis.Redis:
    """Create an async Redis client that decodes responses to str."""
    return aioredis.Redis(
        host=host,
        port=port,
        password=password,
        decode_responses=True,
    )


def create_cache_service(config: Any) -> CacheService:
    """
    Build a CacheService from a FeedConfig.

    Args:
        config: FeedConfig providing redis_* and cache_ttl_seconds

    Returns:
        CacheService bound to a new Redis client
    """
    client = create_redis_client(
        host=config.redis_host,
        port=config.redis_port,
        password=config.redis_password,
    )

    logger.info(
        f"[CACHE] Cache service created | "
        f"redis={config.redis_host}:{config.redis_port} | "
        f"default_ttl={config.cache_ttl_seconds}s"
    )
    return CacheService(client, default_ttl=config.cache_ttl_seconds)
