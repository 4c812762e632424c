"""
============================================================================
Shared Test Fixtures - Token Feed
============================================================================

Provides in-memory doubles for the two external boundaries:
- FakeRedis: async Redis surface used by CacheService
- StubAdapter: BaseAdapter whose upstream is a canned record list
============================================================================
"""

import fnmatch
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from data_ingestion.adapters.base_adapter import BaseAdapter
from data_ingestion.http_client import ResilientHttpClient
from data_ingestion.schemas import CanonicalRecord, ProviderType
from services.cache_service import CacheService


# =============================================================================
# Fake Redis
# =============================================================================

class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis(decode_responses=True)."""

    def __init__(self) -> None:
        self.store: Dict[str, Tuple[str, Optional[int]]] = {}
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def get(self, key: str) -> Optional[str]:
        self._check()
        entry = self.store.get(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        self._check()
        self.store[key] = (value, ex)
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        deleted = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                deleted += 1
        return deleted

    async def scan_iter(self, match: str = "*"):
        self._check()
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def exists(self, key: str) -> int:
        self._check()
        return 1 if key in self.store else 0

    async def ttl(self, key: str) -> int:
        self._check()
        if key not in self.store:
            return -2
        ttl = self.store[key][1]
        return -1 if ttl is None else ttl

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# Stub Adapter
# =============================================================================

class StubAdapter(BaseAdapter):
    """Adapter returning canned records; set ``error`` to make it fail."""

    def __init__(
        self,
        provider_type: ProviderType = ProviderType.DEXSCREENER,
        records: Optional[List[CanonicalRecord]] = None,
        lookup: Optional[Dict[str, CanonicalRecord]] = None,
    ) -> None:
        super().__init__(provider_type, ResilientHttpClient("http://stub.invalid"))
        self.records = list(records or [])
        self.lookup = dict(lookup or {})
        self.error: Optional[Exception] = None
        self.list_calls = 0
        self.lookup_calls = 0

    async def _fetch_candidates(self) -> List[CanonicalRecord]:
        self.list_calls += 1
        if self.error is not None:
            raise self.error
        return list(self.records)

    async def _fetch_by_address(self, address: str) -> Optional[CanonicalRecord]:
        self.lookup_calls += 1
        if self.error is not None:
            raise self.error
        return self.lookup.get(address)


# =============================================================================
# Fixtures
# =============================================================================

OBSERVED_AT = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def build_record(address: str = "So11111111111111111111111111111111111111112", **overrides: Any) -> CanonicalRecord:
    fields = {
        "address": address,
        "name": "Token " + address[:4],
        "ticker": address[:4].upper(),
        "price": 1.0,
        "market_cap": 1000.0,
        "volume": 100.0,
        "liquidity": 50.0,
        "tx_count": 10,
        "protocol": "raydium",
        "provenance": ProviderType.DEXSCREENER.value,
        "price_change_1h": 1.5,
        "price_change_24h": -2.0,
        "price_change_7d": None,
        "observed_at": OBSERVED_AT,
    }
    fields.update(overrides)
    return CanonicalRecord(**fields)


@pytest.fixture
def make_record():
    """Factory for CanonicalRecords with sensible defaults."""
    return build_record


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis: FakeRedis) -> CacheService:
    return CacheService(fake_redis, default_ttl=30)


@pytest.fixture
def make_adapter():
    """Factory for StubAdapters."""
    def factory(
        provider_type: ProviderType = ProviderType.DEXSCREENER,
        records: Optional[List[CanonicalRecord]] = None,
        lookup: Optional[Dict[str, CanonicalRecord]] = None,
    ) -> StubAdapter:
        return StubAdapter(provider_type, records, lookup)
    return factory
