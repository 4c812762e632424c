"""
============================================================================
Aggregation Service - Multi-Provider Merge, Query and Cache-Aside
============================================================================

Reliability Level: L6 Critical (Hot Path)
Side Effects: Network I/O via adapters, cache reads and writes

AGGREGATION FLOW:
    aggregate(force_refresh)
        1. Unless forced, read the aggregate cache key; a hit returns at once
        2. Fan out list_candidates() to every adapter concurrently and wait
           for all of them to settle; a failed adapter contributes nothing
        3. Concatenate and merge_records()
        4. Write the merged set to the aggregate key with the default TTL
        5. Return the merged set

    get_tokens(limit, cursor, filters, sort)
        aggregate(False) -> apply_filters -> apply_sort -> paginate
        The cursor always indexes the post-filter, post-sort sequence.

MERGE RULES (keyed by address):
    - market_cap, volume, liquidity, tx_count: max of the two
    - price, name, ticker, price changes: first non-empty value wins
    - protocol: overwritten only by the primary provider
    - observed_at: max
    - provenance: "aggregated" once anything was merged

CACHE KEYS:
    - tokens:aggregated - full merged set
    - tokens:<address> - single-token lookups
    refresh_cache() deletes everything matching tokens:* before re-fetching,
    so per-address entries are purged along with the aggregate key.

ERROR CODES:
    - AGG-001: Adapter raised despite its contract (result discarded)
    - AGG-002: Cached payload malformed (treated as miss)
============================================================================
"""

from typing import Optional, List, Dict, Any, Sequence
from dataclasses import replace
from datetime import datetime
import asyncio
import logging

from app.observability.metrics import record_aggregation, record_cache_lookup
from data_ingestion.adapters.base_adapter import BaseAdapter
from data_ingestion.schemas import (
    AGGREGATED_PROVENANCE,
    PRIMARY_PROVIDER,
    CanonicalRecord,
    FilterSpec,
    Page,
    SortSpec,
    SortOrder,
)
from services.cache_service import CacheService

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

CACHE_KEY_PREFIX = "tokens:"
AGGREGATE_CACHE_KEY = "tokens:aggregated"
CACHE_KEY_PATTERN = "tokens:*"

DEFAULT_PAGE_SIZE = 20


class AggregationErrorCode:
    """Aggregation error codes for audit logging."""
    ADAPTER_RAISED = "AGG-001"
    CACHE_MALFORMED = "AGG-002"


# =============================================================================
# Merge
# =============================================================================

def _latest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _combine(existing: CanonicalRecord, incoming: CanonicalRecord) -> CanonicalRecord:
    """Fold one more observation of the same address into the running entry."""
    protocol = existing.protocol
    if incoming.provenance == PRIMARY_PROVIDER.value:
        protocol = incoming.protocol

    return replace(
        existing,
        name=existing.name or incoming.name,
        ticker=existing.ticker or incoming.ticker,
        price=existing.price or incoming.price,
        market_cap=max(existing.market_cap, incoming.market_cap),
        volume=max(existing.volume, incoming.volume),
        liquidity=max(existing.liquidity, incoming.liquidity),
        tx_count=max(existing.tx_count, incoming.tx_count),
        price_change_1h=existing.price_change_1h or incoming.price_change_1h,
        price_change_24h=existing.price_change_24h or incoming.price_change_24h,
        price_change_7d=existing.price_change_7d or incoming.price_change_7d,
        protocol=protocol,
        provenance=AGGREGATED_PROVENANCE,
        observed_at=_latest(existing.observed_at, incoming.observed_at),
    )


def merge_records(records: Sequence[CanonicalRecord]) -> List[CanonicalRecord]:
    """
    Reduce records to one per address.

    The first record for an address seeds the entry; each later one is
    folded in with _combine(). A singleton keeps its own provenance.

    Args:
        records: Observations in arrival order

    Returns:
        One record per unique address (order not meaningful)
    """
    merged = {}  # type: Dict[str, CanonicalRecord]

    for record in records:
        existing = merged.get(record.address)
        merged[record.address] = record if existing is None else _combine(existing, record)

    return list(merged.values())


# =============================================================================
# Query Helpers
# =============================================================================

def apply_filters(
    records: Sequence[CanonicalRecord],
    filters: Optional[FilterSpec] = None
) -> List[CanonicalRecord]:
    """Keep records matching every set criterion. No filter keeps all."""
    if filters is None:
        return list(records)
    return [record for record in records if filters.matches(record)]


def apply_sort(
    records: Sequence[CanonicalRecord],
    sort: Optional[SortSpec] = None
) -> List[CanonicalRecord]:
    """
    Stable numeric sort on the selected field (default volume descending).

    Unset values sort as 0. Ties keep their input order.
    """
    sort = sort or SortSpec()
    attribute = sort.field.attribute

    return sorted(
        records,
        key=lambda record: getattr(record, attribute) or 0,
        reverse=sort.order == SortOrder.DESC,
    )


def parse_cursor(cursor: Optional[str]) -> int:
    """
    Decode a pagination cursor into a start offset.

    Raises:
        ValueError: If the cursor is not an integer
    """
    if not cursor:
        return 0
    return max(int(cursor), 0)


def paginate(
    records: Sequence[CanonicalRecord],
    limit: int,
    cursor: Optional[str] = None
) -> Page:
    """
    Slice one page out of an already filtered and sorted sequence.

    Args:
        records: Full post-filter, post-sort sequence
        limit: Page size (>= 1)
        cursor: Offset returned as next_cursor by the previous page

    Returns:
        Page with has_more / next_cursor computed from the full sequence

    Raises:
        ValueError: On a non-positive limit or malformed cursor
    """
    if limit < 1:
        raise ValueError(f"limit must be positive, got: {limit}")

    start = parse_cursor(cursor)
    end = start + limit
    has_more = end < len(records)

    return Page(
        records=list(records[start:end]),
        limit=limit,
        total=len(records),
        has_more=has_more,
        next_cursor=str(end) if has_more else None,
    )


# =============================================================================
# Aggregation Service
# =============================================================================

class AggregationService:
    """
    Orchestrates adapters, merge, query and the cache-aside policy.

    ============================================================================
    QUERY BOUNDARY:
    ============================================================================
    - get_tokens(limit, cursor, filters, sort) -> Page
    - get_by_address(address) -> CanonicalRecord or None
    - refresh_cache() -> None
    ============================================================================

    Owns every cache entry under the tokens: prefix. Concurrent aggregations
    race on the aggregate key; the last writer wins and each write is a
    self-contained merge of one fetch batch.

    Reliability Level: L6 Critical
    """

    def __init__(
        self,
        cache: CacheService,
        adapters: Sequence[BaseAdapter],
        default_page_size: int = DEFAULT_PAGE_SIZE,
        cache_ttl: Optional[int] = None,
    ):
        """
        Initialize the aggregation service.

        Args:
            cache: Cache store
            adapters: Provider adapters, primary provider first
            default_page_size: Limit used when the caller gives none
            cache_ttl: TTL for written entries (default: the cache's own)
        """
        if default_page_size < 1:
            raise ValueError(f"default_page_size must be positive, got: {default_page_size}")

        self._cache = cache
        self._adapters = list(adapters)
        self._default_page_size = default_page_size
        self._cache_ttl = cache_ttl

        logger.info(
            f"[AGGREGATION] Service initialized | "
            f"adapters={[adapter.provider_type.value for adapter in self._adapters]} | "
            f"default_page_size={default_page_size}"
        )

    @property
    def adapters(self) -> List[BaseAdapter]:
        return list(self._adapters)

    @property
    def default_page_size(self) -> int:
        return self._default_page_size

    # =========================================================================
    # Aggregation
    # =========================================================================

    async def aggregate(self, force_refresh: bool = False) -> List[CanonicalRecord]:
        """
        Return the merged record set, from cache when possible.

        Args:
            force_refresh: Skip the cache read and always fetch upstream

        Returns:
            Merged records, one per address. Empty when every provider is
            down and the cache is cold.
        """
        if not force_refresh:
            cached = await self._read_records(AGGREGATE_CACHE_KEY)
            record_cache_lookup("aggregate", cached is not None)
            if cached is not None:
                logger.debug(f"[AGGREGATION] Cache hit | records={len(cached)}")
                return cached

        record_aggregation("forced" if force_refresh else "query")

        results = await asyncio.gather(
            *[adapter.list_candidates() for adapter in self._adapters],
            return_exceptions=True
        )

        candidates = []  # type: List[CanonicalRecord]
        for adapter, result in zip(self._adapters, results):
            if isinstance(result, Exception):
                logger.error(
                    f"{AggregationErrorCode.ADAPTER_RAISED} Adapter raised, discarding | "
                    f"provider={adapter.provider_type.value} | error={result}"
                )
                continue
            candidates.extend(result)

        merged = merge_records(candidates)

        logger.info(
            f"[AGGREGATION] Aggregated | "
            f"fetched={len(candidates)} | unique={len(merged)} | "
            f"forced={force_refresh}"
        )

        await self._cache.set(
            AGGREGATE_CACHE_KEY,
            [record.to_dict() for record in merged],
            ttl=self._cache_ttl,
        )
        return merged

    async def get_tokens(
        self,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        filters: Optional[FilterSpec] = None,
        sort: Optional[SortSpec] = None,
    ) -> Page:
        """
        Filtered, sorted, paginated view of the merged set.

        Args:
            limit: Page size (default: default_page_size)
            cursor: Offset from a previous page's next_cursor
            filters: Optional FilterSpec
            sort: Optional SortSpec (default volume descending)

        Returns:
            Page
        """
        records = await self.aggregate(force_refresh=False)
        records = apply_filters(records, filters)
        records = apply_sort(records, sort)
        return paginate(records, limit or self._default_page_size, cursor)

    async def get_by_address(self, address: str) -> Optional[CanonicalRecord]:
        """
        Look up one token, from cache when possible.

        On a miss every adapter is asked in parallel; the non-empty answers
        are merged, cached under tokens:<address> and returned.

        Returns:
            Merged record, or None when no provider knows the address
        """
        cache_key = f"{CACHE_KEY_PREFIX}{address}"

        cached = await self._cache.get(cache_key)
        record = self._decode_record(cache_key, cached)
        record_cache_lookup("address", record is not None)
        if record is not None:
            return record

        results = await asyncio.gather(
            *[adapter.by_address(address) for adapter in self._adapters],
            return_exceptions=True
        )

        found = []  # type: List[CanonicalRecord]
        for adapter, result in zip(self._adapters, results):
            if isinstance(result, Exception):
                logger.error(
                    f"{AggregationErrorCode.ADAPTER_RAISED} Adapter raised on lookup | "
                    f"provider={adapter.provider_type.value} | "
                    f"address={address} | error={result}"
                )
                continue
            if result is not None:
                found.append(result)

        if not found:
            logger.info(f"[AGGREGATION] Token not found | address={address}")
            return None

        merged = merge_records(found)[0]
        await self._cache.set(cache_key, merged.to_dict(), ttl=self._cache_ttl)
        return merged

    async def refresh_cache(self) -> List[CanonicalRecord]:
        """
        Purge every tokens:* key and re-aggregate from upstream.

        Returns:
            The freshly merged record set
        """
        deleted = await self._cache.delete_pattern(CACHE_KEY_PATTERN)
        logger.info(f"[AGGREGATION] Forcing cache refresh | purged_keys={deleted}")
        return await self.aggregate(force_refresh=True)

    # =========================================================================
    # Cache Decoding
    # =========================================================================

    async def _read_records(self, key: str) -> Optional[List[CanonicalRecord]]:
        cached = await self._cache.get(key)
        if cached is None:
            return None

        try:
            return [CanonicalRecord.from_dict(item) for item in cached]
        except (KeyError, TypeError, ValueError) as e:
            logger.error(
                f"{AggregationErrorCode.CACHE_MALFORMED} Cached record set malformed, "
                f"treating as miss | key={key} | error={e}"
            )
            return None

    def _decode_record(self, key: str, cached: Any) -> Optional[CanonicalRecord]:
        if cached is None:
            return None

        try:
            return CanonicalRecord.from_dict(cached)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(
                f"{AggregationErrorCode.CACHE_MALFORMED} Cached record malformed, "
                f"treating as miss | key={key} | error={e}"
            )
            return None
