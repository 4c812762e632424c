"""
============================================================================
Token Feed - Services Layer
============================================================================

Configuration, cache store, aggregation engine, refresh scheduler and
realtime distributor.

Reliability Level: L6 Critical
============================================================================
"""

from services.feed_config import (
    FeedConfig,
    FeedConfigurationError,
    ConfigErrorCode,
)

from services.cache_service import (
    CacheService,
    CacheUnavailableError,
    create_cache_service,
    create_redis_client,
)

from services.aggregation_service import (
    AggregationService,
    merge_records,
    apply_filters,
    apply_sort,
    paginate,
    AGGREGATE_CACHE_KEY,
    CACHE_KEY_PREFIX,
)

from services.realtime_distributor import (
    RealtimeDistributor,
    PushMessage,
    PushMessageType,
    SubscriberSession,
    SubscriberState,
    is_significant_change,
)

from services.refresh_scheduler import RefreshScheduler

__all__ = [
    # Configuration
    "FeedConfig",
    "FeedConfigurationError",
    "ConfigErrorCode",
    # Cache
    "CacheService",
    "CacheUnavailableError",
    "create_cache_service",
    "create_redis_client",
    # Aggregation
    "AggregationService",
    "merge_records",
    "apply_filters",
    "apply_sort",
    "paginate",
    "AGGREGATE_CACHE_KEY",
    "CACHE_KEY_PREFIX",
    # Realtime distribution
    "RealtimeDistributor",
    "PushMessage",
    "PushMessageType",
    "SubscriberSession",
    "SubscriberState",
    "is_significant_change",
    # Scheduling
    "RefreshScheduler",
]
