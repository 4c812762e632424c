"""
============================================================================
Observability Module - Prometheus Metrics
============================================================================

Reliability Level: L6 Critical
Input Constraints: None
Side Effects: Exposes Prometheus metrics

============================================================================
"""

from app.observability.metrics import (
    CACHE_LOOKUPS,
    UPSTREAM_RETRIES,
    ADAPTER_FAILURES,
    AGGREGATIONS,
    PUSH_MESSAGES,
    PUSH_SUBSCRIBERS,
    record_cache_lookup,
    record_upstream_retry,
    record_adapter_failure,
    record_aggregation,
    record_push_message,
    update_subscriber_count,
)

__all__ = [
    "CACHE_LOOKUPS",
    "UPSTREAM_RETRIES",
    "ADAPTER_FAILURES",
    "AGGREGATIONS",
    "PUSH_MESSAGES",
    "PUSH_SUBSCRIBERS",
    "record_cache_lookup",
    "record_upstream_retry",
    "record_adapter_failure",
    "record_aggregation",
    "record_push_message",
    "update_subscriber_count",
]
