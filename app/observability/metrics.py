"""
============================================================================
Prometheus Metrics - Feed Pipeline Observability
============================================================================

Reliability Level: L6 Critical
Input Constraints: Label values must be short, bounded strings
Side Effects: Updates Prometheus metrics registry

METRICS EXPOSED
---------------
- feed_cache_lookups_total: Cache reads by key kind and result (hit/miss)
- feed_upstream_retries_total: Transient upstream failures that were retried
- feed_adapter_failures_total: Adapter calls that degraded to empty results
- feed_aggregations_total: Aggregation runs by trigger (query/forced)
- feed_push_messages_total: Push channel messages by type
- feed_push_subscribers: Currently connected push subscribers

Recording never raises: a metrics failure is logged and swallowed so the
data path is never affected by observability.
============================================================================
"""

import logging

from prometheus_client import Counter, Gauge

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS DEFINITIONS
# ============================================================================

CACHE_LOOKUPS = Counter(
    "feed_cache_lookups_total",
    "Cache reads performed by the aggregation engine",
    ["kind", "result"]
)

UPSTREAM_RETRIES = Counter(
    "feed_upstream_retries_total",
    "Upstream requests retried after a transient failure",
    ["host"]
)

ADAPTER_FAILURES = Counter(
    "feed_adapter_failures_total",
    "Provider adapter calls that degraded to an empty result",
    ["provider", "operation"]
)

AGGREGATIONS = Counter(
    "feed_aggregations_total",
    "Aggregation runs that fetched from upstream providers",
    ["trigger"]
)

PUSH_MESSAGES = Counter(
    "feed_push_messages_total",
    "Messages sent on the realtime push channel",
    ["type"]
)

PUSH_SUBSCRIBERS = Gauge(
    "feed_push_subscribers",
    "Currently connected realtime push subscribers"
)


# ============================================================================
# METRIC UPDATE FUNCTIONS
# ============================================================================

def record_cache_lookup(kind: str, hit: bool) -> None:
    """
    Record one cache read.

    Args:
        kind: Key kind ("aggregate" or "address")
        hit: Whether the read was a hit
    """
    try:
        CACHE_LOOKUPS.labels(kind=kind, result="hit" if hit else "miss").inc()
    except Exception as e:
        logger.error(
            "[OBS-001] Failed to record cache lookup metric | error=%s",
            str(e)
        )


def record_upstream_retry(host: str) -> None:
    """Record a retried upstream request."""
    try:
        UPSTREAM_RETRIES.labels(host=host).inc()
    except Exception as e:
        logger.error(
            "[OBS-002] Failed to record upstream retry metric | error=%s",
            str(e)
        )


def record_adapter_failure(provider: str, operation: str) -> None:
    """
    Record an adapter call that was absorbed into an empty result.

    Args:
        provider: Provider label
        operation: "list_candidates" or "by_address"
    """
    try:
        ADAPTER_FAILURES.labels(provider=provider, operation=operation).inc()
    except Exception as e:
        logger.error(
            "[OBS-003] Failed to record adapter failure metric | error=%s",
            str(e)
        )


def record_aggregation(trigger: str) -> None:
    """Record an upstream aggregation run."""
    try:
        AGGREGATIONS.labels(trigger=trigger).inc()
    except Exception as e:
        logger.error(
            "[OBS-004] Failed to record aggregation metric | error=%s",
            str(e)
        )


def record_push_message(message_type: str, count: int = 1) -> None:
    """
    Record push messages sent.

    Args:
        message_type: initial, update, refresh or error
        count: Number of subscribers the message went to
    """
    try:
        PUSH_MESSAGES.labels(type=message_type).inc(count)
    except Exception as e:
        logger.error(
            "[OBS-005] Failed to record push message metric | error=%s",
            str(e)
        )


def update_subscriber_count(count: int) -> None:
    """Set the connected subscriber gauge."""
    try:
        PUSH_SUBSCRIBERS.set(count)
    except Exception as e:
        logger.error(
            "[OBS-006] Failed to update subscriber gauge | error=%s",
            str(e)
        )
