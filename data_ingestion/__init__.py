"""
============================================================================
Data Ingestion Package - Multi-Source Token Feed
============================================================================

Reliability Level: L6 Critical (Hot Path)
Traceability: Every record carries its provenance and observation time

MULTI-SOURCE PIPELINE:
    Independent upstream providers disagree on schema, units and freshness.
    This package reduces each of them to CanonicalRecords:

    1. Resilient HTTP client - bounded exponential-backoff retry
    2. Provider adapters - one normalization per provider, never raising
    3. Schemas - CanonicalRecord plus the filter/sort/page query types

PUBLIC ENDPOINTS:
    - No API keys required; public endpoints only
    - Base URLs overridable from environment variables
============================================================================
"""

from data_ingestion.schemas import (
    CanonicalRecord,
    ProviderType,
    PricePeriod,
    SortField,
    SortOrder,
    FilterSpec,
    SortSpec,
    Page,
    AGGREGATED_PROVENANCE,
    PRIMARY_PROVIDER,
    create_canonical_record,
)
from data_ingestion.http_client import (
    ResilientHttpClient,
    ExponentialBackoff,
    UpstreamError,
    TransientUpstreamError,
    PermanentUpstreamError,
)

__all__ = [
    # Schemas
    "CanonicalRecord",
    "ProviderType",
    "PricePeriod",
    "SortField",
    "SortOrder",
    "FilterSpec",
    "SortSpec",
    "Page",
    "AGGREGATED_PROVENANCE",
    "PRIMARY_PROVIDER",
    "create_canonical_record",
    # HTTP client
    "ResilientHttpClient",
    "ExponentialBackoff",
    "UpstreamError",
    "TransientUpstreamError",
    "PermanentUpstreamError",
]
