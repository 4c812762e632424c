"""
============================================================================
Base Adapter - Abstract Interface for Data Providers
============================================================================

Reliability Level: L6 Critical
Traceability: Every record is stamped with the adapter's provider label

ADAPTER INTERFACE:
    All data provider adapters implement this interface so the aggregation
    engine can fan out to them without knowing any provider schema.

    Public methods never raise. A provider that throws, times out or
    exhausts its retries degrades to an empty result (or None) plus a
    logged warning, so one provider being down never aborts a batch.

    Subclasses implement the protected hooks:
    - _fetch_candidates() -> List[CanonicalRecord]
    - _fetch_by_address(address) -> Optional[CanonicalRecord]  (optional)

Key Constraints:
- Unit conversion and field defaults are the adapter's job; the engine
  treats every field it receives as already canonical
- Async-first design for non-blocking I/O
============================================================================
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List
from dataclasses import dataclass
from datetime import datetime, timezone
import logging

from app.observability.metrics import record_adapter_failure
from data_ingestion.http_client import ResilientHttpClient
from data_ingestion.schemas import CanonicalRecord, ProviderType

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

class AdapterErrorCode:
    """Adapter-specific error codes for audit logging."""
    LIST_FAIL = "ADAPT-001"
    LOOKUP_FAIL = "ADAPT-002"
    PARSE_FAIL = "ADAPT-003"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class AdapterHealth:
    """Health counters of an adapter."""
    provider_type: ProviderType
    records_received: int
    errors_count: int
    last_success_at: Optional[datetime]
    last_error: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "provider_type": self.provider_type.value,
            "records_received": self.records_received,
            "errors_count": self.errors_count,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_error": self.last_error,
        }


# =============================================================================
# Base Adapter Class
# =============================================================================

class BaseAdapter(ABC):
    """
    Abstract base class for all data provider adapters.

    ============================================================================
    INTERFACE CONTRACT:
    ============================================================================
    1. list_candidates() - Every record the provider offers this cycle
    2. by_address(address) - One record for a token, or None
    3. get_health() - Adapter health counters
    4. aclose() - Release the HTTP client
    ============================================================================

    Reliability Level: L6 Critical
    Side Effects: Network I/O
    """

    def __init__(self, provider_type: ProviderType, http_client: ResilientHttpClient):
        """
        Initialize the base adapter.

        Args:
            provider_type: Provider this adapter normalizes
            http_client: Resilient client bound to the provider base URL
        """
        self._provider_type = provider_type
        self._http = http_client

        # Health tracking
        self._records_received = 0
        self._errors_count = 0
        self._last_success_at = None  # type: Optional[datetime]
        self._last_error = None  # type: Optional[str]

        logger.info(
            f"Adapter initialized | "
            f"provider={provider_type.value} | "
            f"base_url={http_client.base_url}"
        )

    @property
    def provider_type(self) -> ProviderType:
        """Get the provider type."""
        return self._provider_type

    # =========================================================================
    # Abstract Methods (Must be implemented by subclasses)
    # =========================================================================

    @abstractmethod
    async def _fetch_candidates(self) -> List[CanonicalRecord]:
        """
        Fetch and normalize every candidate record.

        May raise; the public wrapper absorbs the failure.
        """
        pass

    async def _fetch_by_address(self, address: str) -> Optional[CanonicalRecord]:
        """
        Fetch and normalize one token. Providers without a lookup endpoint
        keep this default and never contribute to single-token lookups.
        """
        return None

    # =========================================================================
    # Public Methods (never raise)
    # =========================================================================

    async def list_candidates(self) -> List[CanonicalRecord]:
        """
        List every record the provider offers this cycle.

        Returns:
            Normalized records, or [] if the provider failed
        """
        try:
            records = await self._fetch_candidates()
        except Exception as e:
            self._record_error(
                AdapterErrorCode.LIST_FAIL,
                "list_candidates",
                f"Candidate fetch failed, degrading to empty: {e}"
            )
            return []

        self._record_success(len(records))
        logger.info(
            f"Adapter listed candidates | "
            f"provider={self._provider_type.value} | "
            f"records={len(records)}"
        )
        return records

    async def by_address(self, address: str) -> Optional[CanonicalRecord]:
        """
        Look up one token by address.

        Args:
            address: Token mint address

        Returns:
            Normalized record, or None if absent or the provider failed
        """
        try:
            record = await self._fetch_by_address(address)
        except Exception as e:
            self._record_error(
                AdapterErrorCode.LOOKUP_FAIL,
                "by_address",
                f"Lookup failed for {address}, degrading to None: {e}"
            )
            return None

        if record is not None:
            self._record_success(1)
        return record

    def get_health(self) -> AdapterHealth:
        """
        Get adapter health status.

        Returns:
            AdapterHealth with current counters
        """
        return AdapterHealth(
            provider_type=self._provider_type,
            records_received=self._records_received,
            errors_count=self._errors_count,
            last_success_at=self._last_success_at,
            last_error=self._last_error,
        )

    async def aclose(self) -> None:
        """Close the adapter's HTTP client."""
        await self._http.aclose()

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _record_success(self, count: int) -> None:
        self._records_received += count
        self._last_success_at = datetime.now(timezone.utc)

    def _record_error(self, error_code: str, operation: str, message: str) -> None:
        """
        Record an absorbed failure with logging.

        Args:
            error_code: Error code
            operation: Public operation that failed
            message: Error message
        """
        self._errors_count += 1
        self._last_error = message
        record_adapter_failure(self._provider_type.value, operation)
        logger.warning(
            f"{error_code} {message} | "
            f"provider={self._provider_type.value} | "
            f"errors_count={self._errors_count}"
        )
