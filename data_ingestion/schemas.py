"""
============================================================================
Data Ingestion Schemas - CanonicalRecord and Query Types
============================================================================

Reliability Level: L6 Critical
Traceability: Every record carries its provenance and observation time

CANONICAL RECORD:
    The CanonicalRecord is the provider-agnostic representation of one
    token's market data. Every adapter normalizes its upstream payload into
    this shape, and everything downstream (cache, aggregation, push channel)
    only ever sees CanonicalRecords. It contains:
    - Identity (address, name, ticker)
    - Price in the reference unit (SOL)
    - Activity (market cap, volume, liquidity, transaction count)
    - Price change percentages (1h, 24h, 7d - each optional)
    - Venue label and provenance

QUERY TYPES:
    - FilterSpec: volume bounds, protocol match, minimum price change
    - SortSpec: field + order (default volume descending)
    - Page: one slice of the filtered/sorted sequence plus cursor metadata

Key Constraints:
- address is the merge key: at most one record per address in any
  returned collection or cache entry
- All timestamps in UTC
- Immutable after creation
============================================================================
"""

from typing import Optional, Dict, Any, List
from dataclasses import dataclass
from enum import Enum
from datetime import datetime, timezone


# =============================================================================
# Constants
# =============================================================================

# Provenance sentinel for records merged from more than one observation
AGGREGATED_PROVENANCE = "aggregated"


# =============================================================================
# Enums
# =============================================================================

class ProviderType(Enum):
    """
    Upstream data provider classification.

    The value doubles as the provenance label written on every record the
    provider's adapter produces.
    """
    DEXSCREENER = "dexscreener"       # Pair-level DEX data (primary)
    GECKOTERMINAL = "geckoterminal"   # Trending token lists


# Provider whose venue label wins when duplicate records are merged
PRIMARY_PROVIDER = ProviderType.DEXSCREENER


class PricePeriod(Enum):
    """Window selecting which price change field a filter compares."""
    ONE_HOUR = "1h"
    ONE_DAY = "24h"
    SEVEN_DAYS = "7d"

    @property
    def attribute(self) -> str:
        """CanonicalRecord attribute holding the change for this window."""
        return _PERIOD_ATTRIBUTES[self]


_PERIOD_ATTRIBUTES = {
    PricePeriod.ONE_HOUR: "price_change_1h",
    PricePeriod.ONE_DAY: "price_change_24h",
    PricePeriod.SEVEN_DAYS: "price_change_7d",
}


class SortField(Enum):
    """Sortable numeric fields, keyed by their wire names."""
    VOLUME = "volume"
    PRICE_CHANGE = "price_change"
    MARKET_CAP = "market_cap"
    LIQUIDITY = "liquidity"
    TRANSACTION_COUNT = "transaction_count"

    @property
    def attribute(self) -> str:
        """CanonicalRecord attribute this sort field reads."""
        return _SORT_ATTRIBUTES[self]


_SORT_ATTRIBUTES = {
    SortField.VOLUME: "volume",
    SortField.PRICE_CHANGE: "price_change_1h",
    SortField.MARKET_CAP: "market_cap",
    SortField.LIQUIDITY: "liquidity",
    SortField.TRANSACTION_COUNT: "tx_count",
}


class SortOrder(Enum):
    """Sort direction."""
    ASC = "asc"
    DESC = "desc"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class CanonicalRecord:
    """
    One reconciled token observation.

    ============================================================================
    FIELDS:
    ============================================================================
    - address: Token mint address (unique identity / merge key)
    - name, ticker: Display identity
    - price: Price denominated in SOL
    - market_cap, volume, liquidity: Activity in SOL
    - tx_count: 24h transaction count (>= 0)
    - protocol: Venue / DEX label
    - provenance: Originating provider, or "aggregated" once merged
    - price_change_1h/24h/7d: Percentages (None when the provider has none)
    - observed_at: Most recent contributing observation (UTC)
    ============================================================================

    Reliability Level: L6 Critical
    Input Constraints: address non-empty, tx_count non-negative
    Side Effects: None (immutable)
    """
    address: str
    name: str
    ticker: str
    price: float
    market_cap: float
    volume: float
    liquidity: float
    tx_count: int
    protocol: str
    provenance: str
    price_change_1h: Optional[float] = None
    price_change_24h: Optional[float] = None
    price_change_7d: Optional[float] = None
    observed_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate record data after initialization."""
        if not self.address:
            raise ValueError("Invalid record: address must be non-empty")

        if self.tx_count < 0:
            raise ValueError(
                f"Invalid record: tx_count must be non-negative. "
                f"address={self.address}, tx_count={self.tx_count}"
            )

    @property
    def is_aggregated(self) -> bool:
        """True once the record has been merged from several observations."""
        return self.provenance == AGGREGATED_PROVENANCE

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dictionary for caching and transport."""
        return {
            "address": self.address,
            "name": self.name,
            "ticker": self.ticker,
            "price": self.price,
            "market_cap": self.market_cap,
            "volume": self.volume,
            "liquidity": self.liquidity,
            "tx_count": self.tx_count,
            "price_change_1h": self.price_change_1h,
            "price_change_24h": self.price_change_24h,
            "price_change_7d": self.price_change_7d,
            "protocol": self.protocol,
            "provenance": self.provenance,
            "observed_at": self.observed_at.isoformat() if self.observed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalRecord":
        """
        Rebuild a record from its to_dict() form.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field fails validation
        """
        observed_at = data.get("observed_at")
        return cls(
            address=data["address"],
            name=data["name"],
            ticker=data["ticker"],
            price=float(data["price"]),
            market_cap=float(data["market_cap"]),
            volume=float(data["volume"]),
            liquidity=float(data["liquidity"]),
            tx_count=int(data["tx_count"]),
            protocol=data["protocol"],
            provenance=data["provenance"],
            price_change_1h=_optional_float(data.get("price_change_1h")),
            price_change_24h=_optional_float(data.get("price_change_24h")),
            price_change_7d=_optional_float(data.get("price_change_7d")),
            observed_at=datetime.fromisoformat(observed_at) if observed_at else None,
        )


@dataclass(frozen=True)
class FilterSpec:
    """
    Record filter. Every criterion is optional; unset criteria pass.

    A price change criterion compares the field selected by ``period``.
    A record whose selected change field is unset does not pass.
    """
    min_volume: Optional[float] = None
    max_volume: Optional[float] = None
    protocol: Optional[str] = None
    min_price_change: Optional[float] = None
    period: PricePeriod = PricePeriod.ONE_HOUR

    def matches(self, record: CanonicalRecord) -> bool:
        """Return True if the record satisfies every set criterion."""
        if self.min_volume is not None and record.volume < self.min_volume:
            return False
        if self.max_volume is not None and record.volume > self.max_volume:
            return False
        if self.protocol is not None and record.protocol != self.protocol:
            return False

        if self.min_price_change is not None:
            change = getattr(record, self.period.attribute)
            if change is None or change < self.min_price_change:
                return False

        return True


@dataclass(frozen=True)
class SortSpec:
    """Sort selection. Defaults to volume descending."""
    field: SortField = SortField.VOLUME
    order: SortOrder = SortOrder.DESC


@dataclass
class Page:
    """
    One page of the filtered, sorted record sequence.

    next_cursor is an opaque offset into that sequence. It is recomputed on
    every call, so it does not survive a refresh that reorders ties.
    """
    records: List[CanonicalRecord]
    limit: int
    total: int
    has_more: bool
    next_cursor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the API response body shape."""
        return {
            "data": [record.to_dict() for record in self.records],
            "pagination": {
                "limit": self.limit,
                "next_cursor": self.next_cursor,
                "has_more": self.has_more,
                "total": self.total,
            },
        }


# =============================================================================
# Factory Functions
# =============================================================================

def _optional_float(value: Any) -> Optional[float]:
    """Coerce to float, keeping None."""
    if value is None:
        return None
    return float(value)


def create_canonical_record(
    address: str,
    name: str,
    ticker: str,
    price: float,
    provider: ProviderType,
    market_cap: float = 0.0,
    volume: float = 0.0,
    liquidity: float = 0.0,
    tx_count: int = 0,
    protocol: str = "",
    price_change_1h: Optional[float] = None,
    price_change_24h: Optional[float] = None,
    price_change_7d: Optional[float] = None,
    observed_at: Optional[datetime] = None,
) -> CanonicalRecord:
    """
    Factory function used by adapters to build a CanonicalRecord.

    Coerces numeric inputs, stamps provenance from the provider and defaults
    the observation time to now (UTC).

    Args:
        address: Token mint address
        name: Token name
        ticker: Token symbol
        price: Price in SOL
        provider: Originating provider
        market_cap: Market cap in SOL
        volume: 24h volume in SOL
        liquidity: Liquidity in SOL
        tx_count: 24h transaction count
        protocol: Venue label
        price_change_1h: 1h change percentage
        price_change_24h: 24h change percentage
        price_change_7d: 7d change percentage
        observed_at: Observation time (defaults to now UTC)

    Returns:
        CanonicalRecord stamped with the provider's provenance
    """
    if observed_at is None:
        observed_at = datetime.now(timezone.utc)

    return CanonicalRecord(
        address=address,
        name=name or "",
        ticker=ticker or "",
        price=float(price or 0),
        market_cap=float(market_cap or 0),
        volume=float(volume or 0),
        liquidity=float(liquidity or 0),
        tx_count=int(tx_count or 0),
        protocol=protocol or "",
        provenance=provider.value,
        price_change_1h=_optional_float(price_change_1h),
        price_change_24h=_optional_float(price_change_24h),
        price_change_7d=_optional_float(price_change_7d),
        observed_at=observed_at,
    )
