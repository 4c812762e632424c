"""
============================================================================
GeckoTerminal Adapter - Trending Solana Tokens
============================================================================

Reliability Level: L6 Critical
Traceability: Records carry provenance "geckoterminal"

GECKOTERMINAL FEED:
    GeckoTerminal reports token-level aggregates across every pool a token
    trades in, which is why its venue label is always "Multiple".

API ENDPOINTS:
    - Trending tokens: /networks/solana/tokens?page={n}
    - Single token: /networks/solana/tokens/{address}

UNIT CONVERSION (KNOWN APPROXIMATION):
    GeckoTerminal quotes everything in USD. Values are converted to SOL with
    a fixed placeholder rate of 100 USD per SOL, not a live exchange rate.
    Fields the endpoint does not provide are defaulted:
    - tx_count = 0
    - price_change_1h = 0, price_change_24h = 0
============================================================================
"""

from typing import Optional, Dict, Any, List, Sequence
import asyncio
import logging

from data_ingestion.adapters.base_adapter import BaseAdapter, AdapterErrorCode
from data_ingestion.http_client import ResilientHttpClient
from data_ingestion.schemas import (
    CanonicalRecord,
    ProviderType,
    create_canonical_record,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

GECKOTERMINAL_API_URL = "https://api.geckoterminal.com/api/v2"

SOLANA_NETWORK = "solana"

# Placeholder conversion rate (USD per SOL)
PLACEHOLDER_SOL_PRICE_USD = 100.0

DEFAULT_TRENDING_PAGES = (1, 2)

# Venue label for token-level aggregates
MULTIPLE_PROTOCOLS = "Multiple"


# =============================================================================
# GeckoTerminal Adapter Class
# =============================================================================

class GeckoTerminalAdapter(BaseAdapter):
    """
    GeckoTerminal REST adapter.

    Reliability Level: L6 Critical
    Side Effects: Network I/O
    """

    def __init__(
        self,
        http_client: ResilientHttpClient,
        pages: Sequence[int] = DEFAULT_TRENDING_PAGES,
        sol_price_usd: float = PLACEHOLDER_SOL_PRICE_USD,
    ):
        """
        Initialize the GeckoTerminal adapter.

        Args:
            http_client: Client bound to the GeckoTerminal base URL
            pages: Trending pages polled each cycle
            sol_price_usd: USD per SOL used for unit conversion
        """
        super().__init__(ProviderType.GECKOTERMINAL, http_client)

        if sol_price_usd <= 0:
            raise ValueError(f"sol_price_usd must be positive, got: {sol_price_usd}")

        self._pages = list(pages)
        self._sol_price_usd = sol_price_usd

    async def _fetch_candidates(self) -> List[CanonicalRecord]:
        results = await asyncio.gather(
            *[self._trending_page(page) for page in self._pages],
            return_exceptions=True
        )

        records = []  # type: List[CanonicalRecord]
        for page, result in zip(self._pages, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"{AdapterErrorCode.LIST_FAIL} GeckoTerminal page failed | "
                    f"page={page} | error={result}"
                )
                continue
            records.extend(result)

        return records

    async def _fetch_by_address(self, address: str) -> Optional[CanonicalRecord]:
        body = await self._http.get(f"/networks/{SOLANA_NETWORK}/tokens/{address}")

        token = (body or {}).get("data")
        if not token:
            logger.info(f"GeckoTerminal has no data for token | address={address}")
            return None

        return self._parse_token(token)

    async def _trending_page(self, page: int) -> List[CanonicalRecord]:
        body = await self._http.get(
            f"/networks/{SOLANA_NETWORK}/tokens",
            params={"page": page}
        )

        tokens = (body or {}).get("data") or []
        if not tokens:
            logger.warning(f"No tokens found from GeckoTerminal | page={page}")
            return []

        records = []  # type: List[CanonicalRecord]
        for token in tokens:
            record = self._parse_token(token)
            if record is not None:
                records.append(record)

        return records

    def _parse_token(self, token: Dict[str, Any]) -> Optional[CanonicalRecord]:
        """
        Parse one GeckoTerminal token resource into a CanonicalRecord.

        GeckoTerminal token format (abridged):
        {
            "id": "solana_<address>",
            "type": "token",
            "attributes": {
                "address": "...",
                "name": "Bonk",
                "symbol": "BONK",
                "price_usd": "0.00002",
                "market_cap_usd": "1500000000" | null,
                "total_reserve_in_usd": "5400000",
                "volume_usd": {"h24": "1200000"}
            }
        }

        Returns:
            CanonicalRecord, or None if the resource is malformed
        """
        try:
            attributes = token["attributes"]
            rate = self._sol_price_usd

            market_cap_usd = attributes.get("market_cap_usd")
            volume_usd = attributes.get("volume_usd") or {}

            return create_canonical_record(
                address=attributes["address"],
                name=attributes.get("name", ""),
                ticker=attributes.get("symbol", ""),
                price=float(attributes.get("price_usd") or 0) / rate,
                provider=ProviderType.GECKOTERMINAL,
                market_cap=float(market_cap_usd) / rate if market_cap_usd else 0.0,
                volume=float(volume_usd.get("h24") or 0) / rate,
                liquidity=float(attributes.get("total_reserve_in_usd") or 0) / rate,
                tx_count=0,
                protocol=MULTIPLE_PROTOCOLS,
                price_change_1h=0.0,
                price_change_24h=0.0,
            )

        except (KeyError, TypeError, ValueError) as e:
            logger.warning(
                f"{AdapterErrorCode.PARSE_FAIL} Skipping malformed GeckoTerminal token | "
                f"id={token.get('id') if isinstance(token, dict) else None} | error={e}"
            )
            return None


# =============================================================================
# Factory Function
# =============================================================================

def create_geckoterminal_adapter(
    base_url: str = GECKOTERMINAL_API_URL,
    timeout: float = 15.0,
    max_retries: int = 3,
    base_delay: float = 1.0,
    backoff_multiplier: float = 2.0,
) -> GeckoTerminalAdapter:
    """Factory function to create a GeckoTerminalAdapter with its own client."""
    http_client = ResilientHttpClient(
        base_url,
        timeout=timeout,
        max_retries=max_retries,
        base_delay=base_delay,
        backoff_multiplier=backoff_multiplier,
    )
    return GeckoTerminalAdapter(http_client)
