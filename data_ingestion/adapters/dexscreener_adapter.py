"""
============================================================================
DexScreener Adapter - Pair-Level DEX Feed (Primary Provider)
============================================================================

Reliability Level: L6 Critical
Traceability: Records carry provenance "dexscreener"

DEXSCREENER FEED:
    DexScreener reports trading pairs. Each Solana pair is normalized into
    one CanonicalRecord for the pair's base token. A token traded on several
    pools therefore shows up several times; the aggregation engine merges
    those by address.

    DexScreener is the primary provider: when duplicate records are merged
    its venue label (dexId) wins.

    A single-token lookup folds all of the token's Solana pairs into one
    record: activity fields (market cap, volume, tx count, liquidity) are
    the max over the pairs, matching what the candidate list yields after
    merging. Price and venue come from the most liquid pair.

API ENDPOINTS:
    - Token pairs: /tokens/{address}
    - Search: /search?q={query}

UNIT CONVERSION:
    - price = priceNative (already quoted in SOL for SOL pairs)
    - market_cap = marketCap / priceUsd (0 when absent)
    - volume = volume.h24 / priceUsd (priceUsd defaults to 1)
    - liquidity = liquidity.quote (0 when absent)
    - tx_count = h24 buys + sells
============================================================================
"""

from typing import Optional, Dict, Any, List, Sequence
from dataclasses import replace
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

DEXSCREENER_API_URL = "https://api.dexscreener.com/latest/dex"

SOLANA_CHAIN_ID = "solana"

# Well-known Solana tokens always polled for candidates
POPULAR_TOKENS = [
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",  # USDC
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",  # USDT
    "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So",   # mSOL
    "7vfCXTUXx5WJV5JADk17DUJ4ksgau7utNKj4b963voxs",  # BONK
]

DEFAULT_SEARCH_QUERIES = ["solana meme", "bonk"]

# Search results kept per query
MAX_SEARCH_RESULTS = 50


# =============================================================================
# DexScreener Adapter Class
# =============================================================================

class DexScreenerAdapter(BaseAdapter):
    """
    DexScreener REST adapter.

    ============================================================================
    CANDIDATE SOURCES:
    ============================================================================
    1. /tokens/{address} for every configured popular token
    2. /search?q= for every configured search query (top 50 pairs each)
    All requests are issued concurrently. A failed request contributes
    nothing; the others still count.
    ============================================================================
    """

    def __init__(
        self,
        http_client: ResilientHttpClient,
        token_addresses: Optional[Sequence[str]] = None,
        search_queries: Optional[Sequence[str]] = None,
    ):
        """
        Initialize the DexScreener adapter.

        Args:
            http_client: Client bound to the DexScreener base URL
            token_addresses: Token addresses polled each cycle
            search_queries: Search terms polled each cycle
        """
        super().__init__(ProviderType.DEXSCREENER, http_client)

        self._token_addresses = list(
            POPULAR_TOKENS if token_addresses is None else token_addresses
        )
        self._search_queries = list(
            DEFAULT_SEARCH_QUERIES if search_queries is None else search_queries
        )

    async def _fetch_candidates(self) -> List[CanonicalRecord]:
        requests = [self._pairs_for_token(address) for address in self._token_addresses]
        requests += [self._search(query) for query in self._search_queries]

        results = await asyncio.gather(*requests, return_exceptions=True)

        records = []  # type: List[CanonicalRecord]
        for result in results:
            if isinstance(result, Exception):
                logger.warning(
                    f"{AdapterErrorCode.LIST_FAIL} DexScreener request failed | "
                    f"error={result}"
                )
                continue
            records.extend(result)

        return records

    async def _fetch_by_address(self, address: str) -> Optional[CanonicalRecord]:
        """
        Fold every Solana pair whose base token is the address into one record.

        Price, identity and venue come from the most liquid pair. Activity
        fields take the max over all pairs, the same rule the aggregation
        engine applies to the candidate list.
        """
        records = [
            record for record in await self._pairs_for_token(address)
            if record.address == address
        ]
        if not records:
            logger.info(f"DexScreener has no pairs for token | address={address}")
            return None

        most_liquid = max(records, key=lambda record: record.liquidity)
        return replace(
            most_liquid,
            market_cap=max(record.market_cap for record in records),
            volume=max(record.volume for record in records),
            tx_count=max(record.tx_count for record in records),
        )

    async def _pairs_for_token(self, address: str) -> List[CanonicalRecord]:
        body = await self._http.get(f"/tokens/{address}")
        return self._parse_pairs(body)

    async def _search(self, query: str) -> List[CanonicalRecord]:
        body = await self._http.get("/search", params={"q": query})
        return self._parse_pairs(body)[:MAX_SEARCH_RESULTS]

    def _parse_pairs(self, body: Optional[Dict[str, Any]]) -> List[CanonicalRecord]:
        """Normalize the Solana pairs of a DexScreener response."""
        pairs = (body or {}).get("pairs") or []

        records = []  # type: List[CanonicalRecord]
        for pair in pairs:
            if not isinstance(pair, dict) or pair.get("chainId") != SOLANA_CHAIN_ID:
                continue
            record = self._parse_pair(pair)
            if record is not None:
                records.append(record)

        return records

    def _parse_pair(self, pair: Dict[str, Any]) -> Optional[CanonicalRecord]:
        """
        Parse one DexScreener pair into a CanonicalRecord.

        DexScreener pair format (abridged):
        {
            "chainId": "solana",
            "dexId": "raydium",
            "baseToken": {"address": "...", "name": "Bonk", "symbol": "BONK"},
            "priceNative": "0.0000001",
            "priceUsd": "0.00002",
            "volume": {"h24": 1200000, "h6": ..., "h1": ...},
            "priceChange": {"h24": -3.1, "h6": ..., "h1": 0.4},
            "liquidity": {"usd": ..., "base": ..., "quote": 5400},
            "marketCap": 1500000000,
            "txns": {"h24": {"buys": 900, "sells": 850}, ...}
        }

        Returns:
            CanonicalRecord, or None if the pair is malformed
        """
        try:
            base_token = pair["baseToken"]
            price_usd = float(pair.get("priceUsd") or 0) or 1.0
            market_cap = pair.get("marketCap")
            volume = pair.get("volume") or {}
            liquidity = pair.get("liquidity") or {}
            price_change = pair.get("priceChange") or {}
            txns_24h = (pair.get("txns") or {}).get("h24") or {}

            return create_canonical_record(
                address=base_token["address"],
                name=base_token.get("name", ""),
                ticker=base_token.get("symbol", ""),
                price=float(pair.get("priceNative") or 0),
                provider=ProviderType.DEXSCREENER,
                market_cap=float(market_cap) / price_usd if market_cap else 0.0,
                volume=float(volume.get("h24") or 0) / price_usd,
                liquidity=float(liquidity.get("quote") or 0),
                tx_count=int(txns_24h.get("buys") or 0) + int(txns_24h.get("sells") or 0),
                protocol=pair.get("dexId", ""),
                price_change_1h=price_change.get("h1"),
                price_change_24h=price_change.get("h24"),
            )

        except (KeyError, TypeError, ValueError) as e:
            logger.warning(
                f"{AdapterErrorCode.PARSE_FAIL} Skipping malformed DexScreener pair | "
                f"pair_address={pair.get('pairAddress')} | error={e}"
            )
            return None


# =============================================================================
# Factory Function
# =============================================================================

def create_dexscreener_adapter(
    base_url: str = DEXSCREENER_API_URL,
    timeout: float = 15.0,
    max_retries: int = 3,
    base_delay: float = 1.0,
    backoff_multiplier: float = 2.0,
) -> DexScreenerAdapter:
    """
    Factory function to create a DexScreenerAdapter with its own client.

    Returns:
        Configured DexScreenerAdapter
    """
    http_client = ResilientHttpClient(
        base_url,
        timeout=timeout,
        max_retries=max_retries,
        base_delay=base_delay,
        backoff_multiplier=backoff_multiplier,
    )
    return DexScreenerAdapter(http_client)
