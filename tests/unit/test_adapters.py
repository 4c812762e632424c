"""
============================================================================
Unit Tests - Provider Adapters
============================================================================

Tests normalization and failure absorption of:
- BaseAdapter (never-raising public wrappers, health counters)
- DexScreenerAdapter (pair normalization, Solana filter, search cap)
- GeckoTerminalAdapter (placeholder SOL conversion, field defaults)

Upstream HTTP is served by httpx.MockTransport.
============================================================================
"""

from typing import Any, Dict, List

import httpx
import pytest

from data_ingestion.adapters.dexscreener_adapter import (
    DexScreenerAdapter,
    MAX_SEARCH_RESULTS,
)
from data_ingestion.adapters.geckoterminal_adapter import (
    GeckoTerminalAdapter,
    MULTIPLE_PROTOCOLS,
)
from data_ingestion.http_client import ResilientHttpClient, TransientUpstreamError
from data_ingestion.schemas import ProviderType


BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
WIF = "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm"


# =============================================================================
# Helpers
# =============================================================================

async def no_sleep(delay: float) -> None:
    return None


def make_http(base_url: str, routes: Dict[str, Any], seen: List[httpx.Request]) -> ResilientHttpClient:
    """
    Client whose transport answers by path suffix.

    A route value that is an int is returned as that status code.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        for suffix, answer in routes.items():
            if request.url.path.endswith(suffix):
                if isinstance(answer, int):
                    return httpx.Response(answer)
                return httpx.Response(200, json=answer)
        return httpx.Response(404)

    return ResilientHttpClient(
        base_url,
        max_retries=1,
        transport=httpx.MockTransport(handler),
        sleep=no_sleep,
    )


def dex_pair(
    address: str,
    chain_id: str = "solana",
    dex_id: str = "raydium",
    quote_liquidity: float = 75.0,
) -> Dict[str, Any]:
    return {
        "chainId": chain_id,
        "dexId": dex_id,
        "pairAddress": "pair-" + address[:6],
        "baseToken": {"address": address, "name": "Bonk", "symbol": "BONK"},
        "priceNative": "0.5",
        "priceUsd": "2",
        "marketCap": 2000,
        "volume": {"h24": 400},
        "liquidity": {"usd": 150, "quote": quote_liquidity},
        "priceChange": {"h1": 1.25, "h24": -3.5},
        "txns": {"h24": {"buys": 10, "sells": 5}},
    }


def gecko_token(address: str, market_cap_usd: Any = None) -> Dict[str, Any]:
    return {
        "id": "solana_" + address,
        "type": "token",
        "attributes": {
            "address": address,
            "name": "dogwifhat",
            "symbol": "WIF",
            "price_usd": "2",
            "market_cap_usd": market_cap_usd,
            "total_reserve_in_usd": "500",
            "volume_usd": {"h24": "1000"},
        },
    }


# =============================================================================
# BaseAdapter Contract Tests
# =============================================================================

class TestBaseAdapterContract:

    @pytest.mark.asyncio
    async def test_list_failure_degrades_to_empty(self, make_adapter) -> None:
        adapter = make_adapter()
        adapter.error = TransientUpstreamError("HTTP 503", "https://api.test")

        assert await adapter.list_candidates() == []

        health = adapter.get_health()
        assert health.errors_count == 1
        assert "503" in health.last_error

    @pytest.mark.asyncio
    async def test_lookup_failure_degrades_to_none(self, make_adapter) -> None:
        adapter = make_adapter()
        adapter.error = RuntimeError("boom")

        assert await adapter.by_address(BONK) is None
        assert adapter.get_health().errors_count == 1

    @pytest.mark.asyncio
    async def test_success_updates_health(self, make_adapter, make_record) -> None:
        adapter = make_adapter(records=[make_record(BONK), make_record(WIF)])

        records = await adapter.list_candidates()

        health = adapter.get_health()
        assert len(records) == 2
        assert health.records_received == 2
        assert health.last_success_at is not None
        assert health.to_dict()["provider_type"] == "dexscreener"


# =============================================================================
# DexScreener Tests
# =============================================================================

class TestDexScreenerAdapter:

    @pytest.mark.asyncio
    async def test_pair_normalization(self) -> None:
        seen: List[httpx.Request] = []
        http = make_http("https://dex.test/latest/dex", {f"/tokens/{BONK}": {"pairs": [dex_pair(BONK)]}}, seen)
        adapter = DexScreenerAdapter(http, token_addresses=[BONK], search_queries=[])

        records = await adapter.list_candidates()

        assert len(records) == 1
        record = records[0]
        assert record.address == BONK
        assert record.ticker == "BONK"
        assert record.price == 0.5
        assert record.market_cap == 1000.0
        assert record.volume == 200.0
        assert record.liquidity == 75.0
        assert record.tx_count == 15
        assert record.protocol == "raydium"
        assert record.price_change_1h == 1.25
        assert record.price_change_24h == -3.5
        assert record.price_change_7d is None
        assert record.provenance == ProviderType.DEXSCREENER.value
        assert record.observed_at is not None
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_missing_price_usd_divides_by_one(self) -> None:
        pair = dex_pair(BONK)
        pair["priceUsd"] = None
        pair["marketCap"] = None
        seen: List[httpx.Request] = []
        http = make_http("https://dex.test/latest/dex", {f"/tokens/{BONK}": {"pairs": [pair]}}, seen)
        adapter = DexScreenerAdapter(http, token_addresses=[BONK], search_queries=[])

        record = (await adapter.list_candidates())[0]

        assert record.volume == 400.0
        assert record.market_cap == 0.0
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_non_solana_pairs_are_dropped(self) -> None:
        seen: List[httpx.Request] = []
        pairs = [dex_pair(BONK), dex_pair(WIF, chain_id="ethereum")]
        http = make_http("https://dex.test/latest/dex", {"/search": {"pairs": pairs}}, seen)
        adapter = DexScreenerAdapter(http, token_addresses=[], search_queries=["bonk"])

        records = await adapter.list_candidates()

        assert [record.address for record in records] == [BONK]
        assert seen[0].url.params["q"] == "bonk"
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_search_results_are_capped(self) -> None:
        seen: List[httpx.Request] = []
        pairs = [dex_pair(f"{i:044d}") for i in range(MAX_SEARCH_RESULTS + 10)]
        http = make_http("https://dex.test/latest/dex", {"/search": {"pairs": pairs}}, seen)
        adapter = DexScreenerAdapter(http, token_addresses=[], search_queries=["solana meme"])

        records = await adapter.list_candidates()

        assert len(records) == MAX_SEARCH_RESULTS
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_failed_request_does_not_drop_the_others(self) -> None:
        seen: List[httpx.Request] = []
        http = make_http(
            "https://dex.test/latest/dex",
            {f"/tokens/{WIF}": 500, "/search": {"pairs": [dex_pair(BONK)]}},
            seen,
        )
        adapter = DexScreenerAdapter(http, token_addresses=[WIF], search_queries=["bonk"])

        records = await adapter.list_candidates()

        assert [record.address for record in records] == [BONK]
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_by_address_folds_all_pairs_of_the_token(self) -> None:
        seen: List[httpx.Request] = []
        busy_small_pool = dex_pair(BONK, dex_id="orca", quote_liquidity=10.0)
        busy_small_pool["volume"] = {"h24": 4000}
        busy_small_pool["txns"] = {"h24": {"buys": 300, "sells": 200}}
        pairs = [
            busy_small_pool,
            dex_pair(BONK, dex_id="raydium", quote_liquidity=90.0),
            dex_pair(WIF, dex_id="meteora", quote_liquidity=500.0),
        ]
        http = make_http("https://dex.test/latest/dex", {f"/tokens/{BONK}": {"pairs": pairs}}, seen)
        adapter = DexScreenerAdapter(http)

        record = await adapter.by_address(BONK)

        assert record is not None
        assert record.address == BONK
        assert record.protocol == "raydium"
        assert record.liquidity == 90.0
        assert record.volume == 2000.0
        assert record.tx_count == 500
        assert record.market_cap == 1000.0
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_by_address_unknown_returns_none(self) -> None:
        seen: List[httpx.Request] = []
        http = make_http("https://dex.test/latest/dex", {f"/tokens/{BONK}": {"pairs": None}}, seen)
        adapter = DexScreenerAdapter(http)

        assert await adapter.by_address(BONK) is None
        assert adapter.get_health().errors_count == 0
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_malformed_pair_is_skipped(self) -> None:
        seen: List[httpx.Request] = []
        broken = dex_pair(WIF)
        del broken["baseToken"]
        http = make_http(
            "https://dex.test/latest/dex",
            {f"/tokens/{BONK}": {"pairs": [broken, dex_pair(BONK)]}},
            seen,
        )
        adapter = DexScreenerAdapter(http, token_addresses=[BONK], search_queries=[])

        records = await adapter.list_candidates()

        assert [record.address for record in records] == [BONK]
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_non_object_pair_entries_are_skipped(self) -> None:
        seen: List[httpx.Request] = []
        http = make_http(
            "https://dex.test/latest/dex",
            {f"/tokens/{BONK}": {"pairs": ["garbage", None, 42, dex_pair(BONK)]}},
            seen,
        )
        adapter = DexScreenerAdapter(http, token_addresses=[BONK], search_queries=[])

        records = await adapter.list_candidates()

        assert [record.address for record in records] == [BONK]
        assert adapter.get_health().errors_count == 0
        await adapter.aclose()


# =============================================================================
# GeckoTerminal Tests
# =============================================================================

class TestGeckoTerminalAdapter:

    @pytest.mark.asyncio
    async def test_placeholder_conversion_and_defaults(self) -> None:
        seen: List[httpx.Request] = []
        http = make_http(
            "https://gecko.test/api/v2",
            {"/networks/solana/tokens": {"data": [gecko_token(WIF, market_cap_usd="3000")]}},
            seen,
        )
        adapter = GeckoTerminalAdapter(http, pages=[1])

        records = await adapter.list_candidates()

        assert len(records) == 1
        record = records[0]
        assert record.address == WIF
        assert record.price == pytest.approx(0.02)
        assert record.market_cap == pytest.approx(30.0)
        assert record.volume == pytest.approx(10.0)
        assert record.liquidity == pytest.approx(5.0)
        assert record.tx_count == 0
        assert record.price_change_1h == 0.0
        assert record.price_change_24h == 0.0
        assert record.protocol == MULTIPLE_PROTOCOLS
        assert record.provenance == ProviderType.GECKOTERMINAL.value
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_fetches_trending_pages_one_and_two(self) -> None:
        seen: List[httpx.Request] = []
        http = make_http(
            "https://gecko.test/api/v2",
            {"/networks/solana/tokens": {"data": [gecko_token(WIF)]}},
            seen,
        )
        adapter = GeckoTerminalAdapter(http)

        records = await adapter.list_candidates()

        assert sorted(request.url.params["page"] for request in seen) == ["1", "2"]
        assert len(records) == 2
        assert records[0].market_cap == 0.0
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_by_address(self) -> None:
        seen: List[httpx.Request] = []
        http = make_http(
            "https://gecko.test/api/v2",
            {f"/networks/solana/tokens/{WIF}": {"data": gecko_token(WIF)}},
            seen,
        )
        adapter = GeckoTerminalAdapter(http)

        record = await adapter.by_address(WIF)

        assert record is not None
        assert record.ticker == "WIF"
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_by_address_not_found_is_absorbed(self) -> None:
        seen: List[httpx.Request] = []
        http = make_http("https://gecko.test/api/v2", {}, seen)
        adapter = GeckoTerminalAdapter(http)

        assert await adapter.by_address(BONK) is None
        assert len(seen) == 1
        assert adapter.get_health().errors_count == 1
        await adapter.aclose()

    def test_rejects_non_positive_sol_price(self) -> None:
        http = ResilientHttpClient("https://gecko.test/api/v2")
        with pytest.raises(ValueError):
            GeckoTerminalAdapter(http, sol_price_usd=0)
