"""
============================================================================
Data Ingestion Adapters Package
============================================================================

Reliability Level: L6 Critical

ADAPTER HIERARCHY:
    1. DexScreenerAdapter - Pair-level DEX data (primary provider)
    2. GeckoTerminalAdapter - Trending token aggregates

All adapters implement the BaseAdapter interface for consistency.
============================================================================
"""

from data_ingestion.adapters.base_adapter import (
    BaseAdapter,
    AdapterHealth,
    AdapterErrorCode,
)
from data_ingestion.adapters.dexscreener_adapter import (
    DexScreenerAdapter,
    create_dexscreener_adapter,
)
from data_ingestion.adapters.geckoterminal_adapter import (
    GeckoTerminalAdapter,
    create_geckoterminal_adapter,
)

__all__ = [
    "BaseAdapter",
    "AdapterHealth",
    "AdapterErrorCode",
    "DexScreenerAdapter",
    "create_dexscreener_adapter",
    "GeckoTerminalAdapter",
    "create_geckoterminal_adapter",
]
