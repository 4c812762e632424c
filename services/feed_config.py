"""
============================================================================
Token Feed - Configuration
============================================================================

Reliability Level: L6 Critical

This module provides configuration management for the token feed:
- Environment variable parsing with type safety
- Default values for every option
- Validation of the loaded values
- Fail-closed startup on invalid config (CFG-001)

ENVIRONMENT VARIABLES:
    - CACHE_TTL: Cache TTL in seconds (default: 30)
    - DEFAULT_PAGE_SIZE: Page size when the caller gives none (default: 20)
    - FETCH_TIMEOUT_SECONDS: Per-request upstream timeout (default: 15)
    - MAX_RETRIES: Additional attempts on transient error (default: 3)
    - RETRY_DELAY: Retry base delay in milliseconds (default: 1000)
    - BACKOFF_MULTIPLIER: Backoff multiplier (default: 2)
    - FULL_REFRESH_INTERVAL_SECONDS: Full refresh period (default: 120)
    - LIGHT_REFRESH_INTERVAL_SECONDS: Light refresh period (default: 30)
    - WS_UPDATE_INTERVAL: Push tick in milliseconds (default: 5000)
    - PUSH_PAGE_SIZE: Records per push snapshot (default: 30)
    - REDIS_HOST / REDIS_PORT / REDIS_PASSWORD: Cache backend
    - DEXSCREENER_BASE_URL / GECKOTERMINAL_BASE_URL: Provider endpoints
    - RATE_LIMIT_WINDOW_MS / RATE_LIMIT_MAX_REQUESTS: API request limiting
    - PORT: HTTP listen port (default: 3000)

ERROR CODES:
    - CFG-001: Configuration invalid
============================================================================
"""

from typing import Optional, List, Dict, Any
from dataclasses import dataclass
import logging
import os

from data_ingestion.adapters.dexscreener_adapter import DEXSCREENER_API_URL
from data_ingestion.adapters.geckoterminal_adapter import GECKOTERMINAL_API_URL

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

class ConfigErrorCode:
    """Configuration error codes for audit logging."""
    CONFIG_INVALID = "CFG-001"


# =============================================================================
# Default Values
# =============================================================================

DEFAULT_CACHE_TTL_SECONDS = 30
DEFAULT_PAGE_SIZE = 20
DEFAULT_FETCH_TIMEOUT_SECONDS = 15.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 1000
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_FULL_REFRESH_INTERVAL_SECONDS = 120
DEFAULT_LIGHT_REFRESH_INTERVAL_SECONDS = 30
DEFAULT_WS_UPDATE_INTERVAL_MS = 5000
DEFAULT_PUSH_PAGE_SIZE = 30
DEFAULT_REDIS_HOST = "localhost"
DEFAULT_REDIS_PORT = 6379
DEFAULT_RATE_LIMIT_WINDOW_MS = 60000
DEFAULT_RATE_LIMIT_MAX_REQUESTS = 100
DEFAULT_PORT = 3000


# =============================================================================
# Configuration Validation Exception
# =============================================================================

class FeedConfigurationError(Exception):
    """
    Exception raised when feed configuration is invalid.

    Raised during startup only; the service refuses to start rather than
    run with a nonsensical schedule or retry policy.
    """

    def __init__(self, message: str, error_code: str = ConfigErrorCode.CONFIG_INVALID):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


# =============================================================================
# Environment Parsing Helpers
# =============================================================================

def _read_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning(
            f"[FEED-CONFIG] Invalid {name} value: {raw}, using default: {default}"
        )
        return default


def _read_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        logger.warning(
            f"[FEED-CONFIG] Invalid {name} value: {raw}, using default: {default}"
        )
        return default


# =============================================================================
# FeedConfig Class
# =============================================================================

@dataclass
class FeedConfig:
    """
    Token feed configuration.

    ============================================================================
    CONFIGURATION PARAMETERS:
    ============================================================================
    - cache_ttl_seconds: TTL for aggregate and per-address cache entries
    - default_page_size: Page size when the caller gives no limit
    - fetch_timeout_seconds / max_retries / retry_delay_ms /
      backoff_multiplier: Resilient fetch policy
    - full_refresh_interval_seconds / light_refresh_interval_seconds:
      Refresh scheduler periods
    - ws_update_interval_ms / push_page_size: Realtime distributor tick
    - redis_*: Cache backend connection
    - *_base_url: Provider endpoints
    - rate_limit_*: API request limiting
    - port: HTTP listen port
    ============================================================================

    Reliability Level: L6 Critical
    Side Effects: Logs configuration on load
    """

    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    default_page_size: int = DEFAULT_PAGE_SIZE

    fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER

    full_refresh_interval_seconds: int = DEFAULT_FULL_REFRESH_INTERVAL_SECONDS
    light_refresh_interval_seconds: int = DEFAULT_LIGHT_REFRESH_INTERVAL_SECONDS

    ws_update_interval_ms: int = DEFAULT_WS_UPDATE_INTERVAL_MS
    push_page_size: int = DEFAULT_PUSH_PAGE_SIZE

    redis_host: str = DEFAULT_REDIS_HOST
    redis_port: int = DEFAULT_REDIS_PORT
    redis_password: Optional[str] = None

    dexscreener_base_url: str = DEXSCREENER_API_URL
    geckoterminal_base_url: str = GECKOTERMINAL_API_URL

    rate_limit_window_ms: int = DEFAULT_RATE_LIMIT_WINDOW_MS
    rate_limit_max_requests: int = DEFAULT_RATE_LIMIT_MAX_REQUESTS

    port: int = DEFAULT_PORT

    @property
    def retry_delay_seconds(self) -> float:
        """Retry base delay in seconds."""
        return self.retry_delay_ms / 1000.0

    @property
    def ws_update_interval_seconds(self) -> float:
        """Push tick interval in seconds."""
        return self.ws_update_interval_ms / 1000.0

    @property
    def rate_limit_window_seconds(self) -> float:
        """Rate limit window in seconds."""
        return self.rate_limit_window_ms / 1000.0

    def validate(self) -> None:
        """
        Validate configuration values.

        Collects every violation and raises once.

        Raises:
            FeedConfigurationError: If any value is out of range (CFG-001)
        """
        errors: List[str] = []

        positive = {
            "CACHE_TTL": self.cache_ttl_seconds,
            "DEFAULT_PAGE_SIZE": self.default_page_size,
            "FETCH_TIMEOUT_SECONDS": self.fetch_timeout_seconds,
            "FULL_REFRESH_INTERVAL_SECONDS": self.full_refresh_interval_seconds,
            "LIGHT_REFRESH_INTERVAL_SECONDS": self.light_refresh_interval_seconds,
            "WS_UPDATE_INTERVAL": self.ws_update_interval_ms,
            "PUSH_PAGE_SIZE": self.push_page_size,
            "RATE_LIMIT_WINDOW_MS": self.rate_limit_window_ms,
            "RATE_LIMIT_MAX_REQUESTS": self.rate_limit_max_requests,
        }
        for name, value in positive.items():
            if value <= 0:
                errors.append(f"{name} must be positive, got: {value}")

        if self.max_retries < 0:
            errors.append(f"MAX_RETRIES must be non-negative, got: {self.max_retries}")

        if self.retry_delay_ms < 0:
            errors.append(f"RETRY_DELAY must be non-negative, got: {self.retry_delay_ms}")

        if self.backoff_multiplier < 1:
            errors.append(
                f"BACKOFF_MULTIPLIER must be >= 1, got: {self.backoff_multiplier}"
            )

        for name, value in (("PORT", self.port), ("REDIS_PORT", self.redis_port)):
            if not 0 < value < 65536:
                errors.append(f"{name} must be in 1..65535, got: {value}")

        if errors:
            error_msg = "Feed configuration validation failed: " + "; ".join(errors)
            logger.error(f"[{ConfigErrorCode.CONFIG_INVALID}] {error_msg}")
            raise FeedConfigurationError(error_msg)

        logger.info(
            f"[FEED-CONFIG] Configuration validated | "
            f"cache_ttl={self.cache_ttl_seconds}s | "
            f"full_refresh={self.full_refresh_interval_seconds}s | "
            f"light_refresh={self.light_refresh_interval_seconds}s | "
            f"push_tick={self.ws_update_interval_ms}ms"
        )

    @classmethod
    def from_environment(cls, validate: bool = True) -> "FeedConfig":
        """
        Load configuration from environment variables.

        Unparseable numeric values log a warning and fall back to the default.

        Args:
            validate: Whether to validate configuration after loading

        Returns:
            FeedConfig instance with values from environment

        Raises:
            FeedConfigurationError: If validation fails (CFG-001)
        """
        config = cls(
            cache_ttl_seconds=_read_int("CACHE_TTL", DEFAULT_CACHE_TTL_SECONDS),
            default_page_size=_read_int("DEFAULT_PAGE_SIZE", DEFAULT_PAGE_SIZE),
            fetch_timeout_seconds=_read_float(
                "FETCH_TIMEOUT_SECONDS", DEFAULT_FETCH_TIMEOUT_SECONDS
            ),
            max_retries=_read_int("MAX_RETRIES", DEFAULT_MAX_RETRIES),
            retry_delay_ms=_read_int("RETRY_DELAY", DEFAULT_RETRY_DELAY_MS),
            backoff_multiplier=_read_float("BACKOFF_MULTIPLIER", DEFAULT_BACKOFF_MULTIPLIER),
            full_refresh_interval_seconds=_read_int(
                "FULL_REFRESH_INTERVAL_SECONDS", DEFAULT_FULL_REFRESH_INTERVAL_SECONDS
            ),
            light_refresh_interval_seconds=_read_int(
                "LIGHT_REFRESH_INTERVAL_SECONDS", DEFAULT_LIGHT_REFRESH_INTERVAL_SECONDS
            ),
            ws_update_interval_ms=_read_int("WS_UPDATE_INTERVAL", DEFAULT_WS_UPDATE_INTERVAL_MS),
            push_page_size=_read_int("PUSH_PAGE_SIZE", DEFAULT_PUSH_PAGE_SIZE),
            redis_host=os.environ.get("REDIS_HOST", DEFAULT_REDIS_HOST).strip(),
            redis_port=_read_int("REDIS_PORT", DEFAULT_REDIS_PORT),
            redis_password=os.environ.get("REDIS_PASSWORD") or None,
            dexscreener_base_url=os.environ.get("DEXSCREENER_BASE_URL", DEXSCREENER_API_URL),
            geckoterminal_base_url=os.environ.get(
                "GECKOTERMINAL_BASE_URL", GECKOTERMINAL_API_URL
            ),
            rate_limit_window_ms=_read_int("RATE_LIMIT_WINDOW_MS", DEFAULT_RATE_LIMIT_WINDOW_MS),
            rate_limit_max_requests=_read_int(
                "RATE_LIMIT_MAX_REQUESTS", DEFAULT_RATE_LIMIT_MAX_REQUESTS
            ),
            port=_read_int("PORT", DEFAULT_PORT),
        )

        logger.info(
            f"[FEED-CONFIG] Loading configuration from environment | "
            f"redis={config.redis_host}:{config.redis_port} | "
            f"max_retries={config.max_retries} | "
            f"retry_delay={config.retry_delay_ms}ms | "
            f"port={config.port}"
        )

        if validate:
            config.validate()

        return config

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert configuration to dictionary for logging.

        The Redis password is never included.
        """
        return {
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "default_page_size": self.default_page_size,
            "fetch_timeout_seconds": self.fetch_timeout_seconds,
            "max_retries": self.max_retries,
            "retry_delay_ms": self.retry_delay_ms,
            "backoff_multiplier": self.backoff_multiplier,
            "full_refresh_interval_seconds": self.full_refresh_interval_seconds,
            "light_refresh_interval_seconds": self.light_refresh_interval_seconds,
            "ws_update_interval_ms": self.ws_update_interval_ms,
            "push_page_size": self.push_page_size,
            "redis_host": self.redis_host,
            "redis_port": self.redis_port,
            "redis_password_set": self.redis_password is not None,
            "dexscreener_base_url": self.dexscreener_base_url,
            "geckoterminal_base_url": self.geckoterminal_base_url,
            "rate_limit_window_ms": self.rate_limit_window_ms,
            "rate_limit_max_requests": self.rate_limit_max_requests,
            "port": self.port,
        }


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "FeedConfig",
    "FeedConfigurationError",
    "ConfigErrorCode",
    "DEFAULT_CACHE_TTL_SECONDS",
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_PUSH_PAGE_SIZE",
]
