"""
============================================================================
Token Feed Aggregator - FastAPI Application Factory
============================================================================

Reliability Level: L6 Critical
Input Constraints: HTTP queries and WebSocket subscribers
Side Effects: Upstream fetches, Redis reads/writes, push broadcasts

COMPONENT WIRING:
    create_app() builds every component explicitly and stores it on
    app.state; nothing is instantiated at module scope.

        FeedConfig
          -> CacheService (Redis)
          -> adapters (DexScreener, GeckoTerminal) over ResilientHttpClient
          -> AggregationService
          -> RealtimeDistributor
          -> RefreshScheduler
          -> FixedWindowRateLimiter (/api only)

LIFESPAN:
    Startup:
        - Probe the cache; an unreachable cache is a degraded start, not a
          failure (every cache read then behaves as a miss)
        - Start the refresh scheduler and the push tick loop
    Shutdown:
        - Stop both loops
        - Close adapter HTTP clients and the cache connection pool
============================================================================
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Sequence
import logging
import os

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException
from dotenv import load_dotenv

from app.api.rate_limit import FixedWindowRateLimiter, enforce_rate_limit
from app.api.stream import router as stream_router
from app.api.tokens import router as tokens_router
from data_ingestion.adapters import (
    BaseAdapter,
    create_dexscreener_adapter,
    create_geckoterminal_adapter,
)
from services.aggregation_service import AggregationService
from services.cache_service import CacheService, CacheUnavailableError, create_cache_service
from services.feed_config import FeedConfig
from services.realtime_distributor import RealtimeDistributor
from services.refresh_scheduler import RefreshScheduler

# Load environment variables
load_dotenv()

# Configure module logger
logger = logging.getLogger(__name__)

SERVICE_NAME = "Token Feed Aggregator"
SERVICE_VERSION = "1.0.0"


def build_adapters(config: FeedConfig) -> Sequence[BaseAdapter]:
    """Default provider adapters, primary provider first."""
    retry = {
        "timeout": config.fetch_timeout_seconds,
        "max_retries": config.max_retries,
        "base_delay": config.retry_delay_seconds,
        "backoff_multiplier": config.backoff_multiplier,
    }
    return [
        create_dexscreener_adapter(config.dexscreener_base_url, **retry),
        create_geckoterminal_adapter(config.geckoterminal_base_url, **retry),
    ]


def create_app(
    config: Optional[FeedConfig] = None,
    cache: Optional[CacheService] = None,
    adapters: Optional[Sequence[BaseAdapter]] = None,
    run_background_tasks: bool = True,
) -> FastAPI:
    """
    Build the application with explicitly constructed components.

    Args:
        config: Feed configuration (default: loaded from the environment)
        cache: Cache store (default: Redis from config)
        adapters: Provider adapters (default: DexScreener + GeckoTerminal)
        run_background_tasks: Start the scheduler and push loop on startup

    Returns:
        Configured FastAPI application
    """
    config = config or FeedConfig.from_environment()
    cache = cache or create_cache_service(config)
    adapters = list(adapters) if adapters is not None else list(build_adapters(config))

    aggregation = AggregationService(
        cache,
        adapters,
        default_page_size=config.default_page_size,
        cache_ttl=config.cache_ttl_seconds,
    )
    distributor = RealtimeDistributor(
        aggregation,
        interval_seconds=config.ws_update_interval_seconds,
        page_size=config.push_page_size,
    )
    scheduler = RefreshScheduler(
        aggregation,
        distributor,
        full_interval_seconds=config.full_refresh_interval_seconds,
        light_interval_seconds=config.light_refresh_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"[STARTUP] {SERVICE_NAME} v{SERVICE_VERSION} | "
            f"started_at={datetime.now(timezone.utc).isoformat()}"
        )

        try:
            await cache.ping()
            app.state.cache_available = True
            logger.info("[STARTUP] Cache connection verified")
        except CacheUnavailableError as e:
            app.state.cache_available = False
            logger.warning(f"[STARTUP] Starting degraded without cache | error={e}")

        if run_background_tasks:
            await scheduler.start()
            await distributor.start()

        try:
            yield
        finally:
            logger.info("[SHUTDOWN] Stopping background tasks")
            await scheduler.stop()
            await distributor.stop()

            for adapter in adapters:
                await adapter.aclose()
            await cache.aclose()
            logger.info("[SHUTDOWN] Complete")

    app = FastAPI(
        title=SERVICE_NAME,
        description=(
            "Merged price, volume and liquidity feed for Solana tokens from "
            "several upstream providers, with paginated queries and a "
            "WebSocket push channel."
        ),
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.cache = cache
    app.state.cache_available = False
    app.state.aggregation = aggregation
    app.state.distributor = distributor
    app.state.scheduler = scheduler
    app.state.rate_limiter = FixedWindowRateLimiter(
        max_requests=config.rate_limit_max_requests,
        window_seconds=config.rate_limit_window_seconds,
    )

    # ========================================================================
    # MIDDLEWARE
    # ========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # ========================================================================
    # EXCEPTION HANDLERS
    # ========================================================================

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid request", "message": str(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"[SYS-500] Unhandled exception | "
            f"path={request.url.path} | error={exc}"
        )
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "message": str(exc),
            },
        )

    # ========================================================================
    # ROUTERS
    # ========================================================================

    app.include_router(
        tokens_router,
        prefix="/api",
        tags=["Tokens"],
        dependencies=[Depends(enforce_rate_limit)],
    )
    app.include_router(stream_router, tags=["Push"])

    # ========================================================================
    # SYSTEM ENDPOINTS
    # ========================================================================

    @app.get("/", summary="Service Banner", tags=["System"])
    async def root():
        return {
            "success": True,
            "message": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "endpoints": {
                "health": "/api/health",
                "tokens": "/api/tokens",
                "token_by_address": "/api/tokens/{address}",
                "refresh": "/api/refresh",
                "metrics": "/metrics",
                "websocket": "/ws",
            },
            "websocket": {
                "connected_clients": distributor.subscriber_count,
            },
        }

    @app.get("/metrics", summary="Prometheus Metrics", tags=["Observability"])
    async def metrics():
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )

    logger.info(f"[STARTUP] Application created | config={config.to_dict()}")
    return app
