"""
============================================================================
Token Feed API Endpoints
============================================================================

Reliability Level: L6 Critical
Input Constraints: Query parameters validated before reaching the engine
Side Effects: May trigger upstream fetches via the aggregation service

ENDPOINTS:
    GET  /api/tokens            - Filtered, sorted, paginated token list
    GET  /api/tokens/{address}  - Single token lookup
    POST /api/refresh           - Purge cache and re-aggregate
    GET  /api/health            - Liveness probe

QUERY ENCODING (GET /api/tokens):
    - limit: positive integer (default: configured page size)
    - cursor: next_cursor from the previous page
    - filter: JSON object, e.g.
        {"min_volume": 200, "protocol": "raydium",
         "min_price_change": 5, "time_period": "24h"}
    - sort: JSON object, e.g. {"field": "market_cap", "order": "asc"}

    Malformed limit, cursor, filter or sort -> 400 before the engine runs.

ERROR RESPONSES:
    - 400 / 404 / 429: {"success": false, "error": "..."}
    - 500: {"success": false, "error": "...", "message": "..."}
============================================================================
"""

from datetime import datetime, timezone
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, ValidationError

from data_ingestion.schemas import (
    FilterSpec,
    PricePeriod,
    SortField,
    SortOrder,
    SortSpec,
)
from services.aggregation_service import AggregationService, parse_cursor

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Dependencies
# ============================================================================

def get_aggregation_service(request: Request) -> AggregationService:
    """Aggregation service wired into the application state."""
    return request.app.state.aggregation


# ============================================================================
# Query Models
# ============================================================================

class FilterQuery(BaseModel):
    """JSON-encoded ``filter`` query parameter."""
    model_config = ConfigDict(extra="forbid")

    min_volume: Optional[float] = None
    max_volume: Optional[float] = None
    protocol: Optional[str] = None
    min_price_change: Optional[float] = None
    time_period: PricePeriod = PricePeriod.ONE_HOUR

    def to_spec(self) -> FilterSpec:
        return FilterSpec(
            min_volume=self.min_volume,
            max_volume=self.max_volume,
            protocol=self.protocol,
            min_price_change=self.min_price_change,
            period=self.time_period,
        )


class SortQuery(BaseModel):
    """JSON-encoded ``sort`` query parameter."""
    model_config = ConfigDict(extra="forbid")

    field: SortField = SortField.VOLUME
    order: SortOrder = SortOrder.DESC

    def to_spec(self) -> SortSpec:
        return SortSpec(field=self.field, order=self.order)


def _parse_limit(limit: Optional[str]) -> Optional[int]:
    if limit is None:
        return None
    try:
        value = int(limit)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid limit: {limit}")
    if value < 1:
        raise HTTPException(status_code=400, detail=f"limit must be positive, got: {value}")
    return value


def _parse_cursor(cursor: Optional[str]) -> Optional[str]:
    try:
        parse_cursor(cursor)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid cursor: {cursor}")
    return cursor


def _parse_filter(raw: Optional[str]) -> Optional[FilterSpec]:
    if raw is None:
        return None
    try:
        return FilterQuery.model_validate_json(raw).to_spec()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid filter: {e.errors()[0]['msg']}")


def _parse_sort(raw: Optional[str]) -> Optional[SortSpec]:
    if raw is None:
        return None
    try:
        return SortQuery.model_validate_json(raw).to_spec()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid sort: {e.errors()[0]['msg']}")


def _failure(error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": error, "message": str(exc)},
    )


# ============================================================================
# Endpoints
# ============================================================================

@router.get(
    "/tokens",
    summary="List Tokens",
    description=(
        "Returns one page of the merged token feed.\n\n"
        "**Ordering:** filter, then sort, then paginate; the cursor indexes "
        "the filtered and sorted sequence."
    ),
    responses={
        200: {"description": "Page of tokens"},
        400: {"description": "Malformed limit, cursor, filter or sort"},
        429: {"description": "Rate limit exceeded"},
        500: {"description": "Aggregation failed"},
    },
)
async def list_tokens(
    limit: Optional[str] = None,
    cursor: Optional[str] = None,
    filter_json: Optional[str] = Query(None, alias="filter"),
    sort_json: Optional[str] = Query(None, alias="sort"),
    aggregation: AggregationService = Depends(get_aggregation_service),
):
    page_size = _parse_limit(limit)
    cursor = _parse_cursor(cursor)
    filter_spec = _parse_filter(filter_json)
    sort_spec = _parse_sort(sort_json)

    try:
        page = await aggregation.get_tokens(
            limit=page_size,
            cursor=cursor,
            filters=filter_spec,
            sort=sort_spec,
        )
    except Exception as e:
        logger.error(f"[TOKENS-API] GET /tokens failed | error={e}")
        return _failure("Failed to fetch tokens", e)

    return {"success": True, **page.to_dict()}


@router.get(
    "/tokens/{address}",
    summary="Get Token",
    responses={
        200: {"description": "Merged token record"},
        404: {"description": "No provider knows this address"},
    },
)
async def get_token(
    address: str,
    aggregation: AggregationService = Depends(get_aggregation_service),
):
    try:
        record = await aggregation.get_by_address(address)
    except Exception as e:
        logger.error(f"[TOKENS-API] GET /tokens/{address} failed | error={e}")
        return _failure("Failed to fetch token", e)

    if record is None:
        raise HTTPException(status_code=404, detail="Token not found")

    return {"success": True, "data": record.to_dict()}


@router.post(
    "/refresh",
    summary="Refresh Cache",
    description="Purges every cached token entry and re-aggregates from upstream.",
)
async def refresh_tokens(
    aggregation: AggregationService = Depends(get_aggregation_service),
):
    try:
        records = await aggregation.refresh_cache()
    except Exception as e:
        logger.error(f"[TOKENS-API] POST /refresh failed | error={e}")
        return _failure("Failed to refresh cache", e)

    logger.info(f"[TOKENS-API] Cache refreshed on request | records={len(records)}")
    return {
        "success": True,
        "message": "Cache refreshed successfully",
        "total": len(records),
    }


@router.get("/health", summary="Health Check")
async def health(request: Request):
    return {
        "success": True,
        "status": "healthy",
        "cache": "connected" if request.app.state.cache_available else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
