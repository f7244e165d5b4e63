"""
Administrative cache operations: clear, manual flush, stats and decision log.
"""
import time
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from aggregator.api.deps import (
    get_database,
    get_decision_log,
    get_registry,
    get_request_id,
    get_resolver,
    get_store,
    get_sweeper,
    require_admin,
)
from aggregator.database import Database
from aggregator.models.db.enums import LogAction
from aggregator.models.schemas import ClearCacheRequest, FlushVerticalRequest, ResponseBase
from aggregator.services.aggregation_store import AggregationStore
from aggregator.services.audit import DecisionLogSink
from aggregator.services.flush_sweeper import FlushSweeper
from aggregator.services.reporting import cache_and_postback_stats, recent_decisions
from aggregator.services.scope_resolver import OfferRegistry, Scope, ScopeResolver
from aggregator.utils import elapsed_ms, get_logger, log_business_event, log_performance

router = APIRouter(dependencies=[Depends(require_admin)])
logger = get_logger(__name__)


@router.post("/clear-cache", summary="Drop cached conversions without forwarding them")
async def clear_cache(
    payload: Optional[ClearCacheRequest] = None,
    store: AggregationStore = Depends(get_store),
    registry: OfferRegistry = Depends(get_registry),
    resolver: ScopeResolver = Depends(get_resolver),
    decision_log: DecisionLogSink = Depends(get_decision_log),
    request_id: str = Depends(get_request_id),
) -> Dict[str, Any]:
    scope: Optional[Scope] = None
    if payload is not None and payload.vertical_id is not None:
        vertical = registry.get_vertical(payload.vertical_id)
        if vertical is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vertical not found")
        scope = resolver.vertical_scope(vertical)
    elif payload is not None and payload.offer_id is not None:
        scope = resolver.resolve(payload.offer_id).scope

    label = scope.key if scope is not None else "all"
    cleared = store.clear(scope)
    decision_log.record(
        LogAction.CACHE_CLEARED,
        f"Admin cleared cache for {label}. Removed {cleared} entries.",
        request_id=request_id,
    )
    logger.info("Cache cleared by admin", scope=label, cleared_rows=cleared, request_id=request_id)
    return {
        "success": True,
        "cleared_rows": cleared,
        "scope": label,
        "message": f"Cleared cached conversions for {label}. Removed {cleared} entries.",
    }


@router.post("/flush", summary="Flush every scope now")
async def manual_flush(
    sweeper: FlushSweeper = Depends(get_sweeper),
    request_id: str = Depends(get_request_id),
) -> Dict[str, Any]:
    report = await sweeper.sweep_all(trigger="admin-manual")
    log_business_event(
        "manual_cache_flush",
        {"success_count": report.success_count, "total_scopes": report.total_scopes, "flushed_scopes": report.flushed_scopes},
        request_id=request_id,
    )
    return report.to_dict()


@router.post("/flush-vertical", summary="Flush a single vertical now")
async def flush_vertical(
    payload: FlushVerticalRequest,
    sweeper: FlushSweeper = Depends(get_sweeper),
    registry: OfferRegistry = Depends(get_registry),
    resolver: ScopeResolver = Depends(get_resolver),
    request_id: str = Depends(get_request_id),
) -> Dict[str, Any]:
    vertical = registry.get_vertical(payload.vertical_id)
    if vertical is None:
        logger.warning("Vertical flush failed: vertical not found", vertical_id=payload.vertical_id, request_id=request_id)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vertical not found")

    result = await sweeper.flush_scope(resolver.vertical_scope(vertical), trigger="admin-manual")
    log_business_event(
        "manual_vertical_flush",
        {"vertical_id": vertical.id, "vertical": vertical.name, "result": result.message},
        request_id=request_id,
    )
    return {
        "success": True,
        "vertical": vertical.name,
        "result": result.to_dict(),
    }


@router.get("/stats", summary="Cache and postback statistics")
async def stats(
    database: Database = Depends(get_database),
    store: AggregationStore = Depends(get_store),
    resolver: ScopeResolver = Depends(get_resolver),
) -> Dict[str, Any]:
    start = time.perf_counter()
    data = cache_and_postback_stats(database, store, resolver)
    log_performance("admin_stats", elapsed_ms(start))
    return data


@router.get("/logs", response_model=ResponseBase, summary="Recent decision log entries")
async def read_logs(
    limit: int = Query(100, ge=1, le=1000),
    database: Database = Depends(get_database),
) -> ResponseBase:
    data = recent_decisions(database, limit)
    message = None if data["count"] else "No logs found. Try making a conversion request first."
    return ResponseBase(success=True, message=message, data=data)
