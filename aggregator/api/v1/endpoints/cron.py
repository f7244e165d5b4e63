"""
Scheduler-triggered cache flush.
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from aggregator.api.deps import get_decision_log, get_request_id, get_sweeper, require_scheduler
from aggregator.models.db.enums import LogAction
from aggregator.services.audit import DecisionLogSink
from aggregator.services.flush_sweeper import FlushSweeper
from aggregator.utils import get_logger, utc_now

router = APIRouter()
logger = get_logger(__name__)


@router.api_route(
    "/flush-cache",
    methods=["GET", "POST"],
    summary="Flush every scope's cached conversions",
    dependencies=[Depends(require_scheduler)],
)
async def flush_cache(
    sweeper: FlushSweeper = Depends(get_sweeper),
    decision_log: DecisionLogSink = Depends(get_decision_log),
    request_id: str = Depends(get_request_id),
) -> JSONResponse:
    logger.info("Scheduled cache flush triggered", request_id=request_id)
    try:
        report = await sweeper.sweep_all(trigger="scheduler")
    except Exception as e:
        logger.error("Scheduled cache flush failed", error=str(e), request_id=request_id, exc_info=True)
        decision_log.record(LogAction.SWEEP_FAILED, f"Scheduled cache flush failed: {e}", request_id=request_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": str(e), "timestamp": utc_now().isoformat()},
        )
    return JSONResponse(content=report.to_dict())
