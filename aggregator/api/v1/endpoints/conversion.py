"""
Inbound conversion callback.

Always answers HTTP 200 with a one-character body so the upstream network
never retries:
  0 rejected, 1 cached, 2 forwarded, 3 forwarded but tracker failed, 4 internal error.
"""
import time
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from aggregator.api.deps import get_decision_log, get_processor, get_request_id
from aggregator.models.db.enums import LogAction, ResponseCode
from aggregator.services.audit import DecisionLogSink
from aggregator.services.conversion_processor import ConversionProcessor, parse_conversion_request
from aggregator.utils import elapsed_ms, get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.api_route(
    "",
    methods=["GET", "POST"],
    response_class=PlainTextResponse,
    summary="Receive a conversion callback",
)
async def receive_conversion(
    request: Request,
    clickid: Optional[str] = Query(None, description="24 character attribution key"),
    amount: Optional[str] = Query(None, alias="sum", description="Conversion payout"),
    offer_id: Optional[str] = Query(None, description="Offer identifier (omit for legacy callbacks)"),
    processor: ConversionProcessor = Depends(get_processor),
    decision_log: DecisionLogSink = Depends(get_decision_log),
    request_id: str = Depends(get_request_id),
) -> PlainTextResponse:
    start = time.perf_counter()
    conversion = parse_conversion_request(clickid, amount, offer_id)
    try:
        result = await processor.process(conversion, request_id=request_id)
    except Exception as e:
        logger.error(
            "Conversion processing failed",
            clickid=clickid,
            offer_id=offer_id,
            raw_amount=amount,
            error=str(e),
            error_type=type(e).__name__,
            request_id=request_id,
            exc_info=True,
        )
        decision_log.record(
            LogAction.INTERNAL_ERROR,
            f"Conversion processing failed: {e}",
            offer_id=offer_id,
            request_id=request_id,
        )
        return PlainTextResponse(ResponseCode.INTERNAL_ERROR.value, status_code=200)

    log_performance(
        "receive_conversion",
        elapsed_ms(start),
        {"outcome": result.outcome.value, "request_id": request_id},
    )
    return PlainTextResponse(result.code.value, status_code=200)
