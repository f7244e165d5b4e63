"""Write-only audit sinks: the decision log and the postback ledger.

Both are advisory. A failed write is logged and swallowed so that auditing can
never change how a conversion or a flush is handled.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any

from aggregator.database import Database
from aggregator.models.db import DecisionLog, LogAction, PostbackAttempt
from aggregator.utils import get_logger, log_business_event

logger = get_logger(__name__)


class DecisionLogSink:
    """Append-only decision log (``conversion_logs``) plus a structured log line."""

    def __init__(self, database: Database):
        self.database = database

    def record(
        self,
        action: LogAction,
        message: str,
        *,
        attribution_key: str | None = None,
        offer_id: str | None = None,
        original_amount: Decimal | None = None,
        cached_amount: Decimal | None = None,
        total_sent: Decimal | None = None,
        request_id: str | None = None,
        **extra: Any,
    ) -> None:
        log_business_event(
            action.value,
            {
                "clickid": attribution_key,
                "offer_id": offer_id,
                "original_amount": original_amount,
                "cached_amount": cached_amount,
                "total_sent": total_sent,
                "detail": message,
                **extra,
            },
            request_id=request_id,
        )
        try:
            with self.database.transaction() as session:
                session.add(DecisionLog(
                    attribution_key=attribution_key,
                    offer_id=offer_id,
                    original_amount=original_amount,
                    cached_amount=cached_amount,
                    total_sent=total_sent,
                    action=action.value,
                    message=message,
                ))
        except Exception as e:
            logger.warning("Decision log write failed", action=action.value, error=str(e))


class PostbackLedger:
    """One ``postback_history`` row per forward attempt."""

    def __init__(self, database: Database):
        self.database = database

    def record(
        self,
        *,
        attribution_key: str,
        offer_id: str | None,
        amount: Decimal,
        postback_url: str | None,
        success: bool,
        response_text: str | None = None,
        error_message: str | None = None,
    ) -> None:
        try:
            with self.database.transaction() as session:
                session.add(PostbackAttempt(
                    attribution_key=attribution_key,
                    offer_id=offer_id,
                    amount=amount,
                    postback_url=postback_url,
                    success=success,
                    response_text=response_text,
                    error_message=error_message,
                ))
        except Exception as e:
            logger.error(
                "Postback ledger write failed",
                clickid=attribution_key,
                offer_id=offer_id,
                amount=amount,
                success=success,
                error=str(e),
            )


__all__ = ["DecisionLogSink", "PostbackLedger"]
