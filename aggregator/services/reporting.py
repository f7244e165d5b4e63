"""Read-side queries for the admin stats and log views.

Nothing in the flush engine reads these tables; only the admin routes do.
"""
from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import case, func, select

from aggregator.database import Database
from aggregator.models.db import DecisionLog, PendingAmount, PostbackAttempt
from aggregator.services.aggregation_store import AggregationStore
from aggregator.services.scope_resolver import ScopeResolver
from aggregator.services.validation import to_amount


def cache_and_postback_stats(database: Database, store: AggregationStore, resolver: ScopeResolver) -> Dict[str, Any]:
    with database.session() as session:
        cached_total, unique_keys, cached_rows = session.execute(
            select(
                func.coalesce(func.sum(PendingAmount.amount), 0),
                func.count(func.distinct(PendingAmount.attribution_key)),
                func.count(PendingAmount.id),
            )
        ).one()
        total_postbacks, successful_postbacks, postback_amount = session.execute(
            select(
                func.count(PostbackAttempt.id),
                func.coalesce(func.sum(case((PostbackAttempt.success.is_(True), 1), else_=0)), 0),
                func.coalesce(func.sum(PostbackAttempt.amount), 0),
            )
        ).one()
        by_key = session.execute(
            select(
                PendingAmount.attribution_key,
                func.sum(PendingAmount.amount).label("total_amount"),
                func.count(PendingAmount.id),
                func.max(PendingAmount.created_at),
            )
            .group_by(PendingAmount.attribution_key)
            .order_by(func.sum(PendingAmount.amount).desc())
            .limit(20)
        ).all()
        recent = session.execute(
            select(PostbackAttempt.attribution_key, PostbackAttempt.offer_id, PostbackAttempt.amount, PostbackAttempt.success, PostbackAttempt.created_at)
            .order_by(PostbackAttempt.created_at.desc(), PostbackAttempt.id.desc())
            .limit(10)
        ).all()

    pending_by_scope = []
    for scope in resolver.sweep_scopes(store.pending_offer_ids()):
        pending_by_scope.append({
            "scope": scope.key,
            "name": scope.name,
            "pending_amount": str(store.sum_for_scope(scope)),
        })

    total_postbacks = int(total_postbacks or 0)
    successful_postbacks = int(successful_postbacks or 0)
    return {
        "total_cached_amount": str(to_amount(cached_total)),
        "unique_clickids": int(unique_keys or 0),
        "total_cached_conversions": int(cached_rows or 0),
        "total_postbacks": total_postbacks,
        "successful_postbacks": successful_postbacks,
        "success_rate": round(successful_postbacks / total_postbacks * 100, 2) if total_postbacks else 0.0,
        "total_postback_amount": str(to_amount(postback_amount)),
        "cached_by_clickid": [
            {"clickid": k, "total_amount": str(to_amount(t)), "conversion_count": c, "last_updated": u}
            for k, t, c, u in by_key
        ],
        "recent_postbacks": [
            {"clickid": k, "offer_id": o, "amount": str(to_amount(a)), "success": bool(s), "created_at": c}
            for k, o, a, s, c in recent
        ],
        "pending_by_scope": pending_by_scope,
    }


def _format_line(log: DecisionLog) -> str:
    stamp = log.created_at.isoformat() if log.created_at is not None else "-"  # type: ignore[union-attr]
    line = f"[{stamp}] {log.action.upper()}"
    if log.attribution_key:
        line += f" ({log.attribution_key})"
    if log.original_amount is not None:
        line += f" - Original: ${to_amount(log.original_amount)}"
    if log.cached_amount is not None:
        line += f" - Cached: ${to_amount(log.cached_amount)}"
    if log.total_sent is not None:
        line += f" - Total Sent: ${to_amount(log.total_sent)}"
    return f"{line} - {log.message}"


def recent_decisions(database: Database, limit: int = 100) -> Dict[str, Any]:
    with database.session() as session:
        logs: List[DecisionLog] = list(
            session.scalars(select(DecisionLog).order_by(DecisionLog.created_at.desc(), DecisionLog.id.desc()).limit(limit))
        )
    return {
        "count": len(logs),
        "logs": "\n".join(_format_line(log) for log in logs),
        "raw_logs": [
            {
                "id": log.id,
                "clickid": log.attribution_key,
                "offer_id": log.offer_id,
                "original_amount": str(log.original_amount) if log.original_amount is not None else None,
                "cached_amount": str(log.cached_amount) if log.cached_amount is not None else None,
                "total_sent": str(log.total_sent) if log.total_sent is not None else None,
                "action": log.action,
                "message": log.message,
                "created_at": log.created_at,
            }
            for log in logs
        ],
    }


__all__ = ["cache_and_postback_stats", "recent_decisions"]
