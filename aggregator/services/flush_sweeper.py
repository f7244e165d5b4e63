"""Scope flush independent of inbound traffic.

``sweep_all`` visits every scope the resolver enumerates and, per scope:

1. snapshot-deletes its pending rows (oldest first);
2. does nothing when the snapshot is empty;
3. otherwise forwards the snapshot total under the oldest row's attribution
   key and offer id, and records the attempt in the ledger.

A failure in one scope (store error, transport error) is captured in that
scope's result and the sweep moves on. ``success_count`` counts scopes that
forwarded successfully or had nothing to flush.
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from aggregator.config import DEFAULT_POSTBACK_BASE_URL
from aggregator.integrations.postback import PostbackResult, PostbackTransport, build_postback_url
from aggregator.models.db.enums import FlushAction, LogAction
from aggregator.services.aggregation_store import AggregationStore
from aggregator.services.audit import DecisionLogSink, PostbackLedger
from aggregator.services.scope_resolver import Scope, ScopeResolver
from aggregator.utils import elapsed_ms, get_logger, log_performance, utc_now

logger = get_logger(__name__)


@dataclass
class ScopeFlushResult:
    scope: str
    name: Optional[str]
    success: bool
    action: FlushAction
    conversions_count: int = 0
    total_amount: Decimal = Decimal("0.00")
    primary_clickid: Optional[str] = None
    primary_offer_id: Optional[str] = None
    postback_success: Optional[bool] = None
    message: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value
        data["total_amount"] = str(self.total_amount)
        return data


@dataclass
class SweepReport:
    trigger: str
    results: List[ScopeFlushResult] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def total_scopes(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def flushed_scopes(self) -> int:
        return sum(1 for r in self.results if r.action == FlushAction.CACHE_FLUSHED)

    @property
    def message(self) -> str:
        return f"Cache flush completed for {self.success_count}/{self.total_scopes} scopes"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "trigger": self.trigger,
            "message": self.message,
            "success_count": self.success_count,
            "total_scopes": self.total_scopes,
            "flushed_scopes": self.flushed_scopes,
            "results": [r.to_dict() for r in self.results],
            "timestamp": self.timestamp.isoformat(),
        }


class FlushSweeper:
    def __init__(
        self,
        store: AggregationStore,
        resolver: ScopeResolver,
        transport: PostbackTransport,
        decision_log: DecisionLogSink,
        ledger: PostbackLedger,
        *,
        postback_base_url: str = DEFAULT_POSTBACK_BASE_URL,
    ):
        self.store = store
        self.resolver = resolver
        self.transport = transport
        self.decision_log = decision_log
        self.ledger = ledger
        self.postback_base_url = postback_base_url

    async def sweep_all(self, *, trigger: str = "scheduler") -> SweepReport:
        start = time.perf_counter()
        scopes = self.resolver.sweep_scopes(self.store.pending_offer_ids())
        report = SweepReport(trigger=trigger)
        logger.info("Sweep started", trigger=trigger, scopes=len(scopes))
        for scope in scopes:
            report.results.append(await self.flush_scope(scope, trigger=trigger))

        self.decision_log.record(
            LogAction.SWEEP_COMPLETED,
            f"{trigger} flush: {report.success_count}/{report.total_scopes} scopes processed successfully, "
            f"{report.flushed_scopes} had cache to flush",
            attribution_key=None,
            trigger=trigger,
        )
        log_performance("sweep_all", elapsed_ms(start), {"scopes": report.total_scopes, "trigger": trigger})
        return report

    async def flush_scope(self, scope: Scope, *, trigger: str = "scheduler") -> ScopeFlushResult:
        try:
            return await self._flush(scope, trigger)
        except Exception as e:
            logger.error("Scope flush failed", scope=scope.key, trigger=trigger, error=str(e), exc_info=True)
            return ScopeFlushResult(
                scope=scope.key,
                name=scope.name,
                success=False,
                action=FlushAction.ERROR,
                message=f"Flush failed for scope {scope.key}",
                error=str(e),
            )

    async def _flush(self, scope: Scope, trigger: str) -> ScopeFlushResult:
        snapshot = self.store.delete_for_scope(scope)
        oldest = snapshot.oldest
        if oldest is None:
            logger.debug("Nothing cached for scope", scope=scope.key)
            return ScopeFlushResult(
                scope=scope.key,
                name=scope.name,
                success=True,
                action=FlushAction.NO_CACHE,
                message="No cached conversions to flush",
            )

        total = snapshot.total
        self.decision_log.record(
            LogAction.SCOPE_FLUSH,
            f"{trigger} flushing {snapshot.count} cached conversions for scope {scope.key}. "
            f"Total: ${total}, cleared {snapshot.count} entries",
            attribution_key=oldest.attribution_key,
            offer_id=oldest.offer_id,
            cached_amount=total,
            total_sent=total,
            scope=scope.key,
        )

        try:
            postback = await self.transport.send(oldest.attribution_key, total, oldest.offer_id)
        except Exception as e:
            # Rows are already deleted: surface as a failed forward, not a lost one.
            logger.error("Postback transport raised", scope=scope.key, amount=total, error=str(e), exc_info=True)
            postback = PostbackResult(
                success=False,
                url=build_postback_url(self.postback_base_url, oldest.attribution_key, total, oldest.offer_id),
                error=str(e),
            )
        self.ledger.record(
            attribution_key=oldest.attribution_key,
            offer_id=oldest.offer_id,
            amount=total,
            postback_url=postback.url,
            success=postback.success,
            response_text=postback.response_text,
            error_message=postback.error,
        )
        self.decision_log.record(
            LogAction.SCOPE_FLUSH_POSTBACK_SUCCESS if postback.success else LogAction.SCOPE_FLUSH_POSTBACK_FAILED,
            f"{trigger} postback for scope {scope.key}: ${total}"
            + (f", response: {postback.response_text}" if postback.success else f", error: {postback.error}"),
            attribution_key=oldest.attribution_key,
            offer_id=oldest.offer_id,
            cached_amount=total,
            total_sent=total,
            scope=scope.key,
        )
        return ScopeFlushResult(
            scope=scope.key,
            name=scope.name,
            success=postback.success,
            action=FlushAction.CACHE_FLUSHED,
            conversions_count=snapshot.count,
            total_amount=total,
            primary_clickid=oldest.attribution_key,
            primary_offer_id=oldest.offer_id,
            postback_success=postback.success,
            message=f"Flushed {snapshot.count} conversions, total ${total}",
            error=postback.error,
        )


__all__ = ["FlushSweeper", "ScopeFlushResult", "SweepReport"]
