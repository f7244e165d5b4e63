"""Request-time decision engine for inbound conversions.

Per request:

1. Validate attribution key, offer id (when supplied) and amount, in that
   order. The first failure rejects the event without touching the store.
2. Unknown offer with pass-through enabled: forward the raw amount at once,
   bypassing the cache and the threshold.
3. Resolve the offer's scope and threshold.
4. Read the scope's pending total.
5. ``amount < threshold``: cache the amount.
6. Otherwise snapshot-delete the scope's pending rows (when there are any)
   and forward ``amount + snapshot total``. A failed forward is recorded in
   the ledger; the inbound event still counts as processed.

Each step emits a structured log line. Outcomes are written to the decision
log and forwards to the postback ledger; neither write influences control
flow.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union, cast

from aggregator.config import Settings
from aggregator.integrations.postback import PostbackResult, PostbackTransport, build_postback_url
from aggregator.models.db.enums import OUTCOME_CODES, EventOutcome, LogAction, ResponseCode
from aggregator.services.aggregation_store import AggregationStore, FlushSnapshot
from aggregator.services.audit import DecisionLogSink, PostbackLedger
from aggregator.services.scope_resolver import Resolution, ScopeResolver
from aggregator.services.validation import to_amount, validate_amount, validate_key, validate_offer_id
from aggregator.utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class OfferConversion:
    """Conversion attributed to an offer (current request generation)."""
    attribution_key: Optional[str]
    raw_amount: Optional[str]
    offer_id: str


@dataclass(frozen=True)
class LegacyConversion:
    """Conversion without an offer id (first request generation)."""
    attribution_key: Optional[str]
    raw_amount: Optional[str]


ConversionRequest = Union[OfferConversion, LegacyConversion]


def parse_conversion_request(clickid: Optional[str], amount: Optional[str], offer_id: Optional[str]) -> ConversionRequest:
    """Pick the request variant once, at the HTTP boundary.

    An absent ``offer_id`` selects the legacy variant; a present one (even an
    empty string) is an offer conversion and goes through offer validation.
    """
    if offer_id is None:
        return LegacyConversion(attribution_key=clickid, raw_amount=amount)
    return OfferConversion(attribution_key=clickid, raw_amount=amount, offer_id=offer_id)


@dataclass(frozen=True)
class ConversionResult:
    outcome: EventOutcome
    attribution_key: Optional[str]
    offer_id: Optional[str]
    amount: Optional[Decimal] = None
    threshold: Optional[Decimal] = None
    scope: Optional[str] = None
    pending_before: Decimal = Decimal("0.00")
    forwarded_total: Optional[Decimal] = None
    flushed_rows: int = 0
    passthrough: bool = False
    postback: Optional[PostbackResult] = None
    reason: Optional[str] = None

    @property
    def code(self) -> ResponseCode:
        return OUTCOME_CODES[self.outcome]


class ConversionProcessor:
    def __init__(
        self,
        settings: Settings,
        store: AggregationStore,
        resolver: ScopeResolver,
        transport: PostbackTransport,
        decision_log: DecisionLogSink,
        ledger: PostbackLedger,
    ):
        self.settings = settings
        self.store = store
        self.resolver = resolver
        self.transport = transport
        self.decision_log = decision_log
        self.ledger = ledger

    async def process(self, request: ConversionRequest, *, request_id: Optional[str] = None) -> ConversionResult:
        key = request.attribution_key
        offer_id = request.offer_id if isinstance(request, OfferConversion) else None

        # 1. validation
        if not validate_key(key):
            return self._reject(request, "invalid_clickid", "Attribution key must be 24 alphanumeric characters", request_id)
        if isinstance(request, OfferConversion):
            if not validate_offer_id(request.offer_id):
                return self._reject(request, "invalid_offer_id", "Offer id must be 1-50 characters of [a-zA-Z0-9_-]", request_id)
        elif self.settings.require_offer_id:
            return self._reject(request, "missing_offer_id", "Offer id is required", request_id)
        amount, valid = validate_amount(request.raw_amount)
        if not valid or amount is None:
            return self._reject(request, "invalid_amount", "Amount must be a positive decimal", request_id)
        key = cast(str, key)
        logger.info("Conversion validated", clickid=key, offer_id=offer_id, amount=amount, request_id=request_id)

        # 2./3. scope
        if isinstance(request, OfferConversion):
            resolution = self.resolver.resolve(request.offer_id)
            if not resolution.known and self.settings.passthrough_unknown_offers:
                return await self._passthrough(key, request.offer_id, amount, request_id)
        else:
            resolution = self.resolver.resolve_legacy()
        logger.info(
            "Scope resolved",
            clickid=key,
            offer_id=offer_id,
            scope=resolution.scope.key,
            threshold=resolution.threshold,
            known_offer=resolution.known,
            request_id=request_id,
        )

        # 4. pending total
        pending = self.store.sum_for_scope(resolution.scope)
        logger.info("Pending total loaded", scope=resolution.scope.key, pending=pending, request_id=request_id)

        # 5. below threshold: cache. Compared in cents, so 9.995 meets a 10.00 threshold.
        if amount < resolution.threshold:
            return self._cache(key, offer_id, amount, pending, resolution, request_id)

        # 6. flush and forward
        return await self._flush_and_forward(key, offer_id, amount, pending, resolution, request_id)

    def _reject(self, request: ConversionRequest, reason: str, message: str, request_id: Optional[str]) -> ConversionResult:
        offer_id = request.offer_id if isinstance(request, OfferConversion) else None
        logger.warning(
            "Conversion rejected",
            reason=reason,
            clickid=request.attribution_key,
            offer_id=offer_id,
            raw_amount=request.raw_amount,
            request_id=request_id,
        )
        self.decision_log.record(
            LogAction.REJECTED,
            f"{message} (clickid={request.attribution_key!r}, offer_id={offer_id!r}, sum={request.raw_amount!r})",
            attribution_key=request.attribution_key if validate_key(request.attribution_key) else None,
            offer_id=offer_id if validate_offer_id(offer_id) else None,
            request_id=request_id,
            reason=reason,
        )
        return ConversionResult(
            outcome=EventOutcome.REJECTED,
            attribution_key=request.attribution_key,
            offer_id=offer_id,
            reason=reason,
        )

    def _cache(
        self,
        key: str,
        offer_id: Optional[str],
        amount: Decimal,
        pending: Decimal,
        resolution: Resolution,
        request_id: Optional[str],
    ) -> ConversionResult:
        self.store.add(key, offer_id, amount)
        cached_total = to_amount(pending + amount)
        self.decision_log.record(
            LogAction.CACHED,
            f"Cached ${amount} below threshold ${resolution.threshold} for scope {resolution.scope.key}. "
            f"Scope total now ${cached_total}",
            attribution_key=key,
            offer_id=offer_id,
            original_amount=amount,
            cached_amount=cached_total,
            request_id=request_id,
            scope=resolution.scope.key,
        )
        return ConversionResult(
            outcome=EventOutcome.CACHED,
            attribution_key=key,
            offer_id=offer_id,
            amount=amount,
            threshold=resolution.threshold,
            scope=resolution.scope.key,
            pending_before=pending,
        )

    async def _flush_and_forward(
        self,
        key: str,
        offer_id: Optional[str],
        amount: Decimal,
        pending: Decimal,
        resolution: Resolution,
        request_id: Optional[str],
    ) -> ConversionResult:
        snapshot = self.store.delete_for_scope(resolution.scope) if pending > 0 else FlushSnapshot()
        total = to_amount(amount + snapshot.total)
        logger.info(
            "Threshold reached, forwarding",
            clickid=key,
            offer_id=offer_id,
            amount=amount,
            flushed_rows=snapshot.count,
            flushed_amount=snapshot.total,
            total=total,
            scope=resolution.scope.key,
            request_id=request_id,
        )
        postback = await self._forward(key, total, offer_id)
        self.decision_log.record(
            LogAction.POSTBACK_SUCCESS if postback.success else LogAction.POSTBACK_FAILED,
            f"Forwarded ${total} (${amount} + ${snapshot.total} from {snapshot.count} cached rows) "
            f"for scope {resolution.scope.key}"
            + ("" if postback.success else f". Error: {postback.error}"),
            attribution_key=key,
            offer_id=offer_id,
            original_amount=amount,
            cached_amount=snapshot.total,
            total_sent=total,
            request_id=request_id,
            scope=resolution.scope.key,
        )
        return ConversionResult(
            outcome=EventOutcome.FLUSHED_SUCCESS if postback.success else EventOutcome.FLUSHED_FAILURE,
            attribution_key=key,
            offer_id=offer_id,
            amount=amount,
            threshold=resolution.threshold,
            scope=resolution.scope.key,
            pending_before=pending,
            forwarded_total=total,
            flushed_rows=snapshot.count,
            postback=postback,
        )

    async def _passthrough(self, key: str, offer_id: str, amount: Decimal, request_id: Optional[str]) -> ConversionResult:
        logger.info("Unknown offer, passing conversion through", clickid=key, offer_id=offer_id, amount=amount, request_id=request_id)
        postback = await self._forward(key, amount, offer_id)
        self.decision_log.record(
            LogAction.PASSTHROUGH_POSTBACK,
            f"Offer {offer_id} not registered; forwarded ${amount} without caching"
            + ("" if postback.success else f". Error: {postback.error}"),
            attribution_key=key,
            offer_id=offer_id,
            original_amount=amount,
            total_sent=amount,
            request_id=request_id,
            success=postback.success,
        )
        return ConversionResult(
            outcome=EventOutcome.FLUSHED_SUCCESS if postback.success else EventOutcome.FLUSHED_FAILURE,
            attribution_key=key,
            offer_id=offer_id,
            amount=amount,
            forwarded_total=amount,
            passthrough=True,
            postback=postback,
        )

    async def _forward(self, key: str, total: Decimal, offer_id: Optional[str]) -> PostbackResult:
        try:
            postback = await self.transport.send(key, total, offer_id)
        except Exception as e:
            # The rows are already gone; record the failure instead of losing the request.
            logger.error("Postback transport raised", clickid=key, offer_id=offer_id, amount=total, error=str(e), exc_info=True)
            postback = PostbackResult(
                success=False,
                url=build_postback_url(self.settings.postback_base_url, key, total, offer_id),
                error=str(e),
            )
        self.ledger.record(
            attribution_key=key,
            offer_id=offer_id,
            amount=total,
            postback_url=postback.url,
            success=postback.success,
            response_text=postback.response_text,
            error_message=postback.error,
        )
        return postback


__all__ = [
    "OfferConversion",
    "LegacyConversion",
    "ConversionRequest",
    "ConversionResult",
    "ConversionProcessor",
    "parse_conversion_request",
]
