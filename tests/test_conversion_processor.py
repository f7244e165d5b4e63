import asyncio
from decimal import Decimal
from sqlalchemy import func, select
from aggregator.config import ScopeMode, Settings
from aggregator.models.db import DecisionLog, EventOutcome, PendingAmount, PostbackAttempt, ResponseCode
from aggregator.services.conversion_processor import (
    ConversionProcessor,
    LegacyConversion,
    OfferConversion,
    parse_conversion_request,
)
from aggregator.services.scope_resolver import Scope, ScopeResolver
from conftest import POSTBACK_BASE, new_key


def _run(processor, request):
    return asyncio.run(processor.process(request))


def _count(database, model) -> int:
    with database.session() as session:
        return session.scalar(select(func.count()).select_from(model))


def _processor(settings, registry, store, transport, decision_log, ledger, **overrides) -> ConversionProcessor:
    base = dict(
        default_threshold=settings.default_threshold,
        postback_base_url=POSTBACK_BASE,
        scope_mode=settings.scope_mode,
    )
    base.update(overrides)
    custom = Settings(**base)
    return ConversionProcessor(custom, store, ScopeResolver(registry, custom), transport, decision_log, ledger)


def test_parse_request_variants():
    assert isinstance(parse_conversion_request("k", "1", None), LegacyConversion)
    offer = parse_conversion_request("k", "1", "")
    assert isinstance(offer, OfferConversion)
    assert offer.offer_id == ""


def test_unknown_offer_passes_through_without_caching(processor, transport, database):
    result = _run(processor, OfferConversion(attribution_key="a" * 24, raw_amount="5.00", offer_id="unknown_offer"))

    assert result.outcome == EventOutcome.FLUSHED_SUCCESS
    assert result.code == ResponseCode.FORWARDED
    assert result.passthrough is True
    assert transport.calls == [{"clickid": "a" * 24, "amount": Decimal("5.00"), "offer_id": "unknown_offer"}]
    assert _count(database, PendingAmount) == 0
    assert _count(database, PostbackAttempt) == 1


def test_vertical_accumulates_then_forwards_total(processor, store, transport, vertical_factory, offer_factory):
    vid = vertical_factory(threshold="20.00")
    offer = offer_factory(vertical_id=vid)
    key = new_key()
    scope = Scope(key=f"vertical:{vid}", offer_ids=frozenset({offer}))

    outcomes = []
    for expected_pending in ("3.00", "6.00", "9.00"):
        result = _run(processor, OfferConversion(attribution_key=key, raw_amount="3.00", offer_id=offer))
        outcomes.append(result.outcome)
        assert store.sum_for_scope(scope) == Decimal(expected_pending)
    assert outcomes == [EventOutcome.CACHED] * 3
    assert transport.calls == []

    result = _run(processor, OfferConversion(attribution_key=key, raw_amount="15.00", offer_id=offer))
    assert result.outcome == EventOutcome.FLUSHED_SUCCESS
    assert result.forwarded_total == Decimal("24.00")
    assert result.flushed_rows == 3
    assert transport.amounts == [Decimal("24.00")]
    assert store.sum_for_scope(scope) == Decimal("0.00")


def test_vertical_pools_amounts_across_member_offers(processor, transport, vertical_factory, offer_factory):
    vid = vertical_factory(threshold="10.00")
    a = offer_factory(vertical_id=vid)
    b = offer_factory(vertical_id=vid)

    _run(processor, OfferConversion(attribution_key=new_key(), raw_amount="4.00", offer_id=a))
    _run(processor, OfferConversion(attribution_key=new_key(), raw_amount="4.00", offer_id=b))
    key = new_key()
    result = _run(processor, OfferConversion(attribution_key=key, raw_amount="10.00", offer_id=b))

    assert result.forwarded_total == Decimal("18.00")
    assert transport.calls == [{"clickid": key, "amount": Decimal("18.00"), "offer_id": b}]


def test_invalid_key_rejected_without_side_effects(processor, transport, database, offer_factory):
    offer = offer_factory()
    result = _run(processor, OfferConversion(attribution_key="a" * 23, raw_amount="5.00", offer_id=offer))

    assert result.outcome == EventOutcome.REJECTED
    assert result.code == ResponseCode.REJECTED
    assert result.reason == "invalid_clickid"
    assert transport.calls == []
    assert _count(database, PendingAmount) == 0
    assert _count(database, PostbackAttempt) == 0
    assert _count(database, DecisionLog) == 1


def test_validation_order_and_reasons(processor):
    key = new_key()
    bad_both = _run(processor, OfferConversion(attribution_key=key, raw_amount="x", offer_id="bad offer"))
    assert bad_both.reason == "invalid_offer_id"
    empty_offer = _run(processor, OfferConversion(attribution_key=key, raw_amount="1", offer_id=""))
    assert empty_offer.reason == "invalid_offer_id"
    bad_amount = _run(processor, OfferConversion(attribution_key=key, raw_amount="-2", offer_id="ok"))
    assert bad_amount.reason == "invalid_amount"
    missing_amount = _run(processor, LegacyConversion(attribution_key=key, raw_amount=None))
    assert missing_amount.reason == "invalid_amount"


def test_amount_below_threshold_is_cached_exactly(processor, store, offer_factory):
    offer = offer_factory()
    result = _run(processor, OfferConversion(attribution_key=new_key(), raw_amount="9.99", offer_id=offer))

    assert result.outcome == EventOutcome.CACHED
    assert result.code == ResponseCode.CACHED
    assert result.pending_before == Decimal("0.00")
    assert store.sum_for_scope(Scope.single_offer(offer)) == Decimal("9.99")


def test_threshold_amount_with_empty_pool_forwards_amount(processor, store, transport, offer_factory):
    offer = offer_factory()
    result = _run(processor, OfferConversion(attribution_key=new_key(), raw_amount="10.00", offer_id=offer))

    assert result.outcome == EventOutcome.FLUSHED_SUCCESS
    assert result.forwarded_total == Decimal("10.00")
    assert result.flushed_rows == 0
    assert transport.amounts == [Decimal("10.00")]


def test_forward_failure_reports_code_three_and_clears_pool(processor, store, transport, database, offer_factory):
    offer = offer_factory()
    _run(processor, OfferConversion(attribution_key=new_key(), raw_amount="2.00", offer_id=offer))
    transport.fail = True

    result = _run(processor, OfferConversion(attribution_key=new_key(), raw_amount="12.00", offer_id=offer))

    assert result.outcome == EventOutcome.FLUSHED_FAILURE
    assert result.code == ResponseCode.FORWARD_FAILED
    assert result.forwarded_total == Decimal("14.00")
    assert store.sum_for_scope(Scope.single_offer(offer)) == Decimal("0.00")
    with database.session() as session:
        attempt = session.scalars(select(PostbackAttempt)).one()
    assert attempt.success is False
    assert attempt.amount == Decimal("14.00")
    assert "500" in (attempt.error_message or "")


def test_transport_exception_is_recorded_as_failed_forward(processor, transport, database, offer_factory):
    offer = offer_factory()
    transport.raise_error = ConnectionError("tracker unreachable")

    result = _run(processor, OfferConversion(attribution_key=new_key(), raw_amount="50", offer_id=offer))

    assert result.code == ResponseCode.FORWARD_FAILED
    assert result.postback is not None
    assert result.postback.error == "tracker unreachable"
    assert _count(database, PostbackAttempt) == 1


def test_legacy_requests_share_unattributed_pool(processor, store, transport):
    _run(processor, LegacyConversion(attribution_key=new_key(), raw_amount="6.00"))
    assert store.sum_for_scope(Scope.unattributed()) == Decimal("6.00")

    key = new_key()
    result = _run(processor, LegacyConversion(attribution_key=key, raw_amount="10.00"))
    assert result.forwarded_total == Decimal("16.00")
    assert transport.calls == [{"clickid": key, "amount": Decimal("16.00"), "offer_id": None}]


def test_passthrough_disabled_caches_unknown_offer(settings, registry, store, transport, decision_log, ledger):
    processor = _processor(settings, registry, store, transport, decision_log, ledger, passthrough_unknown_offers=False)
    result = _run(processor, OfferConversion(attribution_key=new_key(), raw_amount="5.00", offer_id="unregistered"))

    assert result.outcome == EventOutcome.CACHED
    assert transport.calls == []
    assert store.sum_for_scope(Scope.single_offer("unregistered")) == Decimal("5.00")


def test_require_offer_id_rejects_legacy(settings, registry, store, transport, decision_log, ledger):
    processor = _processor(settings, registry, store, transport, decision_log, ledger, require_offer_id=True)
    result = _run(processor, LegacyConversion(attribution_key=new_key(), raw_amount="5.00"))

    assert result.outcome == EventOutcome.REJECTED
    assert result.reason == "missing_offer_id"


def test_global_mode_pools_everything(settings, registry, store, transport, decision_log, ledger, offer_factory):
    processor = _processor(settings, registry, store, transport, decision_log, ledger, scope_mode=ScopeMode.GLOBAL)
    a = offer_factory()
    b = offer_factory()
    _run(processor, OfferConversion(attribution_key=new_key(), raw_amount="3.00", offer_id=a))
    _run(processor, LegacyConversion(attribution_key=new_key(), raw_amount="3.00"))
    result = _run(processor, OfferConversion(attribution_key=new_key(), raw_amount="10.00", offer_id=b))

    assert result.forwarded_total == Decimal("16.00")
    assert store.sum_for_scope(Scope.everything()) == Decimal("0.00")


def test_decision_log_records_each_outcome(processor, database, offer_factory):
    offer = offer_factory()
    _run(processor, OfferConversion(attribution_key=new_key(), raw_amount="1.00", offer_id=offer))
    _run(processor, OfferConversion(attribution_key=new_key(), raw_amount="20.00", offer_id=offer))
    _run(processor, OfferConversion(attribution_key="short", raw_amount="1.00", offer_id=offer))

    with database.session() as session:
        actions = list(session.scalars(select(DecisionLog.action).order_by(DecisionLog.id)))
    assert actions == ["cached", "postback_success", "rejected"]


def test_half_cent_below_threshold_meets_it_after_rounding(processor, transport, offer_factory):
    offer = offer_factory()
    result = _run(processor, OfferConversion(attribution_key=new_key(), raw_amount="9.995", offer_id=offer))

    assert result.outcome == EventOutcome.FLUSHED_SUCCESS
    assert transport.amounts == [Decimal("10.00")]


def test_transport_exception_ledger_keeps_destination(processor, transport, database, offer_factory):
    offer = offer_factory()
    key = new_key()
    transport.raise_error = TimeoutError("slow tracker")

    _run(processor, OfferConversion(attribution_key=key, raw_amount="11.00", offer_id=offer))

    with database.session() as session:
        attempt = session.scalars(select(PostbackAttempt)).one()
    assert attempt.success is False
    assert attempt.postback_url == f"{POSTBACK_BASE}?clickid={key}&sum=11.00&offer_id={offer}"
