from decimal import Decimal
from sqlalchemy import select
from aggregator.models.db import DecisionLog
from conftest import new_key


def test_rejected_request_returns_zero(client):
    r = client.get("/api/v1/conversion", params={"clickid": "a" * 23, "sum": "5.00", "offer_id": "x"})
    assert r.status_code == 200
    assert r.text == "0"
    assert r.headers["content-type"].startswith("text/plain")


def test_missing_parameters_still_answer_200(client):
    r = client.get("/api/v1/conversion")
    assert r.status_code == 200
    assert r.text == "0"


def test_cached_then_forwarded(client, transport, offer_factory):
    offer = offer_factory()
    key = new_key()
    r1 = client.get("/api/v1/conversion", params={"clickid": key, "sum": "4.00", "offer_id": offer})
    assert r1.text == "1"
    r2 = client.post(f"/api/v1/conversion?clickid={key}&sum=10.00&offer_id={offer}")
    assert r2.text == "2"
    assert transport.calls == [{"clickid": key, "amount": Decimal("14.00"), "offer_id": offer}]


def test_unknown_offer_passthrough_over_http(client, transport):
    r = client.get("/api/v1/conversion", params={"clickid": "a" * 24, "sum": "5.00", "offer_id": "brand_new"})
    assert r.text == "2"
    assert transport.amounts == [Decimal("5.00")]


def test_forward_failure_returns_three(client, transport, offer_factory):
    transport.fail = True
    offer = offer_factory()
    r = client.get("/api/v1/conversion", params={"clickid": new_key(), "sum": "25", "offer_id": offer})
    assert r.status_code == 200
    assert r.text == "3"


def test_legacy_request_without_offer(client, transport):
    key = new_key()
    r = client.get("/api/v1/conversion", params={"clickid": key, "sum": "2.00"})
    assert r.text == "1"


def test_internal_error_returns_four(client, database, monkeypatch):
    processor = client.app.state.processor

    async def _explode(request, *, request_id=None):
        raise RuntimeError("store down")

    monkeypatch.setattr(processor, "process", _explode)
    r = client.get("/api/v1/conversion", params={"clickid": new_key(), "sum": "1.00", "offer_id": "o1"})

    assert r.status_code == 200
    assert r.text == "4"
    with database.session() as session:
        actions = list(session.scalars(select(DecisionLog.action)))
    assert "internal_error" in actions


def test_request_id_is_echoed(client):
    r = client.get("/api/v1/conversion", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"


def test_oversized_amount_is_rejected_not_an_internal_error(client, database, transport):
    for raw in ("1e30", "1" * 40):
        r = client.get("/api/v1/conversion", params={"clickid": "a" * 24, "sum": raw, "offer_id": "x"})
        assert r.status_code == 200
        assert r.text == "0"
    assert transport.calls == []
    with database.session() as session:
        actions = set(session.scalars(select(DecisionLog.action)))
    assert actions == {"rejected"}
