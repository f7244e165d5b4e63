from decimal import Decimal
import pytest
from aggregator.config import ScopeMode, Settings, load_settings


def test_defaults(monkeypatch):
    for name in ("DEFAULT_THRESHOLD", "SCOPE_MODE", "SCHEDULER_SECRET", "PASSTHROUGH_UNKNOWN_OFFERS", "REQUIRE_OFFER_ID"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.default_threshold == Decimal("10.00")
    assert settings.scope_mode == ScopeMode.VERTICAL
    assert settings.scheduler_secret is None
    assert settings.passthrough_unknown_offers is True
    assert settings.require_offer_id is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("DEFAULT_THRESHOLD", "25.5")
    monkeypatch.setenv("SCOPE_MODE", "Offer")
    monkeypatch.setenv("SCHEDULER_SECRET", "abc")
    monkeypatch.setenv("PASSTHROUGH_UNKNOWN_OFFERS", "false")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.test, https://b.test")
    settings = load_settings()
    assert settings.default_threshold == Decimal("25.5")
    assert settings.scope_mode == ScopeMode.OFFER
    assert settings.scheduler_secret == "abc"
    assert settings.passthrough_unknown_offers is False
    assert settings.cors_origins == ["https://a.test", "https://b.test"]


@pytest.mark.parametrize(
    "name,value",
    [("SCOPE_MODE", "planet"), ("DEFAULT_THRESHOLD", "0"), ("DEFAULT_THRESHOLD", "ten"), ("POSTBACK_TIMEOUT_SECONDS", "0")],
)
def test_invalid_values_raise(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        load_settings()


def test_scope_mode_string_is_coerced():
    assert Settings(scope_mode="global").scope_mode is ScopeMode.GLOBAL  # type: ignore[arg-type]
