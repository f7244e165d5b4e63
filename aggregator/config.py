"""Service configuration.

Every tunable the flush engine depends on is enumerated on ``Settings`` and
read from the environment exactly once by ``load_settings()``. Components
receive the resulting object through their constructors; nothing below this
module reads ``os.environ`` directly.
"""
from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Final

# Fallback threshold for offers without a vertical (and for legacy requests).
DEFAULT_THRESHOLD: Final[Decimal] = Decimal("10.00")

DEFAULT_POSTBACK_BASE_URL: Final[str] = "https://clks.trackthisclicks.com/postback"


class ScopeMode(str, enum.Enum):
    GLOBAL = "global"
    OFFER = "offer"
    VERTICAL = "vertical"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return Decimal(raw.strip())
    except InvalidOperation as e:
        raise ValueError(f"{name} must be a decimal number, got {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite+pysqlite:///./aggregator.db"
    default_threshold: Decimal = DEFAULT_THRESHOLD
    postback_base_url: str = DEFAULT_POSTBACK_BASE_URL
    postback_timeout_seconds: float = 10.0
    scheduler_secret: str | None = None
    admin_token: str | None = None
    scope_mode: ScopeMode = ScopeMode.VERTICAL
    passthrough_unknown_offers: bool = True
    require_offer_id: bool = False
    sweep_interval_seconds: float = 0.0
    log_level: str = "INFO"
    log_file: str | None = None
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    def __post_init__(self) -> None:
        if self.default_threshold <= 0:
            raise ValueError("default_threshold must be greater than zero")
        if self.postback_timeout_seconds <= 0:
            raise ValueError("postback_timeout_seconds must be greater than zero")
        if self.sweep_interval_seconds < 0:
            raise ValueError("sweep_interval_seconds cannot be negative")
        if not isinstance(self.scope_mode, ScopeMode):
            object.__setattr__(self, "scope_mode", ScopeMode(self.scope_mode))


def load_settings() -> Settings:
    """Build ``Settings`` from environment variables."""
    try:
        scope_mode = ScopeMode(os.getenv("SCOPE_MODE", ScopeMode.VERTICAL.value).strip().lower())
    except ValueError as e:
        raise ValueError(f"SCOPE_MODE must be one of {[m.value for m in ScopeMode]}") from e

    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite+pysqlite:///./aggregator.db"),
        default_threshold=_env_decimal("DEFAULT_THRESHOLD", DEFAULT_THRESHOLD),
        postback_base_url=os.getenv("POSTBACK_BASE_URL", DEFAULT_POSTBACK_BASE_URL),
        postback_timeout_seconds=float(os.getenv("POSTBACK_TIMEOUT_SECONDS", "10")),
        scheduler_secret=os.getenv("SCHEDULER_SECRET") or None,
        admin_token=os.getenv("ADMIN_API_TOKEN") or None,
        scope_mode=scope_mode,
        passthrough_unknown_offers=_env_bool("PASSTHROUGH_UNKNOWN_OFFERS", True),
        require_offer_id=_env_bool("REQUIRE_OFFER_ID", False),
        sweep_interval_seconds=float(os.getenv("SWEEP_INTERVAL_SECONDS", "0")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE") or None,
        cors_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    )


__all__ = [
    "DEFAULT_THRESHOLD",
    "DEFAULT_POSTBACK_BASE_URL",
    "ScopeMode",
    "Settings",
    "load_settings",
]
