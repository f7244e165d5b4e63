"""Central Enum definitions for the flush engine.

Outcome and response-code values are wire/DB visible; keep them stable.
"""
from __future__ import annotations
import enum


class EventOutcome(str, enum.Enum):
    REJECTED = "rejected"
    CACHED = "cached"
    FLUSHED_SUCCESS = "flushed-success"
    FLUSHED_FAILURE = "flushed-failure"


class ResponseCode(str, enum.Enum):
    """Body returned by the conversion endpoint (always with HTTP 200)."""
    REJECTED = "0"
    CACHED = "1"
    FORWARDED = "2"
    FORWARD_FAILED = "3"
    INTERNAL_ERROR = "4"


class FlushAction(str, enum.Enum):
    NO_CACHE = "no_cache"
    CACHE_FLUSHED = "cache_flushed"
    ERROR = "error"


class LogAction(str, enum.Enum):
    """Action column of the decision log."""
    REJECTED = "rejected"
    CACHED = "cached"
    PASSTHROUGH_POSTBACK = "passthrough_postback"
    POSTBACK_SUCCESS = "postback_success"
    POSTBACK_FAILED = "postback_failed"
    SCOPE_FLUSH = "scope_flush"
    SCOPE_FLUSH_POSTBACK_SUCCESS = "scope_flush_postback_success"
    SCOPE_FLUSH_POSTBACK_FAILED = "scope_flush_postback_failed"
    SWEEP_COMPLETED = "sweep_completed"
    SWEEP_FAILED = "sweep_failed"
    CACHE_CLEARED = "cache_cleared"
    INTERNAL_ERROR = "internal_error"


OUTCOME_CODES: dict[EventOutcome, ResponseCode] = {
    EventOutcome.REJECTED: ResponseCode.REJECTED,
    EventOutcome.CACHED: ResponseCode.CACHED,
    EventOutcome.FLUSHED_SUCCESS: ResponseCode.FORWARDED,
    EventOutcome.FLUSHED_FAILURE: ResponseCode.FORWARD_FAILED,
}

__all__ = [
    "EventOutcome",
    "ResponseCode",
    "FlushAction",
    "LogAction",
    "OUTCOME_CODES",
]
