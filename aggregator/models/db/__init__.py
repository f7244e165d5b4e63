from .verticals import Vertical
from .offers import Offer
from .pending_amounts import PendingAmount
from .decision_logs import DecisionLog
from .postback_attempts import PostbackAttempt
from .enums import EventOutcome, ResponseCode, FlushAction, LogAction

__all__ = [
    "Vertical",
    "Offer",
    "PendingAmount",
    "DecisionLog",
    "PostbackAttempt",
    "EventOutcome",
    "ResponseCode",
    "FlushAction",
    "LogAction",
]
