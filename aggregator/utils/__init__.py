"""
Utilities package initialization.
"""
from .logger import get_logger, log_business_event, log_performance, setup_logging
from .time import elapsed_ms, utc_now

__all__ = ["get_logger", "log_business_event", "log_performance", "setup_logging", "elapsed_ms", "utc_now"]
