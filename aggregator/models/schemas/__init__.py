from .base import ResponseBase
from .registry import (
    VerticalUpsert,
    VerticalRead,
    OfferUpsert,
    OfferRead,
    ClearCacheRequest,
    FlushVerticalRequest,
)

__all__ = [
    "ResponseBase",
    "VerticalUpsert",
    "VerticalRead",
    "OfferUpsert",
    "OfferRead",
    "ClearCacheRequest",
    "FlushVerticalRequest",
]
