"""
Pydantic schemas for the offer / vertical registry.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class VerticalUpsert(BaseModel):
    """Create a vertical, or update the one with the same name."""
    name: str = Field(min_length=1, max_length=100)
    threshold: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2, description="Flush threshold; default applies when omitted")
    description: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"name": "Sweepstakes", "threshold": "20.00", "description": "Low payout lead gen"}
    })


class VerticalRead(BaseModel):
    id: int
    name: str
    threshold: Optional[Decimal] = None
    effective_threshold: Decimal
    description: Optional[str] = None
    offer_ids: List[str] = Field(default_factory=list)


class OfferUpsert(BaseModel):
    """Create an offer or update it; ``vertical_id`` replaces any previous assignment."""
    id: str = Field(min_length=1, max_length=50, pattern=r"^[a-zA-Z0-9_-]+$")
    name: str = Field(min_length=1, max_length=255)
    vertical_id: Optional[int] = Field(None, description="Vertical to aggregate with; null unassigns")


class OfferRead(BaseModel):
    id: str
    name: str
    vertical_id: Optional[int] = None
    vertical_name: Optional[str] = None
    created_at: Optional[datetime] = None


class ClearCacheRequest(BaseModel):
    """Clear one vertical, one offer, or (both omitted) the whole cache."""
    vertical_id: Optional[int] = None
    offer_id: Optional[str] = Field(None, min_length=1, max_length=50)


class FlushVerticalRequest(BaseModel):
    vertical_id: int
