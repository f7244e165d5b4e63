from __future__ import annotations
"""SQLAlchemy model for offers (campaign identifiers seen on inbound conversions)."""
from typing import TYPE_CHECKING
from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

if TYPE_CHECKING:  # pragma: no cover
    from .verticals import Vertical
from aggregator.database import Base


class Offer(Base):
    __tablename__ = "offers"
    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    # Single FK column: reassigning an offer replaces its vertical
    vertical_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("verticals.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    vertical: Mapped[Vertical | None] = relationship("Vertical", back_populates="offers")
