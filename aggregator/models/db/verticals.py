from __future__ import annotations
"""SQLAlchemy model for verticals (aggregation scopes shared by offers)."""
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import CheckConstraint, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

if TYPE_CHECKING:  # pragma: no cover
    from .offers import Offer
from aggregator.database import Base


class Vertical(Base):
    __tablename__ = "verticals"
    __table_args__ = (
        CheckConstraint("threshold IS NULL OR threshold > 0", name="ck_verticals_threshold_positive"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    # NULL falls back to the configured default threshold
    threshold: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    offers: Mapped[list["Offer"]] = relationship("Offer", back_populates="vertical")
