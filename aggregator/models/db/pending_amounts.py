from __future__ import annotations
"""SQLAlchemy model for cached (not yet flushed) conversion amounts.

Rows are only ever inserted and deleted. The amount owed by a scope's next
flush is the sum of its rows.
"""
from decimal import Decimal
from sqlalchemy import CheckConstraint, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from aggregator.database import Base


class PendingAmount(Base):
    __tablename__ = "cached_conversions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_cached_conversions_amount_positive"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    attribution_key: Mapped[str] = mapped_column("clickid", String(255), nullable=False, index=True)
    # No FK: unknown offers may be cached when pass-through is disabled. NULL = legacy request.
    offer_id: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
