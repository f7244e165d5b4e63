from __future__ import annotations
"""SQLAlchemy model for the append-only decision log."""
from decimal import Decimal
from sqlalchemy import DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from aggregator.database import Base


class DecisionLog(Base):
    __tablename__ = "conversion_logs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    attribution_key: Mapped[str | None] = mapped_column("clickid", String(255), nullable=True, index=True)
    offer_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    original_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    cached_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    total_sent: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    message: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
