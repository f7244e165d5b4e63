from __future__ import annotations
"""SQLAlchemy model for the postback ledger (one row per forward attempt)."""
from decimal import Decimal
from sqlalchemy import Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from aggregator.database import Base


class PostbackAttempt(Base):
    __tablename__ = "postback_history"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    attribution_key: Mapped[str] = mapped_column("clickid", String(255), nullable=False, index=True)
    offer_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    postback_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    response_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
