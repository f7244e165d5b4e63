"""Durable pool of cached (sub-threshold) conversion amounts.

Operations:
* ``add``: insert one pending row (no merge; rows are summed at read time).
* ``sum_for_scope``: total owed by a scope's next flush.
* ``delete_for_scope``: snapshot delete. Returns the exact rows removed so
  callers forward precisely what left the pool. A row inserted after the
  snapshot survives for the next flush; a row inside the snapshot is never
  counted twice.

The snapshot uses ``DELETE ... RETURNING`` where the dialect supports it and
otherwise selects the rows ``FOR UPDATE`` and deletes them by id inside the
same transaction.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import delete, false, func, or_, select, true
from sqlalchemy.sql.elements import ColumnElement

from aggregator.database import Database
from aggregator.models.db import PendingAmount
from aggregator.services.scope_resolver import Scope
from aggregator.services.validation import to_amount
from aggregator.utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PendingRow:
    id: int
    attribution_key: str
    offer_id: str | None
    amount: Decimal
    created_at: datetime | None


@dataclass(frozen=True)
class FlushSnapshot:
    """Rows removed by one ``delete_for_scope`` call, oldest first."""
    rows: tuple[PendingRow, ...] = field(default_factory=tuple)

    @property
    def count(self) -> int:
        return len(self.rows)

    @property
    def total(self) -> Decimal:
        return to_amount(sum((r.amount for r in self.rows), Decimal("0")))

    @property
    def oldest(self) -> PendingRow | None:
        return self.rows[0] if self.rows else None


def _scope_clause(scope: Scope) -> ColumnElement[bool]:
    if scope.offer_ids is None:
        return true()
    conditions: list[ColumnElement[bool]] = []
    if scope.offer_ids:
        conditions.append(PendingAmount.offer_id.in_(sorted(scope.offer_ids)))
    if scope.include_unattributed:
        conditions.append(PendingAmount.offer_id.is_(None))
    if not conditions:
        return false()
    return or_(*conditions)


_ROW_COLUMNS = (
    PendingAmount.id,
    PendingAmount.attribution_key,
    PendingAmount.offer_id,
    PendingAmount.amount,
    PendingAmount.created_at,
)


def _to_rows(raw: Sequence[Any]) -> tuple[PendingRow, ...]:
    rows = [
        PendingRow(id=r[0], attribution_key=r[1], offer_id=r[2], amount=to_amount(r[3]), created_at=r[4])
        for r in raw
    ]
    # created_at has second resolution on some backends; id breaks ties in insertion order
    rows.sort(key=lambda r: (r.created_at is None, r.created_at or datetime.min, r.id))
    return tuple(rows)


class AggregationStore:
    def __init__(self, database: Database):
        self.database = database

    def add(self, attribution_key: str, offer_id: str | None, amount: Decimal) -> int:
        with self.database.transaction() as session:
            row = PendingAmount(attribution_key=attribution_key, offer_id=offer_id, amount=to_amount(amount))
            session.add(row)
            session.flush()
            row_id = row.id
        logger.debug("Pending amount stored", row_id=row_id, clickid=attribution_key, offer_id=offer_id, amount=amount)
        return row_id

    def sum_for_scope(self, scope: Scope) -> Decimal:
        with self.database.session() as session:
            total = session.scalar(
                select(func.coalesce(func.sum(PendingAmount.amount), 0)).where(_scope_clause(scope))
            )
        return to_amount(total)

    def rows_for_scope(self, scope: Scope) -> tuple[PendingRow, ...]:
        with self.database.session() as session:
            raw = session.execute(select(*_ROW_COLUMNS).where(_scope_clause(scope))).all()
        return _to_rows(raw)

    def delete_for_scope(self, scope: Scope) -> FlushSnapshot:
        with self.database.transaction() as session:
            if self.database.supports_delete_returning:
                raw = session.execute(
                    delete(PendingAmount)
                    .where(_scope_clause(scope))
                    .returning(*_ROW_COLUMNS)
                    .execution_options(synchronize_session=False)
                ).all()
            else:
                raw = session.execute(
                    select(*_ROW_COLUMNS).where(_scope_clause(scope)).with_for_update()
                ).all()
                if raw:
                    session.execute(
                        delete(PendingAmount)
                        .where(PendingAmount.id.in_([r[0] for r in raw]))
                        .execution_options(synchronize_session=False)
                    )
        snapshot = FlushSnapshot(rows=_to_rows(raw))
        logger.debug("Scope snapshot deleted", scope=scope.key, rows=snapshot.count, total=snapshot.total)
        return snapshot

    def clear(self, scope: Scope | None = None) -> int:
        """Admin clear: drop pending rows (all of them when ``scope`` is None)."""
        return self.delete_for_scope(scope or Scope.everything()).count

    def pending_offer_ids(self) -> list[str | None]:
        with self.database.session() as session:
            return list(session.scalars(select(PendingAmount.offer_id).distinct()))


__all__ = ["AggregationStore", "FlushSnapshot", "PendingRow"]
