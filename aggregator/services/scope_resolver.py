"""Offer registry queries and aggregation scope resolution.

The registry is read-only from the engine's point of view: offers and
verticals are maintained by the admin routes. ``ScopeResolver`` turns an offer
identifier into the ``Scope`` whose pending rows are pooled with it and the
threshold that triggers a flush, according to the configured ``ScopeMode``:

* ``vertical``: offers sharing a vertical share one pool; an offer without a
  vertical is a pool of its own.
* ``offer``: every offer is its own pool.
* ``global``: one pool for everything.

Legacy requests (no offer id) fall into the global pool in global mode and
into the "unattributed" pool otherwise.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select

from aggregator.config import ScopeMode, Settings
from aggregator.database import Database
from aggregator.models.db import Offer, Vertical
from aggregator.services.validation import to_amount


@dataclass(frozen=True)
class Scope:
    """A pool of pending rows flushed together.

    ``offer_ids=None`` means every row regardless of offer. Otherwise the pool
    is the rows whose offer is in ``offer_ids`` plus, when
    ``include_unattributed`` is set, rows cached without an offer.
    """
    key: str
    offer_ids: frozenset[str] | None = frozenset()
    include_unattributed: bool = False
    name: str | None = None
    vertical_id: int | None = None

    @classmethod
    def everything(cls) -> "Scope":
        return cls(key="global", offer_ids=None, name="global")

    @classmethod
    def unattributed(cls) -> "Scope":
        return cls(key="unattributed", offer_ids=frozenset(), include_unattributed=True, name="unattributed")

    @classmethod
    def single_offer(cls, offer_id: str) -> "Scope":
        return cls(key=f"offer:{offer_id}", offer_ids=frozenset({offer_id}), name=offer_id)

    @property
    def is_global(self) -> bool:
        return self.offer_ids is None


@dataclass(frozen=True)
class OfferInfo:
    id: str
    name: str
    vertical_id: int | None
    vertical_name: str | None
    vertical_threshold: Decimal | None


@dataclass(frozen=True)
class VerticalInfo:
    id: int
    name: str
    threshold: Decimal | None
    description: str | None
    offer_ids: frozenset[str]


@dataclass(frozen=True)
class Resolution:
    """Everything the processor needs to decide about one offer."""
    offer: OfferInfo | None
    scope: Scope
    threshold: Decimal

    @property
    def known(self) -> bool:
        return self.offer is not None


class OfferRegistry:
    """Read queries over offers and verticals."""

    def __init__(self, database: Database):
        self.database = database

    def get_offer(self, offer_id: str) -> OfferInfo | None:
        with self.database.session() as session:
            row = session.execute(
                select(Offer.id, Offer.name, Offer.vertical_id, Vertical.name, Vertical.threshold)
                .outerjoin(Vertical, Offer.vertical_id == Vertical.id)
                .where(Offer.id == offer_id)
            ).first()
        if row is None:
            return None
        return OfferInfo(
            id=row[0],
            name=row[1],
            vertical_id=row[2],
            vertical_name=row[3],
            vertical_threshold=to_amount(row[4]) if row[4] is not None else None,
        )

    def vertical_offer_ids(self, vertical_id: int) -> frozenset[str]:
        with self.database.session() as session:
            ids = session.scalars(select(Offer.id).where(Offer.vertical_id == vertical_id)).all()
        return frozenset(ids)

    def get_vertical(self, vertical_id: int) -> VerticalInfo | None:
        return next((v for v in self.list_verticals() if v.id == vertical_id), None)

    def list_verticals(self) -> list[VerticalInfo]:
        with self.database.session() as session:
            verticals = session.execute(
                select(Vertical.id, Vertical.name, Vertical.threshold, Vertical.description).order_by(Vertical.id)
            ).all()
            members = session.execute(select(Offer.vertical_id, Offer.id).where(Offer.vertical_id.is_not(None))).all()
        by_vertical: dict[int, set[str]] = {}
        for vertical_id, offer_id in members:
            by_vertical.setdefault(vertical_id, set()).add(offer_id)
        return [
            VerticalInfo(
                id=v_id,
                name=name,
                threshold=to_amount(threshold) if threshold is not None else None,
                description=description,
                offer_ids=frozenset(by_vertical.get(v_id, ())),
            )
            for v_id, name, threshold, description in verticals
        ]

    def offer_vertical_map(self) -> dict[str, int | None]:
        with self.database.session() as session:
            return {offer_id: vertical_id for offer_id, vertical_id in session.execute(select(Offer.id, Offer.vertical_id))}


class ScopeResolver:
    """Maps offers to pooled scopes and payout thresholds. Performs no writes."""

    def __init__(self, registry: OfferRegistry, settings: Settings):
        self.registry = registry
        self.mode = settings.scope_mode
        self.default_threshold = to_amount(settings.default_threshold)

    def resolve(self, offer_id: str) -> Resolution:
        offer = self.registry.get_offer(offer_id)
        threshold = self._threshold(offer)
        if self.mode == ScopeMode.GLOBAL:
            return Resolution(offer=offer, scope=Scope.everything(), threshold=threshold)
        if self.mode == ScopeMode.VERTICAL and offer is not None and offer.vertical_id is not None:
            scope = self._vertical_scope(offer.vertical_id, offer.vertical_name, self.registry.vertical_offer_ids(offer.vertical_id))
            return Resolution(offer=offer, scope=scope, threshold=threshold)
        return Resolution(offer=offer, scope=Scope.single_offer(offer_id), threshold=threshold)

    def resolve_legacy(self) -> Resolution:
        scope = Scope.everything() if self.mode == ScopeMode.GLOBAL else Scope.unattributed()
        return Resolution(offer=None, scope=scope, threshold=self.default_threshold)

    def threshold_for(self, offer_id: str) -> Decimal:
        return self._threshold(self.registry.get_offer(offer_id))

    def scope_members(self, offer_id: str) -> frozenset[str]:
        """Offer ids pooled with ``offer_id`` (itself included).

        In global mode the pool is unbounded; the registered offers are
        returned together with ``offer_id``.
        """
        scope = self.resolve(offer_id).scope
        if scope.offer_ids is None:
            return frozenset(self.registry.offer_vertical_map()) | {offer_id}
        return scope.offer_ids

    def vertical_scope(self, vertical: VerticalInfo) -> Scope:
        return self._vertical_scope(vertical.id, vertical.name, vertical.offer_ids)

    def sweep_scopes(self, pending_offer_ids: Iterable[str | None]) -> list[Scope]:
        """Every scope the periodic flush must visit.

        ``pending_offer_ids`` are the distinct offer ids currently holding
        cached rows (``None`` for legacy rows).
        """
        if self.mode == ScopeMode.GLOBAL:
            return [Scope.everything()]
        pending = set(pending_offer_ids)
        has_unattributed = None in pending
        pending.discard(None)
        scopes: list[Scope] = []
        if self.mode == ScopeMode.VERTICAL:
            scopes.extend(self.vertical_scope(v) for v in self.registry.list_verticals())
            assignments = self.registry.offer_vertical_map()
            pending = {o for o in pending if assignments.get(o) is None}
        scopes.extend(Scope.single_offer(o) for o in sorted(pending))  # type: ignore[arg-type]
        if has_unattributed:
            scopes.append(Scope.unattributed())
        return scopes

    def _threshold(self, offer: OfferInfo | None) -> Decimal:
        if offer is not None and offer.vertical_threshold is not None:
            return offer.vertical_threshold
        return self.default_threshold

    @staticmethod
    def _vertical_scope(vertical_id: int, name: str | None, offer_ids: frozenset[str]) -> Scope:
        return Scope(key=f"vertical:{vertical_id}", offer_ids=offer_ids, name=name, vertical_id=vertical_id)


__all__ = ["Scope", "OfferInfo", "VerticalInfo", "Resolution", "OfferRegistry", "ScopeResolver"]
