"""
Offer and vertical registry maintenance.

The flush engine only reads these tables; this router is the write path.
"""
from typing import List, Union
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session
from aggregator.api.deps import get_db, get_registry, get_request_id, get_settings, require_admin
from aggregator.config import Settings
from aggregator.models.db import Offer, Vertical
from aggregator.models.schemas import OfferRead, OfferUpsert, VerticalRead, VerticalUpsert
from aggregator.services.scope_resolver import OfferRegistry, VerticalInfo
from aggregator.utils import get_logger, log_business_event

router = APIRouter(dependencies=[Depends(require_admin)])
logger = get_logger(__name__)


def _vertical_read(vertical: Union[Vertical, VerticalInfo], settings: Settings, offer_ids: List[str]) -> VerticalRead:
    return VerticalRead(
        id=vertical.id,
        name=vertical.name,
        threshold=vertical.threshold,
        effective_threshold=vertical.threshold if vertical.threshold is not None else settings.default_threshold,
        description=vertical.description,
        offer_ids=sorted(offer_ids),
    )


@router.get("/verticals", response_model=List[VerticalRead], summary="List verticals")
async def list_verticals(
    registry: OfferRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
) -> List[VerticalRead]:
    return [_vertical_read(v, settings, list(v.offer_ids)) for v in registry.list_verticals()]


@router.post("/verticals", response_model=VerticalRead, status_code=status.HTTP_201_CREATED, summary="Create or update a vertical")
async def upsert_vertical(
    payload: VerticalUpsert,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    request_id: str = Depends(get_request_id),
) -> VerticalRead:
    vertical = db.scalars(select(Vertical).where(Vertical.name == payload.name)).first()
    created = vertical is None
    if vertical is None:
        vertical = Vertical(name=payload.name)
        db.add(vertical)
    vertical.threshold = payload.threshold
    vertical.description = payload.description
    db.commit()
    db.refresh(vertical)
    offer_ids = list(db.scalars(select(Offer.id).where(Offer.vertical_id == vertical.id)))
    log_business_event(
        "vertical_created" if created else "vertical_updated",
        {"vertical_id": vertical.id, "vertical": vertical.name, "threshold": vertical.threshold},
        request_id=request_id,
    )
    return _vertical_read(vertical, settings, offer_ids)


@router.get("/offers", response_model=List[OfferRead], summary="List offers")
async def list_offers(db: Session = Depends(get_db)) -> List[OfferRead]:
    rows = db.execute(
        select(Offer.id, Offer.name, Offer.vertical_id, Vertical.name, Offer.created_at)
        .outerjoin(Vertical, Offer.vertical_id == Vertical.id)
        .order_by(Offer.id)
    ).all()
    return [
        OfferRead(id=o_id, name=name, vertical_id=v_id, vertical_name=v_name, created_at=created_at)
        for o_id, name, v_id, v_name, created_at in rows
    ]


@router.post("/offers", response_model=OfferRead, status_code=status.HTTP_201_CREATED, summary="Create or update an offer")
async def upsert_offer(
    payload: OfferUpsert,
    db: Session = Depends(get_db),
    request_id: str = Depends(get_request_id),
) -> OfferRead:
    vertical = None
    if payload.vertical_id is not None:
        vertical = db.get(Vertical, payload.vertical_id)
        if vertical is None:
            logger.warning("Offer upsert failed: vertical not found", offer_id=payload.id, vertical_id=payload.vertical_id)
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Vertical {payload.vertical_id} not found")

    offer = db.get(Offer, payload.id)
    previous_vertical = offer.vertical_id if offer is not None else None
    if offer is None:
        offer = Offer(id=payload.id, name=payload.name)
        db.add(offer)
    offer.name = payload.name
    offer.vertical_id = payload.vertical_id
    db.commit()
    db.refresh(offer)
    log_business_event(
        "offer_upserted",
        {"offer_id": offer.id, "vertical_id": offer.vertical_id, "previous_vertical_id": previous_vertical},
        request_id=request_id,
    )
    return OfferRead(
        id=offer.id,
        name=offer.name,
        vertical_id=offer.vertical_id,
        vertical_name=vertical.name if vertical is not None else None,
        created_at=offer.created_at,  # type: ignore[arg-type]
    )
