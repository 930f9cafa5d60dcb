"""
Outbound API routes.
"""
from typing import Optional
from datetime import datetime
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from fulfillment.core.security import get_current_user_id
from fulfillment.db.session import get_db
from fulfillment.services.outbound import (
    ManualCarrier, create_outbound, get_outbound, update_outbound_carrier,
)

router = APIRouter(prefix="/api/outbounds", tags=["Outbounds"])


class OutboundCreate(BaseModel):
    tracking_number: str
    expedition: Optional[str] = None
    expedition_slug: Optional[str] = None
    expedition_color: Optional[str] = None


class OutboundCarrierUpdate(BaseModel):
    expedition: Optional[str] = None
    expedition_slug: Optional[str] = None
    expedition_color: Optional[str] = None


class OutboundResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tracking_number: str
    outbound_by: int
    expedition: str
    expedition_slug: str
    expedition_color: str
    complained: bool
    created_at: Optional[datetime]


@router.post("", response_model=OutboundResponse, status_code=status.HTTP_201_CREATED)
def register_outbound(
    payload: OutboundCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Register the shipment of a QC-completed order."""
    manual = ManualCarrier(
        expedition=payload.expedition,
        expedition_slug=payload.expedition_slug,
        expedition_color=payload.expedition_color,
    )
    return create_outbound(db, payload.tracking_number, actor_id=user_id, manual=manual)


@router.get("/{outbound_id}", response_model=OutboundResponse)
def read_outbound(
    outbound_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return get_outbound(db, outbound_id)


@router.put("/{outbound_id}", response_model=OutboundResponse)
def update_outbound(
    outbound_id: int,
    payload: OutboundCarrierUpdate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Correct the carrier of a manual-prefix outbound."""
    manual = ManualCarrier(
        expedition=payload.expedition,
        expedition_slug=payload.expedition_slug,
        expedition_color=payload.expedition_color,
    )
    return update_outbound_carrier(db, outbound_id, manual, actor_id=user_id)
