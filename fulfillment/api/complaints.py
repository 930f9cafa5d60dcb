"""
Complaint API routes.
"""
from typing import List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from fulfillment.core.security import get_current_user_id
from fulfillment.db.session import get_db
from fulfillment.services import liability
from fulfillment.services.liability import UserFee

router = APIRouter(prefix="/api/complains", tags=["Complains"])


# ============= SCHEMAS =============

class ComplainCreate(BaseModel):
    tracking_number: str
    channel_id: int
    store_id: int
    reason: str


class UserFeeIn(BaseModel):
    user_id: int
    fee_charge: int


class ComplainReview(BaseModel):
    solution: str
    total_fee: int
    user_details: Optional[List[UserFeeIn]] = None


class ComplainCheck(BaseModel):
    checked: bool


class ComplainProductResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_sku: str
    quantity: int
    price: int


class ComplainUserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    fee_charge: int


class ComplainResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    tracking_number: str
    order_ginee_id: str
    channel_id: int
    store_id: int
    created_by: int
    reason: str
    solution: Optional[str]
    total_fee: Optional[int]
    checked: bool
    created_at: Optional[datetime]
    product_details: List[ComplainProductResponse] = []
    user_details: List[ComplainUserResponse] = []


# ============= COMPLAIN ROUTES =============

@router.post("", response_model=ComplainResponse, status_code=status.HTTP_201_CREATED)
def file_complaint(
    payload: ComplainCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """File a complaint and seed liability rows for everyone who handled the shipment."""
    return liability.file_complaint(
        db,
        payload.tracking_number,
        payload.channel_id,
        payload.store_id,
        payload.reason,
        actor_id=user_id,
    )


@router.get("/{complain_id}", response_model=ComplainResponse)
def get_complaint(
    complain_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return liability.get_complaint(db, complain_id)


@router.put("/{complain_id}", response_model=ComplainResponse)
def review_complaint(
    complain_id: int,
    payload: ComplainReview,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Set the solution and fees of a complaint."""
    fees = [UserFee(user_id=u.user_id, fee_charge=u.fee_charge) for u in payload.user_details or []]
    return liability.review_complaint(
        db,
        complain_id,
        payload.solution,
        payload.total_fee,
        actor_id=user_id,
        user_fees=fees,
    )


@router.put("/{complain_id}/check", response_model=ComplainResponse)
def check_complaint(
    complain_id: int,
    payload: ComplainCheck,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return liability.set_complaint_checked(db, complain_id, payload.checked, actor_id=user_id)
