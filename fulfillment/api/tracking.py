"""
Tracking flow API route.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from fulfillment.core.security import get_current_user_id
from fulfillment.db.session import get_db
from fulfillment.services.tracking import get_tracking_flow

router = APIRouter(prefix="/api/tracking", tags=["Tracking"])


@router.get("/{tracking_number}")
def read_tracking_flow(
    tracking_number: str,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Order, QC and outbound records sharing one tracking number."""
    return get_tracking_flow(db, tracking_number)
