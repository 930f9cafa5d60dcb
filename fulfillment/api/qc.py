"""
QC API routes, one router per lane.
"""
from typing import List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from fulfillment.core.security import get_current_user_id
from fulfillment.db.session import get_db
from fulfillment.services.qc_lane import BoxLine, QCLaneEngine, ribbon_engine, online_engine
from fulfillment.services.tracking import QC_STATUS_LABELS


# ============= SCHEMAS =============

class QCStart(BaseModel):
    tracking_number: str


class ValidateProductRequest(BaseModel):
    sku: str
    quantity: int


class BoxDetailIn(BaseModel):
    box_id: int
    quantity: int


class QCCompleteRequest(BaseModel):
    details: List[BoxDetailIn]


class QCBoxResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    box_id: int
    quantity: int


class QCResponse(BaseModel):
    id: int
    lane: str
    tracking_number: str
    qc_by: int
    status: str
    status_label: str
    complained: bool
    created_at: Optional[datetime]
    details: List[QCBoxResponse] = []


class ValidatedDetailResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sku: str
    quantity: int
    is_valid: bool


class QCCompleteResponse(BaseModel):
    completed: bool
    message: str
    qc: Optional[QCResponse] = None


def qc_to_response(engine: QCLaneEngine, qc) -> QCResponse:
    return QCResponse(
        id=qc.id,
        lane=engine.lane.value,
        tracking_number=qc.tracking_number,
        qc_by=qc.qc_by,
        status=qc.status.value,
        status_label=QC_STATUS_LABELS[qc.status],
        complained=qc.complained,
        created_at=qc.created_at,
        details=[QCBoxResponse.model_validate(d) for d in qc.details],
    )


def build_qc_router(engine: QCLaneEngine, prefix: str, tag: str) -> APIRouter:
    """Bind the QC routes to one lane's engine."""
    router = APIRouter(prefix=prefix, tags=[tag])

    @router.post("", response_model=QCResponse, status_code=status.HTTP_201_CREATED)
    def start_qc(
        payload: QCStart,
        user_id: int = Depends(get_current_user_id),
        db: Session = Depends(get_db)
    ):
        """Start QC for a picked order."""
        return qc_to_response(engine, engine.start(db, payload.tracking_number, actor_id=user_id))

    @router.get("/{qc_id}", response_model=QCResponse)
    def get_qc(
        qc_id: int,
        user_id: int = Depends(get_current_user_id),
        db: Session = Depends(get_db)
    ):
        return qc_to_response(engine, engine.get(db, qc_id))

    @router.post("/{qc_id}/validate", response_model=ValidatedDetailResponse)
    def validate_product(
        qc_id: int,
        payload: ValidateProductRequest,
        user_id: int = Depends(get_current_user_id),
        db: Session = Depends(get_db)
    ):
        """Check one scanned product against the order."""
        return engine.validate_product(db, qc_id, payload.sku, payload.quantity, actor_id=user_id)

    @router.post("/{qc_id}/pending", response_model=QCResponse)
    def mark_pending(
        qc_id: int,
        user_id: int = Depends(get_current_user_id),
        db: Session = Depends(get_db)
    ):
        return qc_to_response(engine, engine.mark_pending(db, qc_id, actor_id=user_id))

    @router.post("/{qc_id}/resume", response_model=QCResponse)
    def resume(
        qc_id: int,
        user_id: int = Depends(get_current_user_id),
        db: Session = Depends(get_db)
    ):
        return qc_to_response(engine, engine.resume(db, qc_id, actor_id=user_id))

    @router.post("/{qc_id}/complete", response_model=QCCompleteResponse)
    def complete(
        qc_id: int,
        payload: QCCompleteRequest,
        user_id: int = Depends(get_current_user_id),
        db: Session = Depends(get_db)
    ):
        """Pack into boxes and close the QC record."""
        boxes = [BoxLine(box_id=d.box_id, quantity=d.quantity) for d in payload.details]
        outcome = engine.complete(db, qc_id, boxes, actor_id=user_id)
        return QCCompleteResponse(
            completed=outcome.completed,
            message=outcome.message,
            qc=qc_to_response(engine, outcome.qc) if outcome.qc is not None else None,
        )

    return router


ribbon_router = build_qc_router(ribbon_engine, "/api/ribbons/qc-ribbons", "QC Ribbons")
online_router = build_qc_router(online_engine, "/api/onlines/qc-onlines", "QC Onlines")
