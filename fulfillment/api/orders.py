"""
Orders API routes.
"""
from typing import List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from fulfillment.core.security import get_current_user_id
from fulfillment.db.session import get_db
from fulfillment.db.models import Order
from fulfillment.services import order_lifecycle
from fulfillment.services.bulk_ingest import BulkResult, bulk_assign_picker, bulk_create_orders
from fulfillment.services.order_lifecycle import OrderDraft, OrderLineDraft
from fulfillment.services.tracking import EVENT_STATUS_LABELS, PROCESSING_STATUS_LABELS

router = APIRouter(prefix="/api/orders", tags=["Orders"])


# ============= SCHEMAS =============

class OrderDetailIn(BaseModel):
    sku: str
    product_name: str
    variant: Optional[str] = None
    quantity: int
    price: int

    def to_draft(self) -> OrderLineDraft:
        return OrderLineDraft(
            sku=self.sku,
            product_name=self.product_name,
            variant=self.variant,
            quantity=self.quantity,
            price=self.price,
        )


class OrderCreate(BaseModel):
    order_ginee_id: str
    tracking_number: Optional[str] = None
    sent_before: Optional[datetime] = None
    channel: Optional[str] = None
    store: Optional[str] = None
    buyer: Optional[str] = None
    address: Optional[str] = None
    courier: Optional[str] = None
    details: List[OrderDetailIn] = Field(default_factory=list)

    def to_draft(self) -> OrderDraft:
        return OrderDraft(
            order_ginee_id=self.order_ginee_id,
            tracking_number=self.tracking_number,
            sent_before=self.sent_before,
            channel=self.channel,
            store=self.store,
            buyer=self.buyer,
            address=self.address,
            courier=self.courier,
            details=[d.to_draft() for d in self.details],
        )


class BulkOrderCreate(BaseModel):
    orders: List[OrderCreate]


class OrderDetailsUpdate(BaseModel):
    details: List[OrderDetailIn]


class AssignPickerRequest(BaseModel):
    tracking_number: str
    picker_id: int


class BulkAssignPickerRequest(BaseModel):
    picker_id: int
    tracking_numbers: List[str]


class OrderDetailResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sku: str
    product_name: str
    variant: Optional[str]
    quantity: int
    price: int
    is_valid: bool


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_ginee_id: str
    tracking_number: Optional[str]
    processing_status: str
    processing_status_label: str
    event_status: str
    event_status_label: str
    channel: Optional[str]
    store: Optional[str]
    buyer: Optional[str]
    address: Optional[str]
    courier: Optional[str]
    sent_before: datetime
    assigned_by: Optional[int]
    assigned_at: Optional[datetime]
    picked_by: Optional[int]
    picked_at: Optional[datetime]
    pending_by: Optional[int]
    pending_at: Optional[datetime]
    changed_by: Optional[int]
    changed_at: Optional[datetime]
    duplicated_by: Optional[int]
    duplicated_at: Optional[datetime]
    canceled_by: Optional[int]
    canceled_at: Optional[datetime]
    complained: bool
    details: List[OrderDetailResponse] = []


class DuplicateResponse(BaseModel):
    original_order: OrderResponse
    duplicated_order: OrderResponse


class BulkItemResponse(BaseModel):
    index: int
    order_ginee_id: Optional[str] = None
    tracking_number: Optional[str] = None
    reason: Optional[str] = None
    order: Optional[OrderResponse] = None


class BulkResponse(BaseModel):
    message: str
    summary: dict
    created: List[BulkItemResponse]
    skipped: List[BulkItemResponse]
    failed: List[BulkItemResponse]


def order_to_response(order: Order) -> OrderResponse:
    processing = order.processing_status
    event = order.event_status
    return OrderResponse(
        id=order.id,
        order_ginee_id=order.order_ginee_id,
        tracking_number=order.tracking_number,
        processing_status=processing.value,
        processing_status_label=PROCESSING_STATUS_LABELS[processing],
        event_status=event.value,
        event_status_label=EVENT_STATUS_LABELS[event],
        channel=order.channel,
        store=order.store,
        buyer=order.buyer,
        address=order.address,
        courier=order.courier,
        sent_before=order.sent_before,
        assigned_by=order.assigned_by,
        assigned_at=order.assigned_at,
        picked_by=order.picked_by,
        picked_at=order.picked_at,
        pending_by=order.pending_by,
        pending_at=order.pending_at,
        changed_by=order.changed_by,
        changed_at=order.changed_at,
        duplicated_by=order.duplicated_by,
        duplicated_at=order.duplicated_at,
        canceled_by=order.canceled_by,
        canceled_at=order.canceled_at,
        complained=order.complained,
        details=[OrderDetailResponse.model_validate(d) for d in order.details],
    )


def _bulk_to_response(result: BulkResult, message: str) -> BulkResponse:
    def items(entries):
        return [
            BulkItemResponse(
                index=e.index,
                order_ginee_id=e.order_ginee_id,
                tracking_number=e.tracking_number,
                reason=e.reason,
                order=order_to_response(e.order) if e.order is not None else None,
            )
            for e in entries
        ]

    return BulkResponse(
        message=message,
        summary=result.summary,
        created=items(result.created),
        skipped=items(result.skipped),
        failed=items(result.failed),
    )


# ============= ORDER ROUTES =============

@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Create a single order."""
    order = order_lifecycle.create_order(db, payload.to_draft(), actor_id=user_id)
    return order_to_response(order)


@router.post("/bulk", response_model=BulkResponse)
def bulk_create(
    payload: BulkOrderCreate,
    response: Response,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Create many orders in one call.

    201 when at least one order was created, 200 when none was created but
    some already existed, 400 when every order failed.
    """
    result = bulk_create_orders(db, [o.to_draft() for o in payload.orders], actor_id=user_id)

    if result.created:
        response.status_code = status.HTTP_201_CREATED
        message = "Bulk order creation completed"
    elif result.skipped:
        response.status_code = status.HTTP_200_OK
        message = "No orders created, existing orders were skipped"
    else:
        response.status_code = status.HTTP_400_BAD_REQUEST
        message = "No orders could be created"

    return _bulk_to_response(result, message)


@router.post("/assign-picker", response_model=OrderResponse)
def assign_picker(
    payload: AssignPickerRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Assign a picker to an order by tracking number."""
    order = order_lifecycle.assign_picker(db, payload.tracking_number, payload.picker_id, actor_id=user_id)
    return order_to_response(order)


@router.post("/bulk-assign-picker", response_model=BulkResponse)
def bulk_assign(
    payload: BulkAssignPickerRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Assign one picker to many orders."""
    result = bulk_assign_picker(db, payload.picker_id, payload.tracking_numbers, actor_id=user_id)
    return _bulk_to_response(result, "Bulk picker assignment completed")


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Get an order with its details."""
    return order_to_response(order_lifecycle.get_order(db, order_id))


@router.put("/{order_id}", response_model=OrderResponse)
def update_order_details(
    order_id: int,
    payload: OrderDetailsUpdate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Replace the detail lines of an order."""
    order = order_lifecycle.update_order_details(
        db, order_id, [d.to_draft() for d in payload.details], actor_id=user_id
    )
    return order_to_response(order)


@router.post("/{order_id}/pending", response_model=OrderResponse)
def mark_pending(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return order_to_response(order_lifecycle.mark_pending_picking(db, order_id, actor_id=user_id))


@router.post("/{order_id}/complete-picking", response_model=OrderResponse)
def complete_picking(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Complete picking; only the assigned picker may call this."""
    return order_to_response(order_lifecycle.complete_picking(db, order_id, actor_id=user_id))


@router.post("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return order_to_response(order_lifecycle.cancel_order(db, order_id, actor_id=user_id))


@router.post("/{order_id}/duplicate", response_model=DuplicateResponse, status_code=status.HTTP_201_CREATED)
def duplicate_order(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Duplicate an order; both the renamed original and the copy are returned."""
    original, duplicate = order_lifecycle.duplicate_order(db, order_id, actor_id=user_id)
    return DuplicateResponse(
        original_order=order_to_response(original),
        duplicated_order=order_to_response(duplicate),
    )


@router.post("/{order_id}/qc-process", response_model=OrderResponse)
def start_qc_process(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return order_to_response(order_lifecycle.start_qc_process(db, order_id, actor_id=user_id))
