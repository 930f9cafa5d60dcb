"""
Bulk order operations with per-item accounting.

Each item runs in its own transaction; a bad item is recorded and the batch
carries on.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fulfillment.core.errors import ConflictError, FulfillmentError, InvalidStateError, NotFoundError
from fulfillment.core.logging import get_logger, audit_logger
from fulfillment.db.models import Order, User, EventStatus, ProcessingStatus
from fulfillment.services.order_lifecycle import (
    OrderDraft, assign_picker, create_order, find_existing_order,
    normalize_optional_tracking_number,
)
from fulfillment.services.state_machine import OrderAction, can_transition
from fulfillment.services.tracking import normalize_tracking_number

logger = get_logger(__name__)


@dataclass
class BulkItemResult:
    index: int
    order_ginee_id: Optional[str] = None
    tracking_number: Optional[str] = None
    reason: Optional[str] = None
    order: Optional[Order] = None


@dataclass
class BulkResult:
    total: int = 0
    created: List[BulkItemResult] = field(default_factory=list)
    skipped: List[BulkItemResult] = field(default_factory=list)
    failed: List[BulkItemResult] = field(default_factory=list)

    @property
    def summary(self) -> dict:
        return {
            "total": self.total,
            "created": len(self.created),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
        }


def bulk_create_orders(db: Session, drafts: List[OrderDraft], actor_id: Optional[int] = None) -> BulkResult:
    """
    Create many orders. Existing identifiers are skipped, invalid items are
    failed with their reason; nothing is raised for a single item.
    """
    result = BulkResult(total=len(drafts))

    for index, draft in enumerate(drafts):
        order_ginee_id = (draft.order_ginee_id or "").strip().upper()
        item = BulkItemResult(index=index, order_ginee_id=order_ginee_id)
        try:
            item.tracking_number = normalize_optional_tracking_number(draft.tracking_number)
            if order_ginee_id and find_existing_order(db, order_ginee_id, item.tracking_number):
                item.reason = "Order already exists"
                result.skipped.append(item)
                continue

            item.order = create_order(db, draft, actor_id=actor_id)
            result.created.append(item)
        except ConflictError as e:
            # Lost a race against a concurrent insert of the same identifiers
            item.reason = e.message
            result.skipped.append(item)
        except FulfillmentError as e:
            item.reason = e.message
            result.failed.append(item)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Bulk create item {index} failed: {e}")
            item.reason = "Failed to create order"
            result.failed.append(item)

    audit_logger.log(
        action="order.bulk_created",
        user_id=actor_id,
        entity_type="order",
        details=result.summary,
    )
    return result


def bulk_assign_picker(db: Session, picker_id: int, tracking_numbers: List[str], actor_id: int) -> BulkResult:
    """
    Assign one picker to many orders.

    Raises:
        NotFoundError: the picker does not exist
    """
    picker = db.query(User).filter(User.id == picker_id, User.is_active == True).first()  # noqa: E712
    if picker is None:
        raise NotFoundError(f"Picker with id {picker_id} not found.")

    result = BulkResult(total=len(tracking_numbers))

    for index, raw in enumerate(tracking_numbers):
        item = BulkItemResult(index=index, tracking_number=(raw or "").strip().upper())
        try:
            tracking_number = normalize_tracking_number(raw)
            order = db.query(Order).filter(Order.tracking_number == tracking_number).first()
            if order is None:
                item.reason = "Order not found"
                result.skipped.append(item)
                continue
            if EventStatus(order.event_status) == EventStatus.CANCELED:
                item.reason = "Order is canceled"
                result.skipped.append(item)
                continue
            if not can_transition(order.processing_status, OrderAction.ASSIGN_PICKER):
                item.reason = f"Order is {ProcessingStatus(order.processing_status).value}, cannot assign picker"
                result.skipped.append(item)
                continue

            item.order = assign_picker(db, tracking_number, picker_id, actor_id)
            result.created.append(item)
        except (NotFoundError, InvalidStateError) as e:
            item.reason = e.message
            result.skipped.append(item)
        except FulfillmentError as e:
            item.reason = e.message
            result.failed.append(item)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Bulk assign item {index} failed: {e}")
            item.reason = "Failed to assign picker"
            result.failed.append(item)

    audit_logger.log(
        action="order.bulk_picker_assigned",
        user_id=actor_id,
        entity_type="order",
        details={"picker_id": picker_id, **result.summary},
    )
    return result
