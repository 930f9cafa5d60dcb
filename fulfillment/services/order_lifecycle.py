"""
Order lifecycle: creation, picking, cancellation, duplication and the
hand-off into QC.

Every state change locks the order row and writes its status through the
compare-and-set helpers in ``state_machine``.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fulfillment.core.clock import utcnow
from fulfillment.core.config import settings
from fulfillment.core.errors import (
    ConflictError, InvalidStateError, NotFoundError, ValidationFailedError
)
from fulfillment.core.logging import get_logger, audit_logger
from fulfillment.db.models import (
    Order, OrderDetail, PickedOrder, QCRibbon, QCOnline, Outbound, User,
    ProcessingStatus, EventStatus
)
from fulfillment.db.session import transaction
from fulfillment.services.state_machine import (
    OrderAction, guarded_update, is_in_flight, transition_order
)
from fulfillment.services.tracking import lock_order, normalize_tracking_number

logger = get_logger(__name__)


@dataclass
class OrderLineDraft:
    sku: str
    product_name: str
    quantity: int
    price: int
    variant: Optional[str] = None


@dataclass
class OrderDraft:
    """Input for creating one order."""
    order_ginee_id: str
    tracking_number: Optional[str] = None
    sent_before: Optional[datetime] = None
    channel: Optional[str] = None
    store: Optional[str] = None
    buyer: Optional[str] = None
    address: Optional[str] = None
    courier: Optional[str] = None
    details: List[OrderLineDraft] = field(default_factory=list)


def normalize_order_ginee_id(value: Optional[str]) -> str:
    normalized = (value or "").strip().upper()
    if not normalized:
        raise ValidationFailedError("Order Ginee ID is required.")
    return normalized


def normalize_optional_tracking_number(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return normalize_tracking_number(value)


def validate_lines(lines: List[OrderLineDraft]) -> None:
    """At least one line; every line has a SKU, quantity > 0 and price > 0."""
    if not lines:
        raise ValidationFailedError("Order must contain at least one product detail.")
    for index, line in enumerate(lines):
        if not (line.sku or "").strip():
            raise ValidationFailedError(f"Detail {index}: SKU is required.")
        if line.quantity is None or line.quantity <= 0:
            raise ValidationFailedError(f"Detail {index} ({line.sku}): quantity must be greater than 0.")
        if line.price is None or line.price <= 0:
            raise ValidationFailedError(f"Detail {index} ({line.sku}): price must be greater than 0.")


def _build_detail(line: OrderLineDraft, **extra) -> OrderDetail:
    return OrderDetail(
        sku=line.sku.strip(),
        product_name=line.product_name,
        variant=line.variant,
        quantity=line.quantity,
        price=line.price,
        is_valid=False,
        **extra,
    )


def _get_locked(db: Session, order_id: int) -> Order:
    order = lock_order(db, order_id=order_id)
    if order is None:
        raise NotFoundError(f"Order with id {order_id} not found.")
    return order


def find_existing_order(db: Session, order_ginee_id: str, tracking_number: Optional[str]) -> Optional[Order]:
    """Order already holding either identifier, if any."""
    conditions = [Order.order_ginee_id == order_ginee_id]
    if tracking_number:
        conditions.append(Order.tracking_number == tracking_number)
    return db.query(Order).filter(or_(*conditions)).first()


# ============= CREATE / READ =============

def create_order(db: Session, draft: OrderDraft, actor_id: Optional[int] = None) -> Order:
    """
    Create an order in ``ready_to_pick`` / ``in_progress``.

    Raises:
        ValidationFailedError: missing identifiers, deadline or valid lines
        ConflictError: the Ginee ID or tracking number is already used
    """
    order_ginee_id = normalize_order_ginee_id(draft.order_ginee_id)
    tracking_number = normalize_optional_tracking_number(draft.tracking_number)
    if draft.sent_before is None:
        raise ValidationFailedError("sentBefore is required.")
    validate_lines(draft.details)

    conflict = (
        f"Order with Order Ginee ID {order_ginee_id} or Tracking Number "
        f"{tracking_number} already exists."
    )
    with transaction(db, conflict_message=conflict):
        if find_existing_order(db, order_ginee_id, tracking_number) is not None:
            raise ConflictError(conflict)

        order = Order(
            order_ginee_id=order_ginee_id,
            tracking_number=tracking_number,
            processing_status=ProcessingStatus.READY_TO_PICK,
            event_status=EventStatus.IN_PROGRESS,
            channel=draft.channel,
            store=draft.store,
            buyer=draft.buyer,
            address=draft.address,
            courier=draft.courier,
            sent_before=draft.sent_before,
            complained=False,
        )
        order.details = [_build_detail(line) for line in draft.details]
        db.add(order)
        db.flush()

    audit_logger.log(
        action="order.created",
        user_id=actor_id,
        entity_type="order",
        entity_id=order.id,
        tracking_number=tracking_number,
        details={"order_ginee_id": order_ginee_id, "lines": len(draft.details)},
    )
    return order


def get_order(db: Session, order_id: int) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise NotFoundError(f"Order with id {order_id} not found.")
    return order


# ============= PICKING =============

def assign_picker(db: Session, tracking_number: str, picker_id: int, actor_id: int) -> Order:
    """Assign ``picker_id`` to the order and move it to ``picking_progress``."""
    tracking_number = normalize_tracking_number(tracking_number)

    with transaction(db):
        order = lock_order(db, tracking_number=tracking_number)
        if order is None:
            raise NotFoundError(f"Order with tracking number {tracking_number} not found.")
        picker = db.query(User).filter(User.id == picker_id, User.is_active == True).first()  # noqa: E712
        if picker is None:
            raise NotFoundError(f"Picker with id {picker_id} not found.")

        transition_order(
            db, order, OrderAction.ASSIGN_PICKER,
            picked_by=picker_id,
            assigned_by=actor_id,
            assigned_at=utcnow(),
        )

    audit_logger.log(
        action="order.picker_assigned",
        user_id=actor_id,
        entity_type="order",
        entity_id=order.id,
        tracking_number=tracking_number,
        details={"picker_id": picker_id},
    )
    return order


def mark_pending_picking(db: Session, order_id: int, actor_id: int) -> Order:
    """Park an order being picked; the assignment is cleared."""
    with transaction(db):
        order = _get_locked(db, order_id)
        transition_order(
            db, order, OrderAction.MARK_PENDING,
            picked_by=None,
            assigned_by=None,
            assigned_at=None,
            pending_by=actor_id,
            pending_at=utcnow(),
        )

    audit_logger.log(
        action="order.picking_pending",
        user_id=actor_id,
        entity_type="order",
        entity_id=order_id,
        tracking_number=order.tracking_number,
    )
    return order


def complete_picking(db: Session, order_id: int, actor_id: int) -> Order:
    """
    Finish picking. Only the assigned picker may complete; for anyone else
    the order is reported as not found.
    """
    with transaction(db):
        order = lock_order(db, order_id=order_id)
        if order is None or order.picked_by != actor_id:
            raise NotFoundError(f"Order with id {order_id} not found or not assigned to you.")

        transition_order(db, order, OrderAction.COMPLETE_PICKING, picked_at=utcnow())
        db.add(PickedOrder(order_id=order_id, picked_by=actor_id))
        db.flush()

    audit_logger.log(
        action="order.picking_completed",
        user_id=actor_id,
        entity_type="order",
        entity_id=order_id,
        tracking_number=order.tracking_number,
    )
    return order


def start_qc_process(db: Session, order_id: int, actor_id: int) -> Order:
    """Move a picked order to ``qc_progress`` without opening a QC record."""
    with transaction(db):
        order = _get_locked(db, order_id)
        transition_order(db, order, OrderAction.START_QC)

    audit_logger.log(
        action="order.qc_process_started",
        user_id=actor_id,
        entity_type="order",
        entity_id=order_id,
        tracking_number=order.tracking_number,
    )
    return order


# ============= EVENTS =============

def _ensure_editable(order: Order, verb: str) -> None:
    if EventStatus(order.event_status) == EventStatus.CANCELED:
        raise InvalidStateError(f"Canceled order cannot be {verb}.")
    if is_in_flight(order.processing_status):
        raise InvalidStateError(
            f"Order cannot be {verb} in {ProcessingStatus(order.processing_status).value} status."
        )


def cancel_order(db: Session, order_id: int, actor_id: int) -> Order:
    """Cancel an order and zero every detail quantity."""
    with transaction(db):
        order = _get_locked(db, order_id)
        _ensure_editable(order, "canceled")

        guarded_update(
            db, order,
            event_status=EventStatus.CANCELED,
            canceled_by=actor_id,
            canceled_at=utcnow(),
        )
        db.query(OrderDetail).filter(OrderDetail.order_id == order_id).update(
            {"quantity": 0}, synchronize_session=False
        )

    audit_logger.log(
        action="order.canceled",
        user_id=actor_id,
        entity_type="order",
        entity_id=order_id,
        tracking_number=order.tracking_number,
    )
    return order


def _propagate_tracking_number(db: Session, old: str, new: str) -> None:
    """Re-key QC and outbound rows to the renamed tracking number, best-effort."""
    for model in (QCRibbon, QCOnline, Outbound):
        try:
            with db.begin_nested():
                db.query(model).filter(model.tracking_number == old).update(
                    {"tracking_number": new}, synchronize_session=False
                )
        except SQLAlchemyError as e:
            logger.warning(f"Could not re-key {model.__tablename__} from {old} to {new}: {e}")


def duplicate_order(db: Session, order_id: int, actor_id: int) -> Tuple[Order, Order]:
    """
    Split an order into a renamed original and a fresh copy.

    The original gets ``DUPLICATE_ORDER_SUFFIX`` on its Ginee ID and
    ``DUPLICATE_TRACKING_PREFIX`` on its tracking number. The copy takes the
    original identifiers, processing status and lines. Both end up
    ``duplicated``.

    Returns:
        Tuple of (original, duplicate)
    """
    with transaction(db):
        original = _get_locked(db, order_id)
        _ensure_editable(original, "duplicated")
        if EventStatus(original.event_status) == EventStatus.DUPLICATED:
            raise InvalidStateError("Order has already been duplicated.")

        now = utcnow()
        order_ginee_id = original.order_ginee_id
        tracking_number = original.tracking_number
        renamed_tracking = (
            settings.DUPLICATE_TRACKING_PREFIX + tracking_number if tracking_number else None
        )
        copy = Order(
            order_ginee_id=order_ginee_id,
            tracking_number=tracking_number,
            processing_status=original.processing_status,
            event_status=EventStatus.DUPLICATED,
            channel=original.channel,
            store=original.store,
            buyer=original.buyer,
            address=original.address,
            courier=original.courier,
            sent_before=original.sent_before,
            duplicated_by=actor_id,
            duplicated_at=now,
            complained=False,
        )
        copy.details = [
            OrderDetail(
                sku=d.sku,
                product_name=d.product_name,
                variant=d.variant,
                quantity=d.quantity,
                price=d.price,
                is_valid=False,
            )
            for d in original.details
        ]

        guarded_update(
            db, original,
            order_ginee_id=order_ginee_id + settings.DUPLICATE_ORDER_SUFFIX,
            tracking_number=renamed_tracking,
            event_status=EventStatus.DUPLICATED,
            duplicated_by=actor_id,
            duplicated_at=now,
        )
        if tracking_number:
            _propagate_tracking_number(db, tracking_number, renamed_tracking)

        db.add(copy)
        db.flush()

    audit_logger.log(
        action="order.duplicated",
        user_id=actor_id,
        entity_type="order",
        entity_id=order_id,
        tracking_number=tracking_number,
        details={"duplicate_id": copy.id, "renamed_tracking_number": renamed_tracking},
    )
    return original, copy


def update_order_details(db: Session, order_id: int, lines: List[OrderLineDraft], actor_id: int) -> Order:
    """Replace all detail lines of an order that is not being worked on."""
    validate_lines(lines)

    with transaction(db):
        order = _get_locked(db, order_id)
        _ensure_editable(order, "modified")

        guarded_update(db, order, changed_by=actor_id, changed_at=utcnow())
        db.query(OrderDetail).filter(OrderDetail.order_id == order_id).delete(
            synchronize_session=False
        )
        db.add_all([_build_detail(line, order_id=order_id) for line in lines])
        db.flush()

    audit_logger.log(
        action="order.details_updated",
        user_id=actor_id,
        entity_type="order",
        entity_id=order_id,
        tracking_number=order.tracking_number,
        details={"lines": len(lines)},
    )
    return order
