"""
Order status transition table and compare-and-set status writes.
"""
import enum
from typing import Dict, FrozenSet, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from fulfillment.core.errors import ConflictError, InvalidStateError
from fulfillment.db.models import Order, ProcessingStatus, EventStatus


class OrderAction(str, enum.Enum):
    ASSIGN_PICKER = "assign_picker"
    MARK_PENDING = "mark_pending"
    COMPLETE_PICKING = "complete_picking"
    START_QC = "start_qc"
    COMPLETE_QC = "complete_qc"
    REGISTER_OUTBOUND = "register_outbound"


TRANSITIONS: Dict[OrderAction, Tuple[FrozenSet[ProcessingStatus], ProcessingStatus]] = {
    OrderAction.ASSIGN_PICKER: (
        frozenset({ProcessingStatus.READY_TO_PICK, ProcessingStatus.PICKING_PENDING}),
        ProcessingStatus.PICKING_PROGRESS,
    ),
    OrderAction.MARK_PENDING: (
        frozenset({ProcessingStatus.PICKING_PROGRESS}),
        ProcessingStatus.PICKING_PENDING,
    ),
    OrderAction.COMPLETE_PICKING: (
        frozenset({ProcessingStatus.PICKING_PROGRESS}),
        ProcessingStatus.PICKING_COMPLETED,
    ),
    OrderAction.START_QC: (
        frozenset({ProcessingStatus.PICKING_COMPLETED}),
        ProcessingStatus.QC_PROGRESS,
    ),
    OrderAction.COMPLETE_QC: (
        frozenset({ProcessingStatus.QC_PROGRESS}),
        ProcessingStatus.QC_COMPLETED,
    ),
    OrderAction.REGISTER_OUTBOUND: (
        frozenset({ProcessingStatus.QC_COMPLETED}),
        ProcessingStatus.OUTBOUND_COMPLETED,
    ),
}

# Cancel, duplicate and detail edits are blocked while work is under way
IN_FLIGHT = frozenset({ProcessingStatus.PICKING_PROGRESS, ProcessingStatus.QC_PROGRESS})


def can_transition(current: ProcessingStatus, action: OrderAction) -> bool:
    allowed, _ = TRANSITIONS[action]
    return ProcessingStatus(current) in allowed


def next_processing_status(current: ProcessingStatus, action: OrderAction) -> ProcessingStatus:
    """Target status of ``action`` from ``current``, or InvalidStateError."""
    allowed, target = TRANSITIONS[action]
    current = ProcessingStatus(current)
    if current not in allowed:
        expected = ", ".join(sorted(s.value for s in allowed))
        raise InvalidStateError(
            f"Cannot {action.value.replace('_', ' ')}: order is {current.value}, expected {expected}."
        )
    return target


def is_in_flight(status: ProcessingStatus) -> bool:
    return ProcessingStatus(status) in IN_FLIGHT


def guarded_update(db: Session, order: Order, **values) -> None:
    """
    Write ``values`` only if the order still has the statuses read earlier.

    Zero affected rows means another transaction changed the order first;
    that surfaces as ConflictError. The in-memory instance is expired so the
    next attribute access reloads the committed row.
    """
    observed_processing = order.processing_status
    observed_event = order.event_status

    result = db.execute(
        update(Order)
        .where(
            Order.id == order.id,
            Order.processing_status == observed_processing,
            Order.event_status == observed_event,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(
            f"Order {order.tracking_number or order.id} was modified concurrently, retry the operation."
        )
    db.expire(order)


def transition_order(db: Session, order: Order, action: OrderAction, **values) -> ProcessingStatus:
    """
    Apply ``action`` to a non-canceled order through a compare-and-set write.

    Extra ``values`` (audit columns) are written in the same statement.
    """
    if EventStatus(order.event_status) == EventStatus.CANCELED:
        raise InvalidStateError(f"Order {order.tracking_number or order.id} is canceled.")

    target = next_processing_status(order.processing_status, action)
    guarded_update(db, order, processing_status=target, **values)
    return target
