"""
Tracking number resolution across the order, QC and outbound tables.
"""
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy.orm import Session

from fulfillment.core.errors import NotFoundError, ValidationFailedError
from fulfillment.db.models import (
    Order, QCRibbon, QCOnline, Outbound, ProcessingStatus, EventStatus, QCStatus
)

QCRecord = Union[QCRibbon, QCOnline]

PROCESSING_STATUS_LABELS = {
    ProcessingStatus.READY_TO_PICK: "Ready to Pick",
    ProcessingStatus.PICKING_PROGRESS: "Picking in Progress",
    ProcessingStatus.PICKING_PENDING: "Picking is Pending",
    ProcessingStatus.PICKING_COMPLETED: "Picking Completed",
    ProcessingStatus.QC_PROGRESS: "QC in Progress",
    ProcessingStatus.QC_COMPLETED: "QC Completed",
    ProcessingStatus.OUTBOUND_COMPLETED: "Outbound Completed",
}

EVENT_STATUS_LABELS = {
    EventStatus.IN_PROGRESS: "In Progress",
    EventStatus.CANCELED: "Canceled",
    EventStatus.DUPLICATED: "Duplicated",
}

QC_STATUS_LABELS = {
    QCStatus.IN_PROGRESS: "In Progress",
    QCStatus.PENDING: "Pending",
    QCStatus.COMPLETED: "Completed",
}


def normalize_tracking_number(value: Optional[str]) -> str:
    """Trim and upper-case a tracking number; reject blanks."""
    normalized = (value or "").strip().upper()
    if not normalized:
        raise ValidationFailedError("Tracking number is required.")
    return normalized


@dataclass
class TrackingRecords:
    """The zero-or-one row of each table sharing one tracking number."""
    tracking_number: str
    order: Optional[Order] = None
    qc_ribbon: Optional[QCRibbon] = None
    qc_online: Optional[QCOnline] = None
    outbound: Optional[Outbound] = None

    @property
    def qc(self) -> Optional[QCRecord]:
        return self.qc_ribbon or self.qc_online

    @property
    def qc_lane(self) -> Optional[str]:
        if self.qc_ribbon is not None:
            return "ribbon"
        if self.qc_online is not None:
            return "online"
        return None

    @property
    def is_empty(self) -> bool:
        return self.order is None and self.qc is None and self.outbound is None


def lock_order(db: Session, tracking_number: Optional[str] = None, order_id: Optional[int] = None) -> Optional[Order]:
    """
    Load an order with a row lock held until the transaction ends.

    The filter uses only the key so PostgreSQL re-evaluates the locked row
    after a concurrent writer commits. SQLite ignores FOR UPDATE.
    """
    query = db.query(Order)
    if order_id is not None:
        query = query.filter(Order.id == order_id)
    else:
        query = query.filter(Order.tracking_number == tracking_number)
    return query.with_for_update().populate_existing().first()


def resolve(db: Session, tracking_number: str, lock: bool = False) -> TrackingRecords:
    """
    Look up every record keyed by ``tracking_number``.

    With ``lock`` the order row is locked first, so the QC and outbound
    reads observe whatever a concurrent holder of that lock committed.
    """
    tracking_number = normalize_tracking_number(tracking_number)

    if lock:
        order = lock_order(db, tracking_number=tracking_number)
    else:
        order = db.query(Order).filter(Order.tracking_number == tracking_number).first()

    return TrackingRecords(
        tracking_number=tracking_number,
        order=order,
        qc_ribbon=db.query(QCRibbon).filter(QCRibbon.tracking_number == tracking_number).first(),
        qc_online=db.query(QCOnline).filter(QCOnline.tracking_number == tracking_number).first(),
        outbound=db.query(Outbound).filter(Outbound.tracking_number == tracking_number).first(),
    )


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _order_view(order: Order) -> dict:
    processing = ProcessingStatus(order.processing_status)
    event = EventStatus(order.event_status)
    return {
        "id": order.id,
        "order_ginee_id": order.order_ginee_id,
        "tracking_number": order.tracking_number,
        "processing_status": processing.value,
        "processing_status_label": PROCESSING_STATUS_LABELS[processing],
        "event_status": event.value,
        "event_status_label": EVENT_STATUS_LABELS[event],
        "channel": order.channel,
        "store": order.store,
        "buyer": order.buyer,
        "courier": order.courier,
        "sent_before": _iso(order.sent_before),
        "assigned_by": order.assigned_by,
        "assigned_at": _iso(order.assigned_at),
        "picked_by": order.picked_by,
        "picked_at": _iso(order.picked_at),
        "pending_by": order.pending_by,
        "pending_at": _iso(order.pending_at),
        "canceled_by": order.canceled_by,
        "canceled_at": _iso(order.canceled_at),
        "duplicated_by": order.duplicated_by,
        "duplicated_at": _iso(order.duplicated_at),
        "complained": order.complained,
        "details": [
            {
                "sku": d.sku,
                "product_name": d.product_name,
                "variant": d.variant,
                "quantity": d.quantity,
                "price": d.price,
                "is_valid": d.is_valid,
            }
            for d in order.details
        ],
    }


def _qc_view(lane: str, qc: QCRecord) -> dict:
    status = QCStatus(qc.status)
    return {
        "lane": lane,
        "id": qc.id,
        "qc_by": qc.qc_by,
        "status": status.value,
        "status_label": QC_STATUS_LABELS[status],
        "complained": qc.complained,
        "created_at": _iso(qc.created_at),
        "boxes": [{"box_id": d.box_id, "quantity": d.quantity} for d in qc.details],
    }


def _outbound_view(outbound: Outbound) -> dict:
    return {
        "id": outbound.id,
        "outbound_by": outbound.outbound_by,
        "expedition": outbound.expedition,
        "expedition_slug": outbound.expedition_slug,
        "expedition_color": outbound.expedition_color,
        "complained": outbound.complained,
        "created_at": _iso(outbound.created_at),
    }


def build_flow(records: TrackingRecords) -> dict:
    """Combine resolved records into one read-only flow document."""
    return {
        "tracking_number": records.tracking_number,
        "order": _order_view(records.order) if records.order is not None else None,
        "qc": _qc_view(records.qc_lane, records.qc) if records.qc is not None else None,
        "outbound": _outbound_view(records.outbound) if records.outbound is not None else None,
    }


def get_tracking_flow(db: Session, tracking_number: str) -> dict:
    """Return the flow document for a tracking number."""
    records = resolve(db, tracking_number)
    if records.is_empty:
        raise NotFoundError(f"No records found for tracking number {records.tracking_number}.")
    return build_flow(records)
