"""
QC lane engine shared by the ribbon and online lanes.

A tracking number can be quality-checked in exactly one lane. A QC record
moves in_progress -> pending <-> in_progress -> completed; completion
writes the packed boxes once and moves the order to ``qc_completed``.
"""
import enum
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from sqlalchemy import update
from sqlalchemy.orm import Session

from fulfillment.core.errors import (
    BoxNotFoundError, ConflictError, CrossLaneConflictError, DuplicateBoxIdError,
    InvalidStateError, NotFoundError, QuantityMismatchError, ValidationFailedError,
    ValidationIncompleteError,
)
from fulfillment.core.logging import get_logger, audit_logger
from fulfillment.db.models import (
    Box, OrderDetail, QCRibbon, QCRibbonDetail, QCOnline, QCOnlineDetail, QCStatus
)
from fulfillment.db.session import transaction
from fulfillment.services.state_machine import OrderAction, transition_order
from fulfillment.services.tracking import lock_order, normalize_tracking_number

logger = get_logger(__name__)

QCRecord = Union[QCRibbon, QCOnline]


class QCLane(str, enum.Enum):
    RIBBON = "ribbon"
    ONLINE = "online"

    @property
    def other(self) -> "QCLane":
        return QCLane.ONLINE if self is QCLane.RIBBON else QCLane.RIBBON


_LANE_MODELS = {
    QCLane.RIBBON: (QCRibbon, QCRibbonDetail, "qc_ribbon_id"),
    QCLane.ONLINE: (QCOnline, QCOnlineDetail, "qc_online_id"),
}


@dataclass
class BoxLine:
    box_id: int
    quantity: int


@dataclass
class QCCompletion:
    """Outcome of a complete call; ``completed`` is False for no-ops."""
    qc: Optional[QCRecord]
    completed: bool
    message: str


class QCLaneEngine:
    """QC operations bound to one lane's tables."""

    def __init__(self, lane: QCLane):
        self.lane = lane
        self.model, self.detail_model, self.detail_fk = _LANE_MODELS[lane]
        self.other_model = _LANE_MODELS[lane.other][0]
        self.entity_type = f"qc_{lane.value}"

    def _label(self) -> str:
        return f"QC {self.lane.value.title()}"

    def _find(self, db: Session, qc_id: int) -> Optional[QCRecord]:
        return db.query(self.model).filter(self.model.id == qc_id).first()

    def get(self, db: Session, qc_id: int) -> QCRecord:
        qc = self._find(db, qc_id)
        if qc is None:
            raise NotFoundError(f"{self._label()} with id {qc_id} not found.")
        return qc

    def _set_status(self, db: Session, qc: QCRecord, status: QCStatus) -> None:
        """Compare-and-set on the QC status column."""
        result = db.execute(
            update(self.model)
            .where(self.model.id == qc.id, self.model.status == qc.status)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(
                f"{self._label()} {qc.tracking_number} was modified concurrently, retry the operation."
            )
        db.expire(qc)

    # ============= START =============

    def start(self, db: Session, tracking_number: str, actor_id: int) -> QCRecord:
        """
        Open a QC record for the tracking number and move the order to
        ``qc_progress``.

        Raises:
            ConflictError: a record already exists in this lane
            CrossLaneConflictError: a record exists in the other lane
            NotFoundError: no order carries the tracking number
            InvalidStateError: the order is canceled or not picking_completed
        """
        tracking_number = normalize_tracking_number(tracking_number)
        conflict = f"{self._label()} for tracking number {tracking_number} already exists."

        with transaction(db, conflict_message=conflict):
            # Lock first so the existence checks below see a concurrent winner
            order = lock_order(db, tracking_number=tracking_number)

            if db.query(self.model).filter(self.model.tracking_number == tracking_number).first():
                raise ConflictError(conflict)
            if db.query(self.other_model).filter(self.other_model.tracking_number == tracking_number).first():
                raise CrossLaneConflictError(tracking_number, self.lane.other.value)
            if order is None:
                raise NotFoundError(f"Order with tracking number {tracking_number} not found.")

            transition_order(db, order, OrderAction.START_QC)
            qc = self.model(
                tracking_number=tracking_number,
                qc_by=actor_id,
                status=QCStatus.IN_PROGRESS,
                complained=False,
            )
            db.add(qc)
            db.flush()

        audit_logger.log(
            action=f"{self.entity_type}.started",
            user_id=actor_id,
            entity_type=self.entity_type,
            entity_id=qc.id,
            tracking_number=tracking_number,
        )
        return qc

    # ============= VALIDATE =============

    def validate_product(self, db: Session, qc_id: int, sku: str, quantity: int, actor_id: int) -> OrderDetail:
        """
        Mark the order line for ``sku`` as checked. The scanned quantity
        must equal the ordered quantity. Repeating a validation is harmless.
        """
        sku = (sku or "").strip()
        if not sku:
            raise ValidationFailedError("SKU is required.")

        with transaction(db):
            qc = self.get(db, qc_id)
            status = QCStatus(qc.status)
            if status not in (QCStatus.IN_PROGRESS, QCStatus.PENDING):
                raise InvalidStateError(
                    f"{self._label()} {qc.tracking_number} is {status.value}, products can no longer be validated."
                )
            order = lock_order(db, tracking_number=qc.tracking_number)
            if order is None:
                raise NotFoundError(f"Order with tracking number {qc.tracking_number} not found.")

            lines = [d for d in order.details if d.sku == sku]
            if not lines:
                raise NotFoundError(f"SKU {sku} is not part of order {qc.tracking_number}.")

            matching = [d for d in lines if d.quantity == quantity]
            if not matching:
                raise QuantityMismatchError(sku, lines[0].quantity, quantity)
            # Prefer an unchecked line when the SKU appears more than once
            detail = next((d for d in matching if not d.is_valid), matching[0])
            if not detail.is_valid:
                detail.is_valid = True
                db.flush()

        audit_logger.log(
            action=f"{self.entity_type}.product_validated",
            user_id=actor_id,
            entity_type=self.entity_type,
            entity_id=qc_id,
            tracking_number=order.tracking_number,
            details={"sku": sku, "quantity": quantity},
        )
        return detail

    # ============= PENDING / RESUME =============

    def _move(self, db: Session, qc_id: int, source: QCStatus, target: QCStatus, actor_id: int, action: str) -> QCRecord:
        with transaction(db):
            qc = self.get(db, qc_id)
            current = QCStatus(qc.status)
            if current != source:
                raise InvalidStateError(
                    f"{self._label()} {qc.tracking_number} is {current.value}, expected {source.value}."
                )
            self._set_status(db, qc, target)

        audit_logger.log(
            action=f"{self.entity_type}.{action}",
            user_id=actor_id,
            entity_type=self.entity_type,
            entity_id=qc_id,
            tracking_number=qc.tracking_number,
        )
        return qc

    def mark_pending(self, db: Session, qc_id: int, actor_id: int) -> QCRecord:
        return self._move(db, qc_id, QCStatus.IN_PROGRESS, QCStatus.PENDING, actor_id, "pending")

    def resume(self, db: Session, qc_id: int, actor_id: int) -> QCRecord:
        return self._move(db, qc_id, QCStatus.PENDING, QCStatus.IN_PROGRESS, actor_id, "resumed")

    # ============= COMPLETE =============

    def _check_boxes(self, db: Session, boxes: List[BoxLine]) -> None:
        if not boxes:
            raise ValidationFailedError("At least one box is required to complete QC.")

        seen = set()
        for line in boxes:
            if line.box_id in seen:
                raise DuplicateBoxIdError(line.box_id)
            seen.add(line.box_id)

        existing = {
            box_id for (box_id,) in db.query(Box.id).filter(Box.id.in_(seen)).all()
        }
        for line in boxes:
            if line.box_id not in existing:
                raise BoxNotFoundError(line.box_id)

        for line in boxes:
            if line.quantity is None or line.quantity <= 0:
                raise ValidationFailedError(
                    f"Quantity for box {line.box_id} must be greater than 0."
                )

    def complete(self, db: Session, qc_id: int, boxes: List[BoxLine], actor_id: int) -> QCCompletion:
        """
        Pack the order into boxes and close the QC record.

        An absent or already completed record is reported, not raised. All
        checks run before the first write, so a rejected call leaves no box
        rows behind.
        """
        qc = self._find(db, qc_id)
        if qc is None:
            return QCCompletion(None, False, f"{self._label()} with id {qc_id} does not exist, nothing to complete.")
        if QCStatus(qc.status) == QCStatus.COMPLETED:
            return QCCompletion(qc, False, f"{self._label()} {qc.tracking_number} is already completed.")

        with transaction(db):
            order = lock_order(db, tracking_number=qc.tracking_number)
            if order is None:
                raise NotFoundError(f"Order with tracking number {qc.tracking_number} not found.")

            current = QCStatus(qc.status)
            if current not in (QCStatus.IN_PROGRESS, QCStatus.PENDING):
                raise InvalidStateError(
                    f"{self._label()} {qc.tracking_number} is {current.value} and cannot be completed."
                )

            pending = [d.sku for d in order.details if not d.is_valid]
            if pending:
                raise ValidationIncompleteError(qc.tracking_number, pending)
            self._check_boxes(db, boxes)

            self._set_status(db, qc, QCStatus.COMPLETED)
            transition_order(db, order, OrderAction.COMPLETE_QC)
            db.add_all([
                self.detail_model(box_id=line.box_id, quantity=line.quantity, **{self.detail_fk: qc_id})
                for line in boxes
            ])
            db.flush()

        audit_logger.log(
            action=f"{self.entity_type}.completed",
            user_id=actor_id,
            entity_type=self.entity_type,
            entity_id=qc_id,
            tracking_number=qc.tracking_number,
            details={"boxes": [line.box_id for line in boxes]},
        )
        return QCCompletion(qc, True, f"{self._label()} {qc.tracking_number} completed.")


ribbon_engine = QCLaneEngine(QCLane.RIBBON)
online_engine = QCLaneEngine(QCLane.ONLINE)

ENGINES: Dict[QCLane, QCLaneEngine] = {
    QCLane.RIBBON: ribbon_engine,
    QCLane.ONLINE: online_engine,
}
