"""
Outbound registration and carrier detection.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from fulfillment.core.config import settings
from fulfillment.core.errors import (
    ConflictError, InvalidStateError, NoExpeditionFoundError, NotFoundError,
)
from fulfillment.core.logging import get_logger, audit_logger
from fulfillment.db.models import Expedition, Outbound, ProcessingStatus, QCRibbon, QCOnline
from fulfillment.db.session import transaction
from fulfillment.services.state_machine import OrderAction, transition_order
from fulfillment.services.tracking import lock_order, normalize_tracking_number

logger = get_logger(__name__)


@dataclass
class ManualCarrier:
    """Carrier data supplied by the caller for manual-prefix shipments."""
    expedition: Optional[str] = None
    expedition_slug: Optional[str] = None
    expedition_color: Optional[str] = None

    def as_tuple(self) -> Tuple[str, str, str]:
        return (self.expedition or "", self.expedition_slug or "", self.expedition_color or "")


def is_manual_carrier(tracking_number: str) -> bool:
    return tracking_number.startswith(settings.MANUAL_CARRIER_PREFIX)


def resolve_expedition(
    db: Session,
    tracking_number: str,
    manual: Optional[ManualCarrier] = None,
) -> Tuple[str, str, str]:
    """
    Determine (name, slug, color) of the carrier for a tracking number.

    Manual-prefix tracking numbers take the caller's carrier as given, empty
    when absent. Otherwise the longest expedition code that prefixes the
    tracking number wins.
    """
    if is_manual_carrier(tracking_number):
        return (manual or ManualCarrier()).as_tuple()

    candidates = [
        exp for exp in db.query(Expedition).all()
        if exp.expedition_code and tracking_number.startswith(exp.expedition_code.upper())
    ]
    if not candidates:
        raise NoExpeditionFoundError(tracking_number)

    best = max(candidates, key=lambda exp: len(exp.expedition_code))
    return best.expedition_name, best.slug, best.expedition_color


def create_outbound(
    db: Session,
    tracking_number: str,
    actor_id: int,
    manual: Optional[ManualCarrier] = None,
) -> Outbound:
    """
    Register the shipment of a QC-completed order.

    Raises:
        NotFoundError: no order, or no QC record in either lane
        ConflictError: an outbound already exists for the tracking number
        InvalidStateError: the order is not qc_completed
        NoExpeditionFoundError: no carrier matches the prefix
    """
    tracking_number = normalize_tracking_number(tracking_number)
    conflict = f"Outbound with tracking number {tracking_number} already exists."

    with transaction(db, conflict_message=conflict):
        order = lock_order(db, tracking_number=tracking_number)
        if order is None:
            raise NotFoundError(f"Order with tracking number {tracking_number} not found.")
        if db.query(Outbound).filter(Outbound.tracking_number == tracking_number).first():
            raise ConflictError(conflict)
        status = ProcessingStatus(order.processing_status)
        if status != ProcessingStatus.QC_COMPLETED:
            raise InvalidStateError(
                f"Order {tracking_number} is {status.value}, outbound requires qc_completed."
            )
        has_qc = (
            db.query(QCRibbon.id).filter(QCRibbon.tracking_number == tracking_number).first()
            or db.query(QCOnline.id).filter(QCOnline.tracking_number == tracking_number).first()
        )
        if not has_qc:
            raise NotFoundError(
                f"Tracking number {tracking_number} must exist in either QC Ribbons or QC Onlines."
            )

        name, slug, color = resolve_expedition(db, tracking_number, manual)

        transition_order(db, order, OrderAction.REGISTER_OUTBOUND)
        outbound = Outbound(
            tracking_number=tracking_number,
            outbound_by=actor_id,
            expedition=name,
            expedition_slug=slug,
            expedition_color=color,
            complained=False,
        )
        db.add(outbound)
        db.flush()

    audit_logger.log(
        action="outbound.created",
        user_id=actor_id,
        entity_type="outbound",
        entity_id=outbound.id,
        tracking_number=tracking_number,
        details={"expedition": name},
    )
    return outbound


def get_outbound(db: Session, outbound_id: int) -> Outbound:
    outbound = db.query(Outbound).filter(Outbound.id == outbound_id).first()
    if outbound is None:
        raise NotFoundError(f"Outbound with id {outbound_id} not found.")
    return outbound


def update_outbound_carrier(
    db: Session,
    outbound_id: int,
    manual: ManualCarrier,
    actor_id: int,
) -> Outbound:
    """
    Correct the carrier of a manual-prefix outbound.

    Carrier fields of auto-detected outbounds come from the expedition
    table and are refused here with InvalidStateError.
    """
    with transaction(db):
        outbound = (
            db.query(Outbound)
            .filter(Outbound.id == outbound_id)
            .with_for_update()
            .first()
        )
        if outbound is None:
            raise NotFoundError(f"Outbound with id {outbound_id} not found.")
        if not is_manual_carrier(outbound.tracking_number):
            raise InvalidStateError(
                f"Only outbounds with tracking numbers starting with "
                f"{settings.MANUAL_CARRIER_PREFIX} can be updated."
            )

        previous = outbound.expedition
        outbound.expedition, outbound.expedition_slug, outbound.expedition_color = manual.as_tuple()
        db.flush()

    audit_logger.log(
        action="outbound.carrier_updated",
        user_id=actor_id,
        entity_type="outbound",
        entity_id=outbound.id,
        tracking_number=outbound.tracking_number,
        details={"from": previous, "to": outbound.expedition},
    )
    return outbound
