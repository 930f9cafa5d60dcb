"""
Complaint filing and staff liability apportioning.

Filing a complaint reconstructs who handled the shipment from four
independently updated tables, flags each contributing record and seeds one
zero-fee liability row per person. Reviewers later set the fees.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment.core.clock import utcnow
from fulfillment.core.errors import ConflictError, NotFoundError, ValidationFailedError
from fulfillment.core.logging import get_logger, audit_logger
from fulfillment.db.models import (
    Channel, Complain, ComplainProductDetail, ComplainUserDetail, Store, User
)
from fulfillment.db.session import transaction
from fulfillment.services.tracking import TrackingRecords, normalize_tracking_number, resolve

logger = get_logger(__name__)

CODE_ATTEMPTS = 3


@dataclass
class UserFee:
    user_id: int
    fee_charge: int


def _user_prefix(username: Optional[str]) -> str:
    letters = (username or "").strip()[:2].upper()
    return letters.ljust(2, "X")


def generate_complaint_code(db: Session, username: Optional[str]) -> str:
    """
    ``YYYYMMDD`` + first two letters of the username + per-day sequence,
    e.g. ``20251008SA001``. The sequence counts every complaint of the day.
    """
    date_prefix = utcnow().strftime("%Y%m%d")
    count = db.query(Complain).filter(Complain.code.like(f"{date_prefix}%")).count()
    return f"{date_prefix}{_user_prefix(username)}{count + 1:03d}"


def collect_liable_users(records: TrackingRecords) -> Set[int]:
    """
    Gather staff ids from QC, outbound and picking, flagging each record
    that contributed at least one id as complained.
    """
    user_ids: Set[int] = set()

    def contribute(record, ids: Iterable[Optional[int]]) -> None:
        found = [uid for uid in ids if uid is not None]
        if record is None or not found:
            return
        user_ids.update(found)
        record.complained = True

    contribute(records.qc_ribbon, [records.qc_ribbon.qc_by] if records.qc_ribbon else [])
    contribute(records.qc_online, [records.qc_online.qc_by] if records.qc_online else [])
    contribute(records.outbound, [records.outbound.outbound_by] if records.outbound else [])
    if records.order is not None:
        contribute(records.order, [records.order.picked_by, records.order.assigned_by])

    return user_ids


def _insert_with_unique_code(db: Session, complain: Complain, username: Optional[str], conflict: str) -> None:
    """
    Insert ``complain`` under a fresh daily code. A concurrent filing can
    take the same sequence number first, in which case the code is drawn
    again.
    """
    for attempt in range(1, CODE_ATTEMPTS + 1):
        complain.code = generate_complaint_code(db, username)
        try:
            with db.begin_nested():
                db.add(complain)
                db.flush()
            return
        except IntegrityError:
            taken = db.query(Complain.id).filter(
                Complain.tracking_number == complain.tracking_number
            ).first()
            if taken:
                raise ConflictError(conflict)
            logger.warning(f"Complain code {complain.code} already taken ({attempt}/{CODE_ATTEMPTS})")

    raise ConflictError("Could not allocate a unique complain code, retry the operation.")


def file_complaint(
    db: Session,
    tracking_number: str,
    channel_id: int,
    store_id: int,
    reason: str,
    actor_id: int,
) -> Complain:
    """
    File a complaint against a shipment.

    Raises:
        ValidationFailedError: empty reason
        ConflictError: the tracking number already has a complaint
        NotFoundError: order, channel or store does not exist
    """
    tracking_number = normalize_tracking_number(tracking_number)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationFailedError("Reason is required.")

    conflict = f"Complain with tracking number {tracking_number} already exists."
    with transaction(db, conflict_message=conflict):
        records = resolve(db, tracking_number, lock=True)

        if db.query(Complain.id).filter(Complain.tracking_number == tracking_number).first():
            raise ConflictError(conflict)
        order = records.order
        if order is None:
            raise NotFoundError(f"Order with tracking number {tracking_number} not found.")
        if db.query(Channel.id).filter(Channel.id == channel_id).first() is None:
            raise NotFoundError(f"Channel with id {channel_id} not found.")
        if db.query(Store.id).filter(Store.id == store_id).first() is None:
            raise NotFoundError(f"Store with id {store_id} not found.")

        creator = db.query(User).filter(User.id == actor_id).first()
        user_ids = collect_liable_users(records)

        complain = Complain(
            tracking_number=tracking_number,
            order_ginee_id=order.order_ginee_id,
            channel_id=channel_id,
            store_id=store_id,
            created_by=actor_id,
            reason=reason,
            checked=False,
        )
        complain.product_details = [
            ComplainProductDetail(product_sku=d.sku, quantity=d.quantity, price=d.price)
            for d in order.details
        ]
        complain.user_details = [
            ComplainUserDetail(user_id=uid, fee_charge=0) for uid in sorted(user_ids)
        ]
        db.flush()
        _insert_with_unique_code(db, complain, creator.username if creator else None, conflict)

    audit_logger.log(
        action="complain.created",
        user_id=actor_id,
        entity_type="complain",
        entity_id=complain.id,
        tracking_number=tracking_number,
        details={"code": complain.code, "liable_users": sorted(user_ids)},
    )
    return complain


def get_complaint(db: Session, complain_id: int) -> Complain:
    complain = db.query(Complain).filter(Complain.id == complain_id).first()
    if complain is None:
        raise NotFoundError(f"Complain with id {complain_id} not found.")
    return complain


def review_complaint(
    db: Session,
    complain_id: int,
    solution: str,
    total_fee: int,
    actor_id: int,
    user_fees: Optional[List[UserFee]] = None,
) -> Complain:
    """
    Record the resolution of a complaint. A non-empty ``user_fees`` replaces
    every liability row.
    """
    solution = (solution or "").strip()
    if not solution:
        raise ValidationFailedError("Solution is required.")
    if total_fee is None or total_fee < 0:
        raise ValidationFailedError("Total fee must be 0 or greater.")
    user_fees = user_fees or []
    seen = set()
    for fee in user_fees:
        if fee.fee_charge is None or fee.fee_charge < 0:
            raise ValidationFailedError(f"Fee charge for user {fee.user_id} must be 0 or greater.")
        if fee.user_id in seen:
            raise ValidationFailedError(f"User {fee.user_id} is listed more than once.")
        seen.add(fee.user_id)

    with transaction(db):
        complain = get_complaint(db, complain_id)
        if seen:
            found = {uid for (uid,) in db.query(User.id).filter(User.id.in_(seen)).all()}
            missing = sorted(seen - found)
            if missing:
                raise NotFoundError(f"User with id {missing[0]} not found.")

        complain.solution = solution
        complain.total_fee = total_fee
        if user_fees:
            # Old rows go first so replacements do not collide on the unique index
            db.query(ComplainUserDetail).filter(
                ComplainUserDetail.complain_id == complain_id
            ).delete(synchronize_session=False)
            db.expire(complain, ["user_details"])
            db.add_all([
                ComplainUserDetail(complain_id=complain_id, user_id=fee.user_id, fee_charge=fee.fee_charge)
                for fee in user_fees
            ])
        db.flush()

    audit_logger.log(
        action="complain.reviewed",
        user_id=actor_id,
        entity_type="complain",
        entity_id=complain_id,
        tracking_number=complain.tracking_number,
        details={"total_fee": total_fee, "user_fees": len(user_fees)},
    )
    return complain


def set_complaint_checked(db: Session, complain_id: int, checked: bool, actor_id: int) -> Complain:
    with transaction(db):
        complain = get_complaint(db, complain_id)
        complain.checked = checked

    audit_logger.log(
        action="complain.checked",
        user_id=actor_id,
        entity_type="complain",
        entity_id=complain_id,
        tracking_number=complain.tracking_number,
        details={"checked": checked},
    )
    return complain
