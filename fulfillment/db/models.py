"""
SQLAlchemy ORM models for the fulfillment pipeline.

Tracking numbers link Order, QCRibbon, QCOnline and Outbound rows; each of
those tables holds at most one row per tracking number.
"""
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime,
    ForeignKey, Enum, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from fulfillment.db.session import Base


# ============= ENUMS =============

class ProcessingStatus(str, enum.Enum):
    READY_TO_PICK = "ready_to_pick"
    PICKING_PROGRESS = "picking_progress"
    PICKING_PENDING = "picking_pending"
    PICKING_COMPLETED = "picking_completed"
    QC_PROGRESS = "qc_progress"
    QC_COMPLETED = "qc_completed"
    OUTBOUND_COMPLETED = "outbound_completed"


class EventStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    CANCELED = "canceled"
    DUPLICATED = "duplicated"


class QCStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    COMPLETED = "completed"


# Stored as VARCHAR with a CHECK constraint so SQLite and PostgreSQL share
# one schema. values_callable keeps the lowercase values, not the names.
def enum_values(enum_cls):
    return [e.value for e in enum_cls]


ProcessingStatusType = Enum(
    ProcessingStatus,
    name='processingstatus',
    native_enum=False,
    create_constraint=True,
    values_callable=enum_values,
    length=50,
)
EventStatusType = Enum(
    EventStatus,
    name='eventstatus',
    native_enum=False,
    create_constraint=True,
    values_callable=enum_values,
    length=50,
)
QCStatusType = Enum(
    QCStatus,
    name='qcstatus',
    native_enum=False,
    create_constraint=True,
    values_callable=enum_values,
    length=50,
)


# ============= REFERENCE DATA =============

class User(Base):
    """Warehouse staff accounts (maintained by the identity service)."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    full_name = Column(String(255))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Box(Base):
    """Packing boxes referenced by QC completion."""
    __tablename__ = "boxes"

    id = Column(Integer, primary_key=True, index=True)
    box_code = Column(String(50), unique=True, nullable=False)
    box_name = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Expedition(Base):
    """Carriers; expedition_code is the tracking-number prefix."""
    __tablename__ = "expeditions"

    id = Column(Integer, primary_key=True, index=True)
    expedition_code = Column(String(50), unique=True, nullable=False)
    expedition_name = Column(String(100), nullable=False)
    slug = Column(String(100), unique=True, nullable=False)
    expedition_color = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Channel(Base):
    __tablename__ = "channels"

    id = Column(Integer, primary_key=True, index=True)
    channel_code = Column(String(50), unique=True, nullable=False)
    channel_name = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Store(Base):
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)
    store_code = Column(String(50), unique=True, nullable=False)
    store_name = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ============= ORDERS =============

class Order(Base):
    """Customer order moving through the fulfillment pipeline."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_ginee_id = Column(String(100), unique=True, nullable=False, index=True)
    processing_status = Column(
        ProcessingStatusType, nullable=False, default=ProcessingStatus.READY_TO_PICK
    )
    event_status = Column(EventStatusType, nullable=False, default=EventStatus.IN_PROGRESS)
    channel = Column(String(100))
    store = Column(String(100))
    buyer = Column(String(150))
    address = Column(Text)
    courier = Column(String(100))
    tracking_number = Column(String(100), unique=True, nullable=True, index=True)
    sent_before = Column(DateTime(timezone=True), nullable=False)

    # Audit pairs
    assigned_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    assigned_at = Column(DateTime(timezone=True))
    picked_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    picked_at = Column(DateTime(timezone=True))
    pending_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    pending_at = Column(DateTime(timezone=True))
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    changed_at = Column(DateTime(timezone=True))
    duplicated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    duplicated_at = Column(DateTime(timezone=True))
    canceled_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    canceled_at = Column(DateTime(timezone=True))

    complained = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    details = relationship(
        "OrderDetail",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderDetail.id",
    )
    picked_logs = relationship("PickedOrder", back_populates="order")


class OrderDetail(Base):
    """One product line of an order."""
    __tablename__ = "order_details"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = Column(String(255), nullable=False)
    product_name = Column(String(255), nullable=False)
    variant = Column(String(100))
    quantity = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False)
    is_valid = Column(Boolean, nullable=False, default=False)

    # Relationships
    order = relationship("Order", back_populates="details")


class PickedOrder(Base):
    """Append-only log of completed picks."""
    __tablename__ = "picked_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    picked_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    order = relationship("Order", back_populates="picked_logs")


# ============= QC LANES =============

class QCRibbon(Base):
    """QC record for the ribbon lane."""
    __tablename__ = "qc_ribbons"

    id = Column(Integer, primary_key=True, index=True)
    tracking_number = Column(String(100), unique=True, nullable=False, index=True)
    qc_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(QCStatusType, nullable=False, default=QCStatus.IN_PROGRESS)
    complained = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    details = relationship(
        "QCRibbonDetail",
        back_populates="qc",
        cascade="all, delete-orphan",
        order_by="QCRibbonDetail.id",
    )


class QCRibbonDetail(Base):
    """Box packed during ribbon QC."""
    __tablename__ = "qc_ribbon_details"

    id = Column(Integer, primary_key=True, index=True)
    qc_ribbon_id = Column(Integer, ForeignKey("qc_ribbons.id", ondelete="CASCADE"), nullable=False, index=True)
    box_id = Column(Integer, ForeignKey("boxes.id"), nullable=False)
    quantity = Column(Integer, nullable=False)

    # Relationships
    qc = relationship("QCRibbon", back_populates="details")
    box = relationship("Box")

    __table_args__ = (
        UniqueConstraint('qc_ribbon_id', 'box_id', name='uq_qc_ribbon_detail_box'),
    )


class QCOnline(Base):
    """QC record for the online lane."""
    __tablename__ = "qc_onlines"

    id = Column(Integer, primary_key=True, index=True)
    tracking_number = Column(String(100), unique=True, nullable=False, index=True)
    qc_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(QCStatusType, nullable=False, default=QCStatus.IN_PROGRESS)
    complained = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    details = relationship(
        "QCOnlineDetail",
        back_populates="qc",
        cascade="all, delete-orphan",
        order_by="QCOnlineDetail.id",
    )


class QCOnlineDetail(Base):
    """Box packed during online QC."""
    __tablename__ = "qc_online_details"

    id = Column(Integer, primary_key=True, index=True)
    qc_online_id = Column(Integer, ForeignKey("qc_onlines.id", ondelete="CASCADE"), nullable=False, index=True)
    box_id = Column(Integer, ForeignKey("boxes.id"), nullable=False)
    quantity = Column(Integer, nullable=False)

    # Relationships
    qc = relationship("QCOnline", back_populates="details")
    box = relationship("Box")

    __table_args__ = (
        UniqueConstraint('qc_online_id', 'box_id', name='uq_qc_online_detail_box'),
    )


# ============= OUTBOUND =============

class Outbound(Base):
    """Shipment handed to a carrier."""
    __tablename__ = "outbounds"

    id = Column(Integer, primary_key=True, index=True)
    tracking_number = Column(String(100), unique=True, nullable=False, index=True)
    outbound_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    expedition = Column(String(100), nullable=False)
    expedition_slug = Column(String(100), nullable=False)
    expedition_color = Column(String(20), nullable=False)
    complained = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ============= COMPLAINTS =============

class Complain(Base):
    """Customer complaint with staff liability apportioning."""
    __tablename__ = "complains"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False)
    tracking_number = Column(String(100), unique=True, nullable=False, index=True)
    order_ginee_id = Column(String(100), nullable=False, index=True)
    channel_id = Column(Integer, ForeignKey("channels.id"), nullable=False)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    reason = Column(Text, nullable=False)
    solution = Column(Text)
    total_fee = Column(Integer)
    checked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    product_details = relationship(
        "ComplainProductDetail",
        back_populates="complain",
        cascade="all, delete-orphan",
        order_by="ComplainProductDetail.id",
    )
    user_details = relationship(
        "ComplainUserDetail",
        back_populates="complain",
        cascade="all, delete-orphan",
        order_by="ComplainUserDetail.id",
    )

    __table_args__ = (
        Index('ix_complains_created_at', 'created_at'),
    )


class ComplainProductDetail(Base):
    """Snapshot of an order line at complaint time."""
    __tablename__ = "complain_product_details"

    id = Column(Integer, primary_key=True, index=True)
    complain_id = Column(Integer, ForeignKey("complains.id", ondelete="CASCADE"), nullable=False, index=True)
    product_sku = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False)

    # Relationships
    complain = relationship("Complain", back_populates="product_details")


class ComplainUserDetail(Base):
    """Liability row: one staff member and the fee charged to them."""
    __tablename__ = "complain_user_details"

    id = Column(Integer, primary_key=True, index=True)
    complain_id = Column(Integer, ForeignKey("complains.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    fee_charge = Column(Integer, nullable=False, default=0)

    # Relationships
    complain = relationship("Complain", back_populates="user_details")

    __table_args__ = (
        UniqueConstraint('complain_id', 'user_id', name='uq_complain_user_detail_user'),
    )
