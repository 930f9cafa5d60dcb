"""
Shared fixtures: a fresh file-backed SQLite database per test, seeded
reference data and helpers that drive orders through the pipeline.
"""
import itertools
import os
import tempfile
from datetime import datetime, timezone
from types import SimpleNamespace

# Settings are read at import time; configure before importing the package
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-fulfillment-suite-0123456789")
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.gettempdir(), "fulfillment-test-default.db"),
)

import pytest
from sqlalchemy.orm import sessionmaker

from fulfillment.db.session import Base, build_engine
from fulfillment.db.models import Box, Channel, Expedition, Store, User
from fulfillment.services.order_lifecycle import (
    OrderDraft, OrderLineDraft, assign_picker, complete_picking, create_order
)
from fulfillment.services.qc_lane import BoxLine, ribbon_engine

SENT_BEFORE = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite database file with the full schema."""
    eng = build_engine(f"sqlite:///{tmp_path / 'fulfillment.db'}", echo=False)
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def refs(db):
    """Staff, boxes, carriers, a channel and a store."""
    users = {
        "picker": User(username="sarah", full_name="Sarah Picker"),
        "qc": User(username="quinn", full_name="Quinn Checker"),
        "outbound": User(username="oscar", full_name="Oscar Outbound"),
        "coordinator": User(username="alex", full_name="Alex Coordinator"),
        "other_picker": User(username="pat", full_name="Pat Picker"),
        "inactive": User(username="ivy", full_name="Ivy Inactive", is_active=False),
    }
    boxes = {
        "box_small": Box(box_code="BOX-S", box_name="Small Box"),
        "box_large": Box(box_code="BOX-L", box_name="Large Box"),
    }
    db.add_all(list(users.values()) + list(boxes.values()))
    db.add_all([
        Expedition(expedition_code="J", expedition_name="J Generic", slug="j-generic", expedition_color="#111111"),
        Expedition(expedition_code="JNE", expedition_name="JNE", slug="jne", expedition_color="#1D4ED8"),
        Expedition(expedition_code="SPX", expedition_name="Shopee Express", slug="shopee-express", expedition_color="#EA580C"),
    ])
    channel = Channel(channel_code="SHOPEE", channel_name="Shopee")
    store = Store(store_code="MAIN", store_name="Main Store")
    db.add_all([channel, store])
    db.commit()

    ids = {name: user.id for name, user in users.items()}
    ids.update({name: box.id for name, box in boxes.items()})
    ids.update({"channel": channel.id, "store": store.id})
    return SimpleNamespace(**ids)


def default_lines():
    return [
        OrderLineDraft(sku="SKU-A", product_name="Satin Ribbon", variant="Red", quantity=2, price=15000),
        OrderLineDraft(sku="SKU-B", product_name="Gift Card", quantity=1, price=5000),
    ]


def make_draft(n: int, tracking_number=None, order_ginee_id=None, lines=None, sent_before=SENT_BEFORE) -> OrderDraft:
    return OrderDraft(
        order_ginee_id=order_ginee_id or f"GIN-{n:04d}",
        tracking_number=tracking_number or f"JNE{n:06d}",
        sent_before=sent_before,
        channel="Shopee",
        store="Main Store",
        buyer="Buyer Name",
        address="Jl. Example 1",
        courier="JNE",
        details=lines if lines is not None else default_lines(),
    )


@pytest.fixture
def make_order(db, refs):
    """Factory creating ready_to_pick orders with unique identifiers."""
    counter = itertools.count(1)

    def _make(tracking_number=None, order_ginee_id=None, lines=None):
        draft = make_draft(next(counter), tracking_number, order_ginee_id, lines)
        return create_order(db, draft, actor_id=refs.coordinator)

    return _make


@pytest.fixture
def picked_order(db, refs, make_order):
    """Factory creating orders already in picking_completed."""
    def _picked(**kwargs):
        order = make_order(**kwargs)
        assign_picker(db, order.tracking_number, refs.picker, actor_id=refs.coordinator)
        complete_picking(db, order.id, actor_id=refs.picker)
        return order

    return _picked


@pytest.fixture
def qc_completed_order(db, refs, picked_order):
    """Factory creating orders that passed QC; returns (order, qc)."""
    def _completed(engine=ribbon_engine, **kwargs):
        order = picked_order(**kwargs)
        qc = engine.start(db, order.tracking_number, actor_id=refs.qc)
        for detail in list(order.details):
            engine.validate_product(db, qc.id, detail.sku, detail.quantity, actor_id=refs.qc)
        engine.complete(db, qc.id, [BoxLine(box_id=refs.box_small, quantity=1)], actor_id=refs.qc)
        return order, qc

    return _completed


@pytest.fixture
def draft():
    """Builder for drafts with explicit identifiers; tracking stays optional."""
    def _draft(order_ginee_id, tracking_number=None, lines=None, sent_before=SENT_BEFORE):
        return OrderDraft(
            order_ginee_id=order_ginee_id,
            tracking_number=tracking_number,
            sent_before=sent_before,
            details=lines if lines is not None else default_lines(),
        )

    return _draft
