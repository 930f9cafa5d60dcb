"""
Reference data seeding for development and demos.

WARNING: creates predictable staff accounts. Only runs with SEED_DEMO=true,
which the settings refuse outside DEBUG.
"""
from sqlalchemy.orm import Session

from fulfillment.core.logging import get_logger
from fulfillment.db.models import Box, Channel, Expedition, Store, User

logger = get_logger(__name__)

DEMO_USERS = [
    ("sarah.picker", "Sarah Picker"),
    ("quinn.qc", "Quinn Checker"),
    ("oscar.outbound", "Oscar Outbound"),
    ("cory.coordinator", "Cory Coordinator"),
]

BOXES = [
    ("BOX-S", "Small Box"),
    ("BOX-M", "Medium Box"),
    ("BOX-L", "Large Box"),
]

# (tracking prefix, name, slug, color)
EXPEDITIONS = [
    ("JNE", "JNE", "jne", "#1D4ED8"),
    ("JP", "J&T Express", "jnt-express", "#DC2626"),
    ("JX", "J&T Cargo", "jnt-cargo", "#B91C1C"),
    ("SPX", "Shopee Express", "shopee-express", "#EA580C"),
    ("TKP", "Tokopedia Kurir", "tokopedia-kurir", "#16A34A"),
]

CHANNELS = [
    ("SHOPEE", "Shopee"),
    ("TOKOPEDIA", "Tokopedia"),
    ("TIKTOK", "TikTok Shop"),
]

STORES = [
    ("MAIN", "Main Store"),
    ("OUTLET", "Outlet Store"),
]


def seed_reference_data(db: Session) -> dict:
    """Insert missing reference rows; existing codes are left untouched."""
    created = {"users": 0, "boxes": 0, "expeditions": 0, "channels": 0, "stores": 0}

    for username, full_name in DEMO_USERS:
        if not db.query(User).filter(User.username == username).first():
            db.add(User(username=username, full_name=full_name, is_active=True))
            created["users"] += 1

    for code, name in BOXES:
        if not db.query(Box).filter(Box.box_code == code).first():
            db.add(Box(box_code=code, box_name=name))
            created["boxes"] += 1

    for code, name, slug, color in EXPEDITIONS:
        if not db.query(Expedition).filter(Expedition.expedition_code == code).first():
            db.add(Expedition(expedition_code=code, expedition_name=name, slug=slug, expedition_color=color))
            created["expeditions"] += 1

    for code, name in CHANNELS:
        if not db.query(Channel).filter(Channel.channel_code == code).first():
            db.add(Channel(channel_code=code, channel_name=name))
            created["channels"] += 1

    for code, name in STORES:
        if not db.query(Store).filter(Store.store_code == code).first():
            db.add(Store(store_code=code, store_name=name))
            created["stores"] += 1

    db.flush()
    logger.info(f"Reference data seeded: {created}")
    return created
