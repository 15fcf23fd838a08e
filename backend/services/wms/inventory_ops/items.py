from __future__ import annotations

import random
import time
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from app.core.errors import InvalidItemData, ItemNotFound
from app.db.models.warehouse import Category, ITEM_PENDING, ITEM_STATUSES, Item
from services.wms.inventory_ops.metadata import (
    CoilMetadata,
    StandardMetadata,
    load_metadata,
    parse_metadata,
    requires_ground_level,
)


def generate_system_code() -> str:
    # SYS + epoch millis + 3 random digits
    return f"SYS{int(time.time() * 1000)}{random.randint(0, 999):03d}"


def _weight(value) -> Decimal:
    try:
        w = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidItemData("Invalid weight value", weight=value)
    if not w.is_finite() or w <= 0:
        raise InvalidItemData("Invalid weight value", weight=value)
    return w


def get_category(db: Session, code: str) -> Category | None:
    return db.query(Category).filter(Category.code == code).first()


def create_item(
    db: Session,
    *,
    item_code: str,
    category: str,
    weight,
    description: str = "",
    metadata: dict | None = None,
    system_code: str | None = None,
) -> Item:
    """Goods-in: register a physical item as pending, ready for placement."""
    item_code = (item_code or "").strip()
    category = (category or "").strip()
    if not item_code or not category:
        raise InvalidItemData("Missing required fields: item_code and category")
    w = _weight(weight)

    cat = get_category(db, category)
    meta = parse_metadata(metadata, category_prefix=cat.prefix if cat else "")

    code = (system_code or "").strip() or generate_system_code()
    while db.query(Item.id).filter(Item.system_code == code).first():
        code = generate_system_code()

    item = Item(
        system_code=code,
        item_code=item_code,
        description=(description or "").strip(),
        weight=w,
        category=category,
        status=ITEM_PENDING,
        location=None,
        location_verified=False,
        meta=meta.model_dump(),
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def get_item(db: Session, item_id: str) -> Item | None:
    return db.query(Item).filter(Item.id == item_id).first()


def require_item(db: Session, item_id: str) -> Item:
    item = get_item(db, item_id)
    if not item:
        raise ItemNotFound(f"Item {item_id} not found", item_id=item_id)
    return item


def get_by_system_code(db: Session, system_code: str) -> Item | None:
    return db.query(Item).filter(Item.system_code == system_code).first()


def list_by_status(db: Session, status: str) -> list[Item]:
    if status not in ITEM_STATUSES:
        raise InvalidItemData(f"Invalid status {status}", status=status)
    return db.query(Item).filter(Item.status == status).order_by(Item.created_at.asc()).all()


def item_metadata(item: Item) -> CoilMetadata | StandardMetadata:
    return load_metadata(item.meta)


def needs_ground_level(db: Session, item: Item) -> bool:
    cat = get_category(db, item.category)
    return requires_ground_level(item_metadata(item), category_ground_required=bool(cat and cat.ground_level_required))
