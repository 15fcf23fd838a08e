from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.core.errors import ItemNotFound
from app.db.models.warehouse import ITEM_PENDING, ITEM_PLACED, Item
from services.wms.inventory_ops.items import get_by_system_code

ROUTE_PLACE = "PLACE"
ROUTE_PICK = "PICK"
ROUTE_REMOVED = "REMOVED"


@dataclass
class ScanRoute:
    action: str
    item: Item


def resolve_scan(db: Session, raw: str) -> ScanRoute:
    """Decide what a bare item scan means from the item's status."""
    code = raw or ""
    item = get_by_system_code(db, code) if code else None
    if item is None:
        raise ItemNotFound(f"No item with system code {code!r}", system_code=code)
    if item.status == ITEM_PENDING:
        return ScanRoute(ROUTE_PLACE, item)
    if item.status == ITEM_PLACED:
        return ScanRoute(ROUTE_PICK, item)
    return ScanRoute(ROUTE_REMOVED, item)
