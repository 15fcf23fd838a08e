from __future__ import annotations

import re
from decimal import Decimal

import pytest

from app.core.errors import InvalidItemData, ItemNotFound
from app.db.models.warehouse import ITEM_PENDING
from services.wms.inventory_ops import items
from services.wms.inventory_ops.kanban import create_category
from services.wms.inventory_ops.metadata import CoilMetadata, StandardMetadata, parse_metadata
from services.wms.scan.routing import ROUTE_PICK, ROUTE_PLACE, ROUTE_REMOVED, resolve_scan


def test_system_code_format():
    assert re.fullmatch(r"SYS\d{13,}\d{3}", items.generate_system_code())


def test_create_item_is_pending(db, make_item):
    item = make_item(weight="12.5", description="  pallet of brackets ")
    assert item.status == ITEM_PENDING
    assert item.location is None
    assert item.weight == Decimal("12.5")
    assert item.description == "pallet of brackets"
    assert item.meta == {"kind": "standard", "quantity": None}
    assert items.get_by_system_code(db, item.system_code).id == item.id


@pytest.mark.parametrize("weight", [0, -1, "abc", None, "nan"])
def test_invalid_weight(db, make_item, weight):
    with pytest.raises(InvalidItemData):
        make_item(weight=weight)


def test_missing_fields(db):
    with pytest.raises(InvalidItemData):
        items.create_item(db, item_code="", category="GEN", weight=1)


def test_raw_category_requires_coil_data(db):
    create_category(db, code="COILS", name="Steel coil", prefix="RAW")
    with pytest.raises(InvalidItemData) as ei:
        items.create_item(db, item_code="C-1", category="COILS", weight=800, metadata={})
    assert ei.value.data["errors"]
    item = items.create_item(db, item_code="C-1", category="COILS", weight=800,
                             metadata={"coil_number": 4, "coil_length_ft": 300})
    assert isinstance(items.item_metadata(item), CoilMetadata)
    assert items.needs_ground_level(db, item)


def test_category_can_force_ground(db):
    create_category(db, code="DRUMS", name="Drums", ground_level_required=True)
    item = items.create_item(db, item_code="D-1", category="DRUMS", weight=200)
    assert isinstance(items.item_metadata(item), StandardMetadata)
    assert items.needs_ground_level(db, item)


def test_metadata_variants():
    assert parse_metadata({"quantity": 3}).quantity == 3
    with pytest.raises(InvalidItemData):
        parse_metadata({"quantity": 0})
    with pytest.raises(InvalidItemData):
        parse_metadata({"kind": "standard"}, category_prefix="RAW")


def test_unknown_item(db):
    with pytest.raises(ItemNotFound):
        items.require_item(db, "missing")


def test_list_by_status_validates(db, make_item):
    make_item()
    assert len(items.list_by_status(db, "pending")) == 1
    with pytest.raises(InvalidItemData):
        items.list_by_status(db, "lost")


def test_scan_routing_follows_status(db, make_item):
    item = make_item()
    assert resolve_scan(db, item.system_code).action == ROUTE_PLACE
    item.status = "placed"
    db.commit()
    assert resolve_scan(db, item.system_code).action == ROUTE_PICK
    # scans match byte for byte
    with pytest.raises(ItemNotFound):
        resolve_scan(db, f" {item.system_code} ")
    with pytest.raises(ItemNotFound):
        resolve_scan(db, item.system_code.lower())
    item.status = "removed"
    db.commit()
    assert resolve_scan(db, item.system_code).action == ROUTE_REMOVED
    with pytest.raises(ItemNotFound):
        resolve_scan(db, "SYS000")
