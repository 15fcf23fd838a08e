from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.core.errors import InvalidItemData, LocationNotFound
from app.db.models.warehouse import GROUND_LEVEL, ITEM_PLACED, Item, Location
from services.wms.inventory_ops import ledger

logger = logging.getLogger(__name__)

# Weight limits per racked level (kg). Ground level has no limit for stacking.
LEVEL_MAX_WEIGHTS = {
    "1": Decimal("1500"),
    "2": Decimal("1000"),
    "3": Decimal("750"),
    "4": Decimal("500"),
}
DEFAULT_LEVEL_MAX_WEIGHT = Decimal("1000")

RACK_TYPES = {
    "standard": {"name": "Standard", "level_height_m": Decimal("2.5")},
    "heavy-duty": {"name": "Heavy Duty", "level_height_m": Decimal("3.0")},
    "cantilever": {"name": "Cantilever", "level_height_m": Decimal("2.0")},
}

ROWS = tuple("ABCDEFGHIJKLM")
LOCATIONS_PER_BAY = 3
MAX_LEVELS = 10


def location_code(row: str, bay, level, position) -> str:
    return f"{row}{int(bay):02d}-{level}-{position}"


def level_max_weight(level: str) -> Decimal | None:
    if str(level) == GROUND_LEVEL:
        return None
    return LEVEL_MAX_WEIGHTS.get(str(level), DEFAULT_LEVEL_MAX_WEIGHT)


def location_height(rack_type: str, level) -> Decimal:
    rack = RACK_TYPES.get(rack_type) or RACK_TYPES["standard"]
    return rack["level_height_m"] * int(level)


def get_by_code(db: Session, code: str) -> Location | None:
    return db.query(Location).filter(Location.code == code).first()


def require_location(db: Session, code: str) -> Location:
    loc = get_by_code(db, code)
    if not loc:
        raise LocationNotFound(f"Location {code} not found", code=code)
    return loc


def list_locations(db: Session) -> list[Location]:
    return db.query(Location).order_by(Location.code.asc()).all()


def list_available(db: Session, min_weight=0) -> list[Location]:
    """Slots that are available, verified and can take `min_weight` right now."""
    w = Decimal(str(min_weight or 0))
    return (db.query(Location)
            .filter(Location.available == True, Location.verified == True)  # noqa: E712
            .filter(or_(
                Location.level == GROUND_LEVEL,
                Location.max_weight.is_(None),
                Location.current_weight + w <= Location.max_weight,
            ))
            .filter(or_(Location.level != GROUND_LEVEL, Location.ground_full == False))  # noqa: E712
            .order_by(Location.code.asc())
            .all())


def ground_occupancy(db: Session, codes: list[str] | None = None) -> dict[str, int]:
    """Placed-item count per location code (the ground stacks)."""
    q = (db.query(Item.location, func.count(Item.id))
         .filter(Item.status == ITEM_PLACED, Item.location.isnot(None)))
    if codes is not None:
        q = q.filter(Item.location.in_(codes))
    return {code: int(n) for code, n in q.group_by(Item.location).all()}


def create_location(
    db: Session,
    *,
    row: str,
    bay,
    level,
    position=1,
    max_weight=None,
    rack_type: str = "standard",
    height=None,
    available: bool = True,
    verified: bool = True,
    commit: bool = True,
) -> Location:
    row = (row or "").strip().upper()
    if len(row) != 1 or not row.isalpha():
        raise InvalidItemData("Row must be a single letter", row=row)
    if rack_type not in RACK_TYPES:
        raise InvalidItemData(f"Unknown rack type {rack_type}", rack_type=rack_type)
    level = str(int(level))
    if max_weight is None:
        max_weight = level_max_weight(level)
    elif level == GROUND_LEVEL:
        max_weight = None
    loc = Location(
        code=location_code(row, bay, level, position),
        row=row,
        bay=f"{int(bay):02d}",
        level=level,
        position=str(position),
        max_weight=Decimal(str(max_weight)) if max_weight is not None else None,
        current_weight=Decimal("0"),
        available=available,
        verified=verified,
        ground_full=False,
        rack_type=rack_type,
        height=Decimal(str(height)) if height is not None else location_height(rack_type, level),
    )
    db.add(loc)
    if commit:
        db.commit()
        db.refresh(loc)
    return loc


def seed_bays(
    db: Session,
    *,
    row: str,
    bay_start: int,
    bay_end: int,
    max_level: int = 4,
    rack_type: str = "standard",
    weight_limits: dict | None = None,
) -> list[Location]:
    """Warehouse setup: every position of every level for a range of bays.

    Existing codes are left untouched, so re-running a setup is harmless.
    """
    if bay_start > bay_end:
        raise InvalidItemData("Start bay must be less than or equal to end bay")
    if not 0 <= max_level < MAX_LEVELS:
        raise InvalidItemData(f"max_level must be between 0 and {MAX_LEVELS - 1}")
    limits = {str(k): v for k, v in (weight_limits or {}).items()}
    existing = {c for (c,) in db.query(Location.code).all()}
    created: list[Location] = []
    for bay in range(bay_start, bay_end + 1):
        for position in range(1, LOCATIONS_PER_BAY + 1):
            for level in range(0, max_level + 1):
                code = location_code(row.upper(), bay, level, position)
                if code in existing:
                    continue
                created.append(create_location(
                    db, row=row, bay=bay, level=level, position=position,
                    max_weight=limits.get(str(level)), rack_type=rack_type, commit=False,
                ))
    db.commit()
    logger.info("seeded %d locations in row %s bays %s-%s", len(created), row.upper(), bay_start, bay_end)
    return created


def set_flags(db: Session, code: str, *, available: bool | None = None, verified: bool | None = None,
              ground_full: bool | None = None) -> Location:
    loc = require_location(db, code)
    if available is not None:
        loc.available = available
    if verified is not None:
        loc.verified = verified
    if ground_full is not None:
        loc.ground_full = ground_full
    db.commit()
    db.refresh(loc)
    return loc


def apply_weight_delta(db: Session, code: str, delta, *, commit: bool = True) -> Location:
    """Catalog entry point for a guarded weight change (see ledger)."""
    try:
        result = ledger.apply_weight_delta(db, code, delta)
    except Exception:
        db.rollback()
        raise
    if commit:
        db.commit()
        db.refresh(result.row)
    return result.row
