from __future__ import annotations
from decimal import Decimal
from typing import Iterable, Mapping
from sqlalchemy.orm import Session
from app.db.models.warehouse import GROUND_LEVEL, Location
from services.wms.inventory_ops.locations import ground_occupancy, list_available

# Putaway rule engine
# - candidates: available + verified; ground-required items only go to level "0"
# - capacity: racked slots need current + weight <= max; ground always fits
# - score (lower wins), compared as a tuple:
#     tier       0 empty ground slot, 1 racked slot, 2 occupied ground slot
#     fill       negated post-placement fill ratio (fuller wins); ground = 0
#     stacked    items already on the slot (ground stacks)
#     position   row, bay, level, position, code

TIER_EMPTY_GROUND = 0
TIER_RACKED = 1
TIER_OCCUPIED_GROUND = 2

def _dec(x) -> Decimal:
    return Decimal(str(x or 0))

def _num(s) -> int:
    try:
        return int(s)
    except (TypeError, ValueError):
        return 10 ** 6

def _unbounded(loc: Location) -> bool:
    return loc.level == GROUND_LEVEL or loc.max_weight is None

def can_accept(loc: Location, weight, *, ground_level_required: bool = False) -> bool:
    """Eligibility shared by the selector and manual selection."""
    if not loc.available or not loc.verified:
        return False
    is_ground = loc.level == GROUND_LEVEL
    if ground_level_required and not is_ground:
        return False
    if is_ground:
        return not getattr(loc, "ground_full", False)
    if _unbounded(loc):
        return True
    return _dec(loc.current_weight) + _dec(weight) <= _dec(loc.max_weight)

def placement_score(loc: Location, weight, *, stacked: int | None = None) -> tuple:
    current = _dec(loc.current_weight)
    if stacked is None:
        stacked = 1 if current > 0 else 0
    if loc.level == GROUND_LEVEL:
        tier = TIER_EMPTY_GROUND if stacked == 0 and current == 0 else TIER_OCCUPIED_GROUND
        fill = Decimal("0")
    else:
        tier = TIER_RACKED
        fill = Decimal("0") if _unbounded(loc) else (current + _dec(weight)) / _dec(loc.max_weight)
    return (tier, -fill, stacked, loc.row, _num(loc.bay), _num(loc.level), _num(loc.position), loc.code)

def find_optimal_location(
    locations: Iterable[Location],
    weight,
    ground_level_required: bool = False,
    *,
    occupancy: Mapping[str, int] | None = None,
) -> Location | None:
    """Best slot for `weight`, or None when nothing fits (manual selection)."""
    occupancy = occupancy or {}
    best = None
    best_score = None
    for loc in locations:
        if not can_accept(loc, weight, ground_level_required=ground_level_required):
            continue
        stacked = occupancy.get(loc.code) if occupancy else None
        score = placement_score(loc, weight, stacked=stacked)
        if best is None or score < best_score:
            best = loc
            best_score = score
    return best

def suggest_putaway_location(db: Session, *, weight, ground_level_required: bool = False) -> Location | None:
    locs = list_available(db, min_weight=weight)
    ground_codes = [l.code for l in locs if l.level == GROUND_LEVEL]
    occupancy = ground_occupancy(db, ground_codes) if ground_codes else {}
    # every ground code gets an explicit count so "no items" reads as empty
    occupancy = {code: occupancy.get(code, 0) for code in ground_codes}
    return find_optimal_location(locs, weight, ground_level_required, occupancy=occupancy)
