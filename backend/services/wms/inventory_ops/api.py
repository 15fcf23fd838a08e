from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.errors import ItemNotFound
from app.core.operator import Operator, get_operator
from app.db.models.warehouse import Category, Item, Location, Movement
from app.db.session import get_db
from services.wms.inventory_ops import items as item_svc
from services.wms.inventory_ops import kanban
from services.wms.inventory_ops import locations as loc_svc
from services.wms.inventory_ops.movements import movements_for_item, recent_movements
from services.wms.inventory_ops.putaway_rules import suggest_putaway_location

router = APIRouter(tags=["warehouse"])


def _num(x):
    return float(x) if x is not None else None


def location_out(loc: Location, stacked: int | None = None) -> dict:
    out = {
        "id": loc.id,
        "code": loc.code,
        "row": loc.row,
        "bay": loc.bay,
        "level": loc.level,
        "position": loc.position,
        "max_weight": _num(loc.max_weight),
        "current_weight": float(loc.current_weight),
        "remaining_capacity": _num(loc.remaining_capacity),
        "available": loc.available,
        "verified": loc.verified,
        "ground_full": loc.ground_full,
        "rack_type": loc.rack_type,
        "height": float(loc.height),
    }
    if stacked is not None:
        out["stacked"] = stacked
    return out


def item_out(i: Item) -> dict:
    return {
        "id": i.id,
        "system_code": i.system_code,
        "item_code": i.item_code,
        "description": i.description,
        "weight": float(i.weight),
        "category": i.category,
        "status": i.status,
        "location": i.location,
        "location_verified": i.location_verified,
        "metadata": i.meta,
        "created_at": i.created_at.isoformat() if i.created_at else None,
    }


def movement_out(m: Movement) -> dict:
    return {
        "id": m.id,
        "type": m.type,
        "item_id": m.item_id,
        "category_code": m.category_code,
        "location_code": m.location_code,
        "weight": float(m.weight),
        "quantity": _num(m.quantity),
        "operator": m.operator,
        "reference": m.reference,
        "notes": m.notes,
        "timestamp": m.created_at.isoformat() if m.created_at else None,
    }


def category_out(c: Category) -> dict:
    return {
        "code": c.code,
        "name": c.name,
        "prefix": c.prefix,
        "ground_level_required": c.ground_level_required,
        "kanban_managed": c.kanban_managed,
        "current_quantity": float(c.current_quantity),
        "min_quantity": float(c.min_quantity),
        "max_quantity": _num(c.max_quantity),
        "reorder_point": float(c.reorder_point),
        "fixed_locations": list(c.fixed_locations or []),
        "stock_status": kanban.stock_status(c) if c.kanban_managed else None,
    }


# ---- locations ----

class LocationIn(BaseModel):
    row: str
    bay: int = Field(ge=1)
    level: int = Field(ge=0)
    position: int = Field(default=1, ge=1)
    max_weight: float | None = Field(default=None, gt=0)
    rack_type: str = "standard"
    height: float | None = None
    available: bool = True
    verified: bool = True


class SeedIn(BaseModel):
    row: str
    bay_start: int = Field(ge=1)
    bay_end: int = Field(ge=1)
    max_level: int = 4
    rack_type: str = "standard"
    weight_limits: dict[str, float] | None = None


class FlagsIn(BaseModel):
    available: bool | None = None
    verified: bool | None = None
    ground_full: bool | None = None


@router.get("/locations")
def list_locations(db: Session = Depends(get_db)):
    rows = loc_svc.list_locations(db)
    occupancy = loc_svc.ground_occupancy(db, [l.code for l in rows if l.is_ground])
    return [location_out(l, occupancy.get(l.code, 0) if l.is_ground else None) for l in rows]


@router.get("/locations/available")
def available_locations(min_weight: float = 0, db: Session = Depends(get_db)):
    return [location_out(l) for l in loc_svc.list_available(db, min_weight=min_weight)]


@router.get("/locations/suggest")
def suggest_location(weight: float, ground_level_required: bool = False, db: Session = Depends(get_db)):
    loc = suggest_putaway_location(db, weight=weight, ground_level_required=ground_level_required)
    return {"location": location_out(loc) if loc else None}


@router.get("/locations/{code}")
def get_location(code: str, db: Session = Depends(get_db)):
    loc = loc_svc.require_location(db, code)
    stacked = loc_svc.ground_occupancy(db, [loc.code]).get(loc.code, 0) if loc.is_ground else None
    return location_out(loc, stacked)


@router.post("/locations", status_code=201)
def create_location(payload: LocationIn, db: Session = Depends(get_db)):
    loc = loc_svc.create_location(db, **payload.model_dump())
    return location_out(loc)


@router.post("/locations/seed", status_code=201)
def seed_locations(payload: SeedIn, db: Session = Depends(get_db)):
    created = loc_svc.seed_bays(db, **payload.model_dump())
    return {"created": len(created), "codes": [l.code for l in created]}


@router.patch("/locations/{code}")
def update_location_flags(code: str, payload: FlagsIn, db: Session = Depends(get_db)):
    loc = loc_svc.set_flags(db, code, **payload.model_dump())
    return location_out(loc)


# ---- items ----

class ItemIn(BaseModel):
    item_code: str
    category: str
    weight: float
    description: str = ""
    metadata: dict | None = None
    system_code: str | None = None


@router.post("/items", status_code=201)
def create_item(payload: ItemIn, db: Session = Depends(get_db)):
    return item_out(item_svc.create_item(db, **payload.model_dump()))


@router.get("/items")
def list_items(status: str = "pending", db: Session = Depends(get_db)):
    return [item_out(i) for i in item_svc.list_by_status(db, status)]


@router.get("/items/by-code/{system_code}")
def get_item_by_code(system_code: str, db: Session = Depends(get_db)):
    item = item_svc.get_by_system_code(db, system_code)
    if item is None:
        raise ItemNotFound(f"Item {system_code} not found", system_code=system_code)
    return item_out(item)


@router.get("/items/{item_id}")
def get_item(item_id: str, db: Session = Depends(get_db)):
    return item_out(item_svc.require_item(db, item_id))


@router.get("/items/{item_id}/movements")
def item_movements(item_id: str, db: Session = Depends(get_db)):
    item_svc.require_item(db, item_id)
    return [movement_out(m) for m in movements_for_item(db, item_id)]


# ---- movements ----

@router.get("/movements")
def list_movements(limit: int | None = None, db: Session = Depends(get_db)):
    return [movement_out(m) for m in recent_movements(db, limit=limit)]


# ---- categories / kanban ----

class CategoryIn(BaseModel):
    code: str
    name: str
    prefix: str = ""
    ground_level_required: bool = False
    kanban_managed: bool = False
    current_quantity: float = Field(default=0, ge=0)
    min_quantity: float = Field(default=0, ge=0)
    max_quantity: float | None = Field(default=None, gt=0)
    reorder_point: float = Field(default=0, ge=0)
    fixed_locations: list[str] = []


class KanbanMovementIn(BaseModel):
    type: str
    quantity: float
    reference: str | None = None
    correlation_id: str | None = None
    notes: str | None = None


@router.post("/categories", status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    return category_out(kanban.create_category(db, **payload.model_dump()))


@router.get("/categories")
def list_categories(db: Session = Depends(get_db)):
    return [category_out(c) for c in kanban.list_categories(db)]


@router.get("/categories/{code}")
def get_category(code: str, db: Session = Depends(get_db)):
    return category_out(kanban.require_category(db, code))


@router.post("/categories/{code}/movements")
def kanban_movement(code: str, payload: KanbanMovementIn, db: Session = Depends(get_db),
                    op: Operator = Depends(get_operator)):
    res = kanban.record_kanban_movement(db, category_code=code, operator=op.name, **payload.model_dump())
    return {"applied": res.applied, "movement": movement_out(res.movement), "category": category_out(res.category)}
