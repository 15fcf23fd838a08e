from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import CategoryNotFound, InvalidItemData
from app.db.models.warehouse import Category, MOVEMENT_IN, MOVEMENT_OUT, Movement
from services.wms.inventory_ops import ledger
from services.wms.inventory_ops.movements import find_by_correlation, record_movement

logger = logging.getLogger(__name__)

LOW_STOCK = "LOW_STOCK"
REORDER_SOON = "REORDER_SOON"
STOCK_OK = "OK"


def _dec(x) -> Decimal:
    return Decimal(str(x))


@dataclass
class KanbanResult:
    movement: Movement
    category: Category
    applied: bool


def create_category(
    db: Session,
    *,
    code: str,
    name: str,
    prefix: str = "",
    ground_level_required: bool = False,
    kanban_managed: bool = False,
    current_quantity=0,
    min_quantity=0,
    max_quantity=None,
    reorder_point=0,
    fixed_locations: list[str] | None = None,
) -> Category:
    code = (code or "").strip()
    if not code or not (name or "").strip():
        raise InvalidItemData("Category code and name are required")
    if max_quantity is not None and _dec(current_quantity) > _dec(max_quantity):
        raise InvalidItemData("current_quantity exceeds max_quantity")
    cat = Category(
        code=code,
        name=name.strip(),
        prefix=(prefix or "").strip().upper(),
        ground_level_required=ground_level_required,
        kanban_managed=kanban_managed,
        current_quantity=_dec(current_quantity),
        min_quantity=_dec(min_quantity),
        max_quantity=_dec(max_quantity) if max_quantity is not None else None,
        reorder_point=_dec(reorder_point),
        fixed_locations=list(fixed_locations or []),
    )
    db.add(cat)
    db.commit()
    db.refresh(cat)
    return cat


def list_categories(db: Session) -> list[Category]:
    return db.query(Category).order_by(Category.code.asc()).all()


def require_category(db: Session, code: str) -> Category:
    cat = db.query(Category).filter(Category.code == code).first()
    if not cat:
        raise CategoryNotFound(f"Category {code} not found", code=code)
    return cat


def stock_status(cat: Category) -> str:
    current = _dec(cat.current_quantity)
    if current <= _dec(cat.min_quantity):
        return LOW_STOCK
    if current <= _dec(cat.reorder_point):
        return REORDER_SOON
    return STOCK_OK


def record_kanban_movement(
    db: Session,
    *,
    category_code: str,
    type: str,
    quantity,
    operator: str,
    reference: str | None = None,
    correlation_id: str | None = None,
    notes: str | None = None,
) -> KanbanResult:
    """IN/OUT for a count-managed category: bounded counter update + one movement.

    A repeated correlation id returns the original movement without touching
    the counter.
    """
    if type not in (MOVEMENT_IN, MOVEMENT_OUT):
        raise InvalidItemData(f"type must be IN or OUT, got {type}")
    qty = _dec(quantity)
    if qty <= 0:
        raise InvalidItemData("quantity must be positive", quantity=float(qty))
    cat = require_category(db, category_code)
    if not cat.kanban_managed:
        raise InvalidItemData(f"Category {category_code} is not count-managed", code=category_code)

    correlation_id = correlation_id or f"kanban:{category_code}:{uuid.uuid4()}"
    existing = find_by_correlation(db, correlation_id)
    if existing:
        return KanbanResult(movement=existing, category=cat, applied=False)

    delta = qty if type == MOVEMENT_IN else -qty
    try:
        result = ledger.apply_quantity_delta(db, category_code, delta)
        mv = record_movement(
            db,
            correlation_id=correlation_id,
            type=type,
            operator=operator,
            reference=reference or category_code,
            weight=0,
            quantity=qty,
            category_code=category_code,
            notes=notes,
            meta={"before": float(result.before), "after": float(result.after)},
        )
        db.commit()
    except IntegrityError:
        # a concurrent request with the same correlation id committed first
        db.rollback()
        existing = find_by_correlation(db, correlation_id)
        if existing is None:
            raise
        db.refresh(cat)
        return KanbanResult(movement=existing, category=cat, applied=False)
    except Exception:
        db.rollback()
        raise
    db.refresh(cat)
    logger.info("kanban %s %s x%s by %s -> %s", type, category_code, qty, operator, cat.current_quantity)
    return KanbanResult(movement=mv, category=cat, applied=True)
