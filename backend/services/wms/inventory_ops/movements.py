from __future__ import annotations

import os
from decimal import Decimal

from sqlalchemy.orm import Session

from app.db.models.warehouse import MOVEMENT_IN, MOVEMENT_OUT, Movement
from app.events.bus import MOVEMENT_RECORDED, publish

RECENT_MOVEMENTS_LIMIT = int(os.getenv("RECENT_MOVEMENTS_LIMIT", "20"))


def _dec(x) -> Decimal:
    return Decimal(str(x))


def find_by_correlation(db: Session, correlation_id: str) -> Movement | None:
    return db.query(Movement).filter(Movement.correlation_id == correlation_id).first()


def record_movement(
    db: Session,
    *,
    correlation_id: str,
    type: str,
    operator: str,
    reference: str,
    weight=0,
    quantity=None,
    item_id: str | None = None,
    category_code: str | None = None,
    location_code: str | None = None,
    notes: str | None = None,
    meta: dict | None = None,
) -> Movement:
    """Append one movement plus its outbox event. Does not commit.

    Callers check find_by_correlation first; the unique correlation id makes a
    duplicate append fail the whole transaction rather than write twice.
    """
    if type not in (MOVEMENT_IN, MOVEMENT_OUT):
        raise ValueError(f"movement type must be IN or OUT, got {type}")
    mv = Movement(
        correlation_id=correlation_id,
        type=type,
        item_id=item_id,
        category_code=category_code,
        location_code=location_code,
        weight=_dec(weight),
        quantity=_dec(quantity) if quantity is not None else None,
        operator=operator,
        reference=reference,
        notes=notes,
        meta=meta or {},
    )
    db.add(mv)
    db.flush()
    publish(db, MOVEMENT_RECORDED, {
        "movement_id": mv.id,
        "correlation_id": correlation_id,
        "type": type,
        "item_id": item_id,
        "category_code": category_code,
        "location_code": location_code,
        "weight": float(mv.weight),
        "quantity": float(mv.quantity) if mv.quantity is not None else None,
        "operator": operator,
        "reference": reference,
    })
    return mv


def recent_movements(db: Session, *, limit: int | None = None) -> list[Movement]:
    return (db.query(Movement)
            .order_by(Movement.created_at.desc(), Movement.id.desc())
            .limit(limit or RECENT_MOVEMENTS_LIMIT)
            .all())


def movements_for_item(db: Session, item_id: str) -> list[Movement]:
    return (db.query(Movement)
            .filter(Movement.item_id == item_id)
            .order_by(Movement.created_at.asc())
            .all())
