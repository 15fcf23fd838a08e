from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.errors import (
    CapacityExceeded,
    CategoryNotFound,
    ConcurrentConflict,
    InsufficientQuantity,
    LedgerConflict,
    LocationNotFound,
    WarehouseError,
)
from app.db.models.warehouse import Category, GROUND_LEVEL, Location

logger = logging.getLogger(__name__)

LEDGER_MAX_RETRIES = int(os.getenv("LEDGER_MAX_RETRIES", "3"))


def _dec(x) -> Decimal:
    return Decimal(str(x))


@dataclass(frozen=True)
class BoundedCounter:
    """Describes one guarded numeric column: which row, which value, which bound.

    Every counter row carries a `version` column; writers update with
    `WHERE version = <read version>` so a concurrent writer is detected
    instead of overwritten.
    """

    name: str
    model: Any
    key_attr: str
    value_attr: str
    bound_attr: str
    missing: type[WarehouseError]
    # below-zero results are clamped (and logged) instead of rejected
    clamp_underflow: bool = False
    unbounded: Callable[[Any], bool] = lambda row: False


LOCATION_WEIGHT = BoundedCounter(
    name="location weight",
    model=Location,
    key_attr="code",
    value_attr="current_weight",
    bound_attr="max_weight",
    missing=LocationNotFound,
    clamp_underflow=True,
    unbounded=lambda row: row.level == GROUND_LEVEL,
)

CATEGORY_QUANTITY = BoundedCounter(
    name="category quantity",
    model=Category,
    key_attr="code",
    value_attr="current_quantity",
    bound_attr="max_quantity",
    missing=CategoryNotFound,
)


@dataclass
class LedgerResult:
    key: str
    before: Decimal
    after: Decimal
    delta: Decimal
    clamped: bool
    attempts: int
    row: Any


def _read(db: Session, counter: BoundedCounter, key: str):
    # populate_existing: always see the latest committed value, never the identity map
    stmt = (select(counter.model)
            .where(getattr(counter.model, counter.key_attr) == key)
            .execution_options(populate_existing=True))
    return db.execute(stmt).scalar_one_or_none()


def _try_apply(db: Session, counter: BoundedCounter, row, delta: Decimal) -> tuple[Decimal, Decimal, bool]:
    key = getattr(row, counter.key_attr)
    before = _dec(getattr(row, counter.value_attr) or 0)
    after = before + delta
    bound = getattr(row, counter.bound_attr)
    clamped = False

    if delta > 0 and bound is not None and not counter.unbounded(row) and after > _dec(bound):
        raise CapacityExceeded(
            f"{counter.name} of {key} would be {after} (max {_dec(bound)})",
            key=key, current=float(before), delta=float(delta), max=float(bound),
        )
    if after < 0:
        if not counter.clamp_underflow:
            raise InsufficientQuantity(
                f"{counter.name} of {key} would drop to {after}",
                key=key, current=float(before), delta=float(delta),
            )
        logger.warning("%s of %s clamped at 0 (current %s, delta %s)", counter.name, key, before, delta)
        after = Decimal("0")
        clamped = True

    model = counter.model
    res = db.execute(
        update(model)
        .where(getattr(model, counter.key_attr) == key, model.version == row.version)
        .values({counter.value_attr: after, "version": row.version + 1})
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ConcurrentConflict(key)
    return before, after, clamped


def apply_delta(db: Session, counter: BoundedCounter, key: str, delta, *, max_retries: int | None = None) -> LedgerResult:
    """Atomically add `delta` to a bounded counter.

    Runs inside the caller's transaction and does not commit. Raises
    CapacityExceeded when the bound would be crossed, the counter's `missing`
    error for unknown keys, and LedgerConflict when concurrent writers win
    every attempt.
    """
    delta = _dec(delta)
    limit = LEDGER_MAX_RETRIES if max_retries is None else max_retries
    attempts = 0
    while True:
        attempts += 1
        row = _read(db, counter, key)
        if row is None:
            raise counter.missing(f"{counter.name}: {key} not found", key=key)
        try:
            before, after, clamped = _try_apply(db, counter, row, delta)
        except ConcurrentConflict:
            if attempts >= limit:
                logger.warning("%s of %s: gave up after %d conflicting attempts", counter.name, key, attempts)
                raise LedgerConflict(
                    f"{counter.name} of {key} kept changing; try again",
                    key=key, attempts=attempts,
                )
            logger.info("%s of %s changed underneath us (attempt %d), retrying", counter.name, key, attempts)
            continue
        db.refresh(row)
        return LedgerResult(key=key, before=before, after=after, delta=delta, clamped=clamped, attempts=attempts, row=row)


def apply_weight_delta(db: Session, location_code: str, delta, *, max_retries: int | None = None) -> LedgerResult:
    return apply_delta(db, LOCATION_WEIGHT, location_code, delta, max_retries=max_retries)


def apply_quantity_delta(db: Session, category_code: str, delta, *, max_retries: int | None = None) -> LedgerResult:
    return apply_delta(db, CATEGORY_QUANTITY, category_code, delta, max_retries=max_retries)
