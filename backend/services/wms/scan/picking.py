from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.errors import InvalidTransition, ItemNotFound, LocationNotFound
from app.db.models.warehouse import ITEM_PLACED, ITEM_REMOVED, MOVEMENT_OUT, Item, Location, Movement
from app.db.models.wms.scan_sessions import ScanSession
from services.wms.inventory_ops import ledger
from services.wms.inventory_ops.items import get_by_system_code, get_item, require_item
from services.wms.inventory_ops.locations import get_by_code
from services.wms.inventory_ops.movements import record_movement
from services.wms.scan import flows
from services.wms.scan.flows import PickFlow
from services.wms.scan.sessions import (
    FATAL_ERRORS,
    NOOP,
    OK,
    PICK,
    REJECTED,
    check_owner,
    close_cancelled,
    get_session,
    load_flow,
    log_event,
    open_session,
    run_step,
    save_flow,
)

logger = logging.getLogger(__name__)


@dataclass
class PickResult:
    session: ScanSession
    item: Item
    location: Location | None
    movement: Movement | None
    applied: bool


def start_pick(
    db: Session,
    *,
    operator: str,
    item_id: str | None = None,
    system_code: str | None = None,
    department: str | None = None,
) -> ScanSession:
    """Select a placed item for removal. Writes only the session row."""
    if item_id:
        item = require_item(db, item_id)
    elif system_code:
        item = get_by_system_code(db, system_code)
        if item is None:
            raise ItemNotFound(f"Item {system_code} not found", system_code=system_code)
    else:
        raise ItemNotFound("item_id or system_code is required")

    if item.status != ITEM_PLACED or not item.location:
        raise InvalidTransition(f"Item {item.system_code} is {item.status}, not placed", status=item.status)
    if get_by_code(db, item.location) is None:
        raise LocationNotFound(f"Location {item.location} not found", code=item.location)

    flow = PickFlow(item_id=item.id, system_code=item.system_code, location_code=item.location,
                    department=(department or "").strip() or None)
    s = open_session(db, kind=PICK, flow=flow, operator=operator)
    db.commit()
    db.refresh(s)
    logger.info("pick %s for %s at %s by %s", s.id, item.system_code, item.location, operator)
    return s


def initial_flow(s: ScanSession) -> PickFlow:
    flow = PickFlow.from_dict(s.flow)
    return PickFlow(item_id=flow.item_id, system_code=flow.system_code,
                    location_code=flow.location_code, department=flow.department)


def scan_item(db: Session, *, session_id: str, operator: str, raw: str) -> ScanSession:
    return run_step(db, session_id=session_id, kind=PICK, operator=operator,
                    action=flows.SCAN_ITEM, raw=raw, step=lambda f: f.scan_item(raw))


def cancel_pick(db: Session, *, session_id: str, operator: str) -> ScanSession:
    return run_step(db, session_id=session_id, kind=PICK, operator=operator,
                    action=flows.CANCEL, raw=None, step=lambda f: f.cancel())


def _existing_result(db: Session, s: ScanSession, item: Item, location_code: str) -> PickResult:
    mv = db.query(Movement).filter(Movement.id == s.movement_id).first() if s.movement_id else None
    return PickResult(session=s, item=item, location=get_by_code(db, location_code), movement=mv, applied=False)


def _noop_already_handled(db: Session, s: ScanSession, flow: PickFlow, item: Item) -> PickResult:
    message = f"Item {item.system_code} is {item.status}; nothing to pick"
    log_event(db, s, action=flows.COMMIT, raw=None, result=NOOP, message=message, new_state=flow.state)
    close_cancelled(db, s, flow, message=message)
    db.commit()
    logger.info("pick %s: %s", s.id, message)
    return _existing_result(db, s, item, flow.location_code)


def _lost_claim(db: Session, session_id: str) -> PickResult:
    s = get_session(db, session_id)
    flow: PickFlow = load_flow(s)
    item = require_item(db, flow.item_id)
    if flow.state == flows.PICKED:
        return _existing_result(db, s, item, flow.location_code)
    return _noop_already_handled(db, s, flow, item)


def commit_pick(db: Session, *, session_id: str, operator: str) -> PickResult:
    """Ledger -weight, item -> removed, one OUT movement; all or nothing.

    An underflowing location is clamped at zero and the clamp is noted on the
    movement.
    """
    s = get_session(db, session_id)
    if s.kind != PICK:
        raise InvalidTransition("Session is not a pick session")
    check_owner(s, operator)
    flow: PickFlow = load_flow(s)

    if flow.state == flows.PICKED:
        return _existing_result(db, s, require_item(db, flow.item_id), flow.location_code)
    if flow.state != flows.ITEM_SCANNED:
        exc = InvalidTransition(f"Cannot commit from {flow.state}", state=flow.state)
        log_event(db, s, action=flows.COMMIT, raw=None, result=REJECTED, message=exc.message, new_state=flow.state)
        db.commit()
        raise exc

    item = get_item(db, flow.item_id)
    if item is None:
        exc = ItemNotFound(f"Item {flow.item_id} not found", item_id=flow.item_id)
        close_cancelled(db, s, flow, message=exc.message)
        db.commit()
        raise exc
    if item.status != ITEM_PLACED or item.location != flow.location_code:
        return _noop_already_handled(db, s, flow, item)

    source = flow.location_code
    try:
        claimed = db.execute(
            update(Item)
            .where(Item.id == item.id, Item.status == ITEM_PLACED, Item.version == item.version)
            .values(status=ITEM_REMOVED, location=None, location_verified=False, version=item.version + 1)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed != 1:
            db.rollback()
            return _lost_claim(db, session_id)

        result = ledger.apply_weight_delta(db, source, -item.weight)
        notes = f"Picked from {source}"
        if flow.department:
            notes += f" for {flow.department}"
        meta = {"session_id": s.id, "system_code": item.system_code,
                "location_weight_after": float(result.after)}
        if flow.department:
            meta["department"] = flow.department
        if result.clamped:
            meta["clamped"] = True
            meta["location_weight_before"] = float(result.before)
        mv = record_movement(
            db,
            correlation_id=f"pick:{s.id}",
            type=MOVEMENT_OUT,
            operator=operator,
            reference=item.item_code,
            weight=item.weight,
            item_id=item.id,
            location_code=source,
            notes=notes,
            meta=meta,
        )
        flow.mark_picked()
        s.movement_id = mv.id
        log_event(db, s, action=flows.COMMIT, raw=None, result=OK, message=notes, new_state=flow.state)
        save_flow(s, flow)
        db.commit()
    except FATAL_ERRORS as exc:
        db.rollback()
        s = get_session(db, session_id)
        close_cancelled(db, s, load_flow(s), message=exc.message)
        db.commit()
        raise
    except Exception:
        db.rollback()
        raise

    db.refresh(s)
    db.refresh(item)
    logger.info("picked %s (%s kg) from %s by %s", item.system_code, item.weight, source, operator)
    return PickResult(session=s, item=item, location=result.row, movement=mv, applied=True)
