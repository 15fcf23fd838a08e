from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.errors import CapacityExceeded, InvalidTransition, ItemNotFound, LocationNotEligible, WarehouseError
from app.db.models.warehouse import ITEM_PENDING, ITEM_PLACED, MOVEMENT_IN, Item, Location, Movement
from app.db.models.wms.scan_sessions import ScanSession
from services.wms.inventory_ops import ledger
from services.wms.inventory_ops.items import get_item, needs_ground_level, require_item
from services.wms.inventory_ops.locations import get_by_code, require_location
from services.wms.inventory_ops.movements import record_movement
from services.wms.inventory_ops.putaway_rules import can_accept, suggest_putaway_location
from services.wms.scan import flows
from services.wms.scan.flows import PlacementFlow
from services.wms.scan.sessions import (
    FATAL_ERRORS,
    NOOP,
    OK,
    PLACE,
    REJECTED,
    close_cancelled,
    get_session,
    check_owner,
    load_flow,
    log_event,
    open_session,
    run_step,
    save_flow,
)

logger = logging.getLogger(__name__)

REQUIRE_LOCATION_SCAN = os.getenv("REQUIRE_LOCATION_SCAN", "1").strip().lower() not in ("0", "false", "no")


@dataclass
class PlacementResult:
    session: ScanSession
    item: Item
    location: Location | None
    movement: Movement | None
    applied: bool


def _suggest_code(db: Session, item: Item) -> str | None:
    loc = suggest_putaway_location(db, weight=item.weight, ground_level_required=needs_ground_level(db, item))
    return loc.code if loc else None


def start_placement(db: Session, *, item_id: str, operator: str, require_location_scan: bool | None = None) -> ScanSession:
    """Open a placement session for a pending item and suggest a slot.

    Writes only the session row; a missing suggestion leaves the session in
    MANUAL_SELECTION.
    """
    item = require_item(db, item_id)
    if item.status != ITEM_PENDING:
        raise InvalidTransition(f"Item {item.system_code} is {item.status}, not pending", status=item.status)

    flow = PlacementFlow(
        item_id=item.id,
        system_code=item.system_code,
        require_location_scan=REQUIRE_LOCATION_SCAN if require_location_scan is None else require_location_scan,
    )
    s = open_session(db, kind=PLACE, flow=flow, operator=operator)
    code = _suggest_code(db, item)
    flow.suggest(code)
    log_event(db, s, action=flows.SUGGEST, raw=code, result=OK,
              message=None if code else "no suitable location; manual selection required",
              new_state=flow.state)
    save_flow(s, flow)
    db.commit()
    db.refresh(s)
    logger.info("placement %s for %s by %s: suggested %s", s.id, item.system_code, operator, code or "-")
    return s


def initial_flow(s: ScanSession) -> PlacementFlow:
    flow = PlacementFlow.from_dict(s.flow)
    return PlacementFlow(item_id=flow.item_id, system_code=flow.system_code,
                         require_location_scan=flow.require_location_scan)


def accept_suggestion(db: Session, *, session_id: str, operator: str) -> ScanSession:
    return run_step(db, session_id=session_id, kind=PLACE, operator=operator,
                    action=flows.ACCEPT, raw=None, step=lambda f: f.accept())


def reject_suggestion(db: Session, *, session_id: str, operator: str) -> ScanSession:
    return run_step(db, session_id=session_id, kind=PLACE, operator=operator,
                    action=flows.REJECT, raw=None, step=lambda f: f.reject())


def choose_location(db: Session, *, session_id: str, operator: str, location_code: str) -> ScanSession:
    """Manual selection: any location that passes the selector's own filter."""

    def step(flow: PlacementFlow) -> None:
        item = require_item(db, flow.item_id)
        loc = require_location(db, location_code)
        if not can_accept(loc, item.weight, ground_level_required=needs_ground_level(db, item)):
            raise LocationNotEligible(
                f"Location {loc.code} cannot take {item.weight} kg", code=loc.code,
            )
        flow.choose(loc.code)

    return run_step(db, session_id=session_id, kind=PLACE, operator=operator,
                    action=flows.CHOOSE, raw=location_code, step=step)


def scan_location(db: Session, *, session_id: str, operator: str, raw: str) -> ScanSession:
    return run_step(db, session_id=session_id, kind=PLACE, operator=operator,
                    action=flows.SCAN_LOCATION, raw=raw, step=lambda f: f.scan_location(raw))


def scan_item(db: Session, *, session_id: str, operator: str, raw: str) -> ScanSession:
    return run_step(db, session_id=session_id, kind=PLACE, operator=operator,
                    action=flows.SCAN_ITEM, raw=raw, step=lambda f: f.scan_item(raw))


def cancel_placement(db: Session, *, session_id: str, operator: str) -> ScanSession:
    # nothing shared was written before commit, so cancelling is just closing
    return run_step(db, session_id=session_id, kind=PLACE, operator=operator,
                    action=flows.CANCEL, raw=None, step=lambda f: f.cancel())


def _existing_result(db: Session, s: ScanSession, item: Item) -> PlacementResult:
    mv = db.query(Movement).filter(Movement.id == s.movement_id).first() if s.movement_id else None
    loc = get_by_code(db, item.location) if item.location else None
    return PlacementResult(session=s, item=item, location=loc, movement=mv, applied=False)


def _noop_already_handled(db: Session, s: ScanSession, flow: PlacementFlow, item: Item) -> PlacementResult:
    message = f"Item {item.system_code} is already {item.status}; nothing to commit"
    log_event(db, s, action=flows.COMMIT, raw=None, result=NOOP, message=message, new_state=flow.state)
    close_cancelled(db, s, flow, message=message)
    db.commit()
    logger.info("placement %s: %s", s.id, message)
    return _existing_result(db, s, item)


def _lost_claim(db: Session, session_id: str) -> PlacementResult:
    s = get_session(db, session_id)
    flow: PlacementFlow = load_flow(s)
    item = require_item(db, flow.item_id)
    if flow.state == flows.PLACED:
        # a duplicate submit of this same session won
        return _existing_result(db, s, item)
    return _noop_already_handled(db, s, flow, item)


def commit_placement(db: Session, *, session_id: str, operator: str) -> PlacementResult:
    """The only step that writes shared state, in one transaction:

    ledger +weight on the target, item -> placed, one IN movement.
    Re-submitting a committed session, or committing an item another session
    already placed, is a no-op.
    """
    s = get_session(db, session_id)
    if s.kind != PLACE:
        raise InvalidTransition("Session is not a placement session")
    check_owner(s, operator)
    flow: PlacementFlow = load_flow(s)

    if flow.state == flows.PLACED:
        return _existing_result(db, s, require_item(db, flow.item_id))
    if flow.state != flows.ITEM_CONFIRMED:
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
    if item.status != ITEM_PENDING:
        return _noop_already_handled(db, s, flow, item)

    target = flow.target_code
    try:
        # claim the item first: a concurrent commit for the same item loses here
        claimed = db.execute(
            update(Item)
            .where(Item.id == item.id, Item.status == ITEM_PENDING, Item.version == item.version)
            .values(status=ITEM_PLACED, location=target, location_verified=True, version=item.version + 1)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed != 1:
            db.rollback()
            return _lost_claim(db, session_id)

        # flags may have changed since the slot was confirmed
        loc = (db.query(Location).filter(Location.code == target)
               .populate_existing().first())
        if loc is not None and not can_accept(loc, 0, ground_level_required=needs_ground_level(db, item)):
            raise LocationNotEligible(f"Location {target} no longer accepts items", code=target)

        result = ledger.apply_weight_delta(db, target, item.weight)
        mv = record_movement(
            db,
            correlation_id=f"place:{s.id}",
            type=MOVEMENT_IN,
            operator=operator,
            reference=item.item_code,
            weight=item.weight,
            item_id=item.id,
            location_code=target,
            notes=f"Placed at {target}",
            meta={"session_id": s.id, "system_code": item.system_code,
                  "location_weight_after": float(result.after)},
        )
        flow.mark_placed()
        s.movement_id = mv.id
        log_event(db, s, action=flows.COMMIT, raw=None, result=OK, message=f"Placed at {target}", new_state=flow.state)
        save_flow(s, flow)
        db.commit()
    except (CapacityExceeded, LocationNotEligible) as exc:
        db.rollback()
        return _revert_and_resuggest(db, session_id, exc)
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
    logger.info("placed %s (%s kg) at %s by %s", item.system_code, item.weight, target, operator)
    return PlacementResult(session=s, item=item, location=result.row, movement=mv, applied=True)


def _revert_and_resuggest(db: Session, session_id: str, exc: WarehouseError):
    s = get_session(db, session_id)
    flow: PlacementFlow = load_flow(s)
    lost = flow.target_code
    log_event(db, s, action=flows.COMMIT, raw=None, result=REJECTED, message=exc.message, new_state=flow.state)
    item = require_item(db, flow.item_id)
    code = _suggest_code(db, item)
    flow.revert(code)
    log_event(db, s, action=flows.REVERT, raw=code, result=OK,
              message=f"{lost} no longer fits; re-suggesting", new_state=flow.state)
    save_flow(s, flow, error=exc.message)
    db.commit()
    logger.info("placement %s lost %s (%s); now %s with suggestion %s", s.id, lost, exc.code, flow.state, code or "-")
    exc.data.update({"session_id": s.id, "state": flow.state, "suggested_code": code})
    raise exc
