from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.errors import SessionNotFound
from app.core.operator import Operator, get_operator
from app.db.models.wms.scan_sessions import ScanEvent, ScanSession
from app.db.session import get_db
from services.wms.inventory_ops.api import item_out, location_out, movement_out
from services.wms.scan import picking, placement
from services.wms.scan.routing import resolve_scan
from services.wms.scan.sessions import PICK, PLACE, get_session

router = APIRouter(tags=["scan"])


class ScanIn(BaseModel):
    raw: str


class ChooseIn(BaseModel):
    location_code: str


class StartPlacementIn(BaseModel):
    item_id: str
    require_location_scan: bool | None = None


class StartPickIn(BaseModel):
    item_id: str | None = None
    system_code: str | None = None
    department: str | None = None


def session_out(db: Session, s: ScanSession, *, with_events: bool = False) -> dict:
    out = {
        "id": s.id,
        "kind": s.kind,
        "state": s.state,
        "operator": s.operator,
        "item_id": s.item_id,
        "closed": s.closed,
        "last_error": s.last_error,
        "movement_id": s.movement_id,
        "flow": s.flow,
    }
    if with_events:
        rows = (db.query(ScanEvent)
                .filter(ScanEvent.session_id == s.id)
                .order_by(ScanEvent.seq.asc())
                .all())
        out["events"] = [{
            "seq": e.seq,
            "action": e.action,
            "raw": e.raw,
            "result": e.result,
            "message": e.message,
            "new_state": e.new_state,
        } for e in rows]
    return out


def result_out(db: Session, res) -> dict:
    return {
        "applied": res.applied,
        "session": session_out(db, res.session),
        "item": item_out(res.item),
        "location": location_out(res.location) if res.location else None,
        "movement": movement_out(res.movement) if res.movement else None,
    }


@router.get("/scan/{raw}")
def route_scan(raw: str, db: Session = Depends(get_db)):
    route = resolve_scan(db, raw)
    return {"action": route.action, "item": item_out(route.item)}


# ---- placement ----

@router.post("/placements", status_code=201)
def start_placement(payload: StartPlacementIn, db: Session = Depends(get_db), op: Operator = Depends(get_operator)):
    s = placement.start_placement(db, item_id=payload.item_id, operator=op.name,
                                  require_location_scan=payload.require_location_scan)
    return session_out(db, s)


@router.get("/placements/{session_id}")
def get_placement(session_id: str, db: Session = Depends(get_db)):
    s = get_session(db, session_id)
    if s.kind != PLACE:
        raise SessionNotFound("Session not found", session_id=session_id)
    return session_out(db, s, with_events=True)


@router.post("/placements/{session_id}/accept")
def accept(session_id: str, db: Session = Depends(get_db), op: Operator = Depends(get_operator)):
    return session_out(db, placement.accept_suggestion(db, session_id=session_id, operator=op.name))


@router.post("/placements/{session_id}/reject")
def reject(session_id: str, db: Session = Depends(get_db), op: Operator = Depends(get_operator)):
    return session_out(db, placement.reject_suggestion(db, session_id=session_id, operator=op.name))


@router.post("/placements/{session_id}/choose")
def choose(session_id: str, payload: ChooseIn, db: Session = Depends(get_db), op: Operator = Depends(get_operator)):
    s = placement.choose_location(db, session_id=session_id, operator=op.name, location_code=payload.location_code)
    return session_out(db, s)


@router.post("/placements/{session_id}/scan-location")
def placement_scan_location(session_id: str, payload: ScanIn, db: Session = Depends(get_db),
                            op: Operator = Depends(get_operator)):
    return session_out(db, placement.scan_location(db, session_id=session_id, operator=op.name, raw=payload.raw))


@router.post("/placements/{session_id}/scan-item")
def placement_scan_item(session_id: str, payload: ScanIn, db: Session = Depends(get_db),
                        op: Operator = Depends(get_operator)):
    return session_out(db, placement.scan_item(db, session_id=session_id, operator=op.name, raw=payload.raw))


@router.post("/placements/{session_id}/commit")
def commit_placement(session_id: str, db: Session = Depends(get_db), op: Operator = Depends(get_operator)):
    return result_out(db, placement.commit_placement(db, session_id=session_id, operator=op.name))


@router.post("/placements/{session_id}/cancel")
def cancel_placement(session_id: str, db: Session = Depends(get_db), op: Operator = Depends(get_operator)):
    return session_out(db, placement.cancel_placement(db, session_id=session_id, operator=op.name))


# ---- pick ----

@router.post("/picks", status_code=201)
def start_pick(payload: StartPickIn, db: Session = Depends(get_db), op: Operator = Depends(get_operator)):
    s = picking.start_pick(db, operator=op.name, item_id=payload.item_id,
                           system_code=payload.system_code, department=payload.department)
    return session_out(db, s)


@router.get("/picks/{session_id}")
def get_pick(session_id: str, db: Session = Depends(get_db)):
    s = get_session(db, session_id)
    if s.kind != PICK:
        raise SessionNotFound("Session not found", session_id=session_id)
    return session_out(db, s, with_events=True)


@router.post("/picks/{session_id}/scan-item")
def pick_scan_item(session_id: str, payload: ScanIn, db: Session = Depends(get_db),
                   op: Operator = Depends(get_operator)):
    return session_out(db, picking.scan_item(db, session_id=session_id, operator=op.name, raw=payload.raw))


@router.post("/picks/{session_id}/commit")
def commit_pick(session_id: str, db: Session = Depends(get_db), op: Operator = Depends(get_operator)):
    return result_out(db, picking.commit_pick(db, session_id=session_id, operator=op.name))


@router.post("/picks/{session_id}/cancel")
def cancel_pick(session_id: str, db: Session = Depends(get_db), op: Operator = Depends(get_operator)):
    return session_out(db, picking.cancel_pick(db, session_id=session_id, operator=op.name))
