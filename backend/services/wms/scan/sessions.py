from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session

from app.core.errors import (
    InvalidTransition,
    ItemNotFound,
    LocationNotFound,
    SessionNotFound,
    SessionOwnership,
    WarehouseError,
)
from app.db.models.wms.scan_sessions import ScanEvent, ScanSession
from services.wms.scan.flows import CANCELLED, PickFlow, PlacementFlow, replay

logger = logging.getLogger(__name__)

PLACE = "PLACE"
PICK = "PICK"

OK = "OK"
REJECTED = "REJECTED"
NOOP = "NOOP"

# referenced entity vanished: the session cannot go on
FATAL_ERRORS = (ItemNotFound, LocationNotFound)

FLOW_TYPES = {PLACE: PlacementFlow, PICK: PickFlow}


def get_session(db: Session, session_id: str) -> ScanSession:
    s = db.query(ScanSession).filter(ScanSession.id == session_id).first()
    if not s:
        raise SessionNotFound("Session not found", session_id=session_id)
    return s


def load_flow(s: ScanSession):
    return FLOW_TYPES[s.kind].from_dict(s.flow)


def check_owner(s: ScanSession, operator: str) -> None:
    if s.operator != operator:
        raise SessionOwnership("Session owned by different operator", owner=s.operator)


def log_event(db: Session, s: ScanSession, *, action: str, raw: str | None, result: str,
              message: str | None, new_state: str) -> ScanEvent:
    s.step_count = (s.step_count or 0) + 1
    evt = ScanEvent(session_id=s.id, seq=s.step_count, action=action, raw=raw, result=result,
                    message=message, new_state=new_state)
    db.add(evt)
    return evt


def save_flow(s: ScanSession, flow, *, error: str | None = None) -> None:
    s.flow = flow.to_dict()
    s.state = flow.state
    s.last_error = error
    s.closed = flow.is_terminal


def open_session(db: Session, *, kind: str, flow, operator: str) -> ScanSession:
    s = ScanSession(kind=kind, state=flow.state, operator=operator, item_id=flow.item_id,
                    flow=flow.to_dict(), step_count=0, closed=False)
    db.add(s)
    db.flush()
    return s


def run_step(db: Session, *, session_id: str, kind: str, operator: str, action: str, raw: str | None,
             step: Callable[[object], None]) -> ScanSession:
    """Apply one pre-commit step to a session and log it.

    Only the session row and its event log are written. Rejected scans are
    logged and re-raised with the session left in its previous state; a
    missing item/location closes the session.
    """
    s = get_session(db, session_id)
    if s.kind != kind:
        raise SessionNotFound(f"Session is not a {kind} session", session_id=session_id)
    check_owner(s, operator)
    flow = load_flow(s)
    if flow.is_terminal:
        raise InvalidTransition(f"Session is {flow.state}", state=flow.state)

    try:
        step(flow)
    except FATAL_ERRORS as exc:
        flow = load_flow(s)
        flow.cancel()
        log_event(db, s, action=action, raw=raw, result=REJECTED, message=exc.message, new_state=flow.state)
        log_event(db, s, action="CANCEL", raw=None, result=OK, message="closed: " + exc.code, new_state=flow.state)
        save_flow(s, flow, error=exc.message)
        db.commit()
        raise
    except WarehouseError as exc:
        current = load_flow(s)
        log_event(db, s, action=action, raw=raw, result=REJECTED, message=exc.message, new_state=current.state)
        s.last_error = exc.message
        db.commit()
        logger.info("%s session %s: %s rejected (%s)", kind, s.id, action, exc.code)
        raise

    log_event(db, s, action=action, raw=raw, result=OK, message=None, new_state=flow.state)
    save_flow(s, flow)
    db.commit()
    db.refresh(s)
    return s


def accepted_steps(db: Session, session_id: str) -> list[tuple[str, str | None]]:
    rows = (db.query(ScanEvent)
            .filter(ScanEvent.session_id == session_id, ScanEvent.result == OK)
            .order_by(ScanEvent.seq.asc())
            .all())
    return [(r.action, r.raw) for r in rows]


def replay_session(db: Session, session_id: str, initial):
    """Rebuild a flow from `initial` (the flow as opened) and the accepted events."""
    return replay(initial, accepted_steps(db, session_id))


def close_cancelled(db: Session, s: ScanSession, flow, *, message: str) -> None:
    if flow.state != CANCELLED:
        flow.cancel()
    log_event(db, s, action="CANCEL", raw=None, result=OK, message=message, new_state=flow.state)
    save_flow(s, flow, error=message)
