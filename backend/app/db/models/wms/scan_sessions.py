from __future__ import annotations
from sqlalchemy import String, JSON, ForeignKey, Index, Boolean, Integer
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, HasUpdatedAt

class ScanSession(Base, HasId, HasCreatedAt, HasUpdatedAt):
    """One operator's placement or pick workflow, persisted between scans."""
    __tablename__ = "wms_scan_session"
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # PLACE|PICK
    state: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    operator: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    # flow snapshot (see services.wms.scan.flows); rebuilt on every step
    flow: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    last_error: Mapped[str | None] = mapped_column(String(256), nullable=True)
    movement_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    step_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)

class ScanEvent(Base, HasId, HasCreatedAt):
    __tablename__ = "wms_scan_event"
    session_id: Mapped[str] = mapped_column(ForeignKey("wms_scan_session.id"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)  # SUGGEST|ACCEPT|REJECT|CHOOSE|SCAN_LOCATION|SCAN_ITEM|COMMIT|CANCEL
    raw: Mapped[str | None] = mapped_column(String(256), nullable=True)
    result: Mapped[str] = mapped_column(String(24), nullable=False)  # OK|REJECTED|NOOP
    message: Mapped[str | None] = mapped_column(String(256), nullable=True)
    new_state: Mapped[str] = mapped_column(String(32), nullable=False)

Index("ix_wms_scan_event_session_seq", ScanEvent.session_id, ScanEvent.seq, unique=True)
