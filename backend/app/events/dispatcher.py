from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.events.bus import MOVEMENT_RECORDED
from app.events.outbox import OutboxEvent

logger = logging.getLogger(__name__)

OUTBOX_POLL_SECONDS = float(os.getenv("OUTBOX_POLL_SECONDS", "1.0"))
BATCH_SIZE = 50

Handler = Callable[[str, dict], None]

_handlers: list[tuple[str, Handler]] = []


def _pattern_matches(pattern: str, topic: str) -> bool:
    """Very small pattern helper.

    Supported:
      - exact match
      - prefix match using trailing '.'
      - wildcard 'prefix.*' treated as prefix match
    """
    if not pattern:
        return False
    if pattern == topic:
        return True
    if pattern.endswith(".*"):
        return topic.startswith(pattern[:-1])  # keep trailing '.'
    if pattern.endswith("."):
        return topic.startswith(pattern)
    return False


def register_handler(pattern: str, handler: Handler) -> None:
    _handlers.append((pattern, handler))


def clear_handlers() -> None:
    _handlers.clear()


def _matching_handlers(topic: str) -> list[Handler]:
    return [h for p, h in _handlers if _pattern_matches(p, topic)]


def _schedule_next(attempt_count: int) -> datetime:
    # Simple exponential backoff capped at 10 minutes
    seconds = min(600, 2 ** min(attempt_count, 9))
    return datetime.utcnow() + timedelta(seconds=seconds)


def dispatch_batch(db: Session, *, now: datetime | None = None) -> int:
    """Deliver due outbox events to matching handlers. Returns events delivered."""
    now = now or datetime.utcnow()
    events = (
        db.query(OutboxEvent)
        .filter(OutboxEvent.delivered == False)  # noqa: E712
        .filter(OutboxEvent.available_at <= now)
        .order_by(OutboxEvent.created_at.asc())
        .limit(BATCH_SIZE)
        .all()
    )
    delivered = 0
    for evt in events:
        last_err = None
        for handler in _matching_handlers(evt.topic):
            try:
                handler(evt.topic, evt.payload or {})
            except Exception as exc:
                last_err = f"{type(exc).__name__}: {exc}"
                logger.warning("handler failed for outbox event %s (%s): %s", evt.id, evt.topic, last_err)

        if last_err is None:
            # no handler means nobody cares; mark delivered to avoid infinite growth
            evt.delivered = True
            evt.delivered_at = datetime.utcnow()
            evt.last_error = None
            delivered += 1
        else:
            evt.attempt_count = (evt.attempt_count or 0) + 1
            evt.last_error = last_err
            evt.available_at = _schedule_next(evt.attempt_count)

    db.commit()
    return delivered


async def run_dispatcher_forever(*, poll_interval_seconds: float = OUTBOX_POLL_SECONDS) -> None:
    """Background worker started by the API process."""
    while True:
        db = SessionLocal()
        try:
            dispatch_batch(db)
        except Exception:
            # keep the worker alive; the next poll retries the same events
            logger.exception("outbox dispatch failed")
            db.rollback()
        finally:
            db.close()
        await asyncio.sleep(poll_interval_seconds)


def log_movement(topic: str, payload: dict) -> None:
    logger.info(
        "movement processed: id=%s type=%s item=%s category=%s location=%s operator=%s",
        payload.get("movement_id"),
        payload.get("type"),
        payload.get("item_id"),
        payload.get("category_code"),
        payload.get("location_code"),
        payload.get("operator"),
    )


def register_default_handlers() -> None:
    if not any(h is log_movement for _, h in _handlers):
        register_handler(MOVEMENT_RECORDED, log_movement)
