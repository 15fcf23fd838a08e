from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from app.db.base import Base
from app.db import models  # noqa: F401
from app.db.session import get_db
from app.events import dispatcher
from services.wms.inventory_ops.items import create_item
from services.wms.inventory_ops.locations import create_location


@pytest.fixture()
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'rackslot.db'}",
        future=True,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(eng, "connect")
    def _fk_on(dbapi_conn, _):
        dbapi_conn.execute("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture(autouse=True)
def _no_handlers():
    dispatcher.clear_handlers()
    yield
    dispatcher.clear_handlers()


@pytest.fixture()
def client(session_factory):
    from main import app

    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    # no context manager: startup hooks (create_all on DATABASE_URL, dispatcher task) stay off
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def make_location(db):
    def _make(row="C", bay=1, level=1, position=1, **kw):
        return create_location(db, row=row, bay=bay, level=level, position=position, **kw)
    return _make


@pytest.fixture()
def make_item(db):
    def _make(weight=20, item_code="SKU-1", category="GEN", **kw):
        return create_item(db, item_code=item_code, category=category, weight=weight, **kw)
    return _make
