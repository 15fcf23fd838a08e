from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import WarehouseError
from app.core.log_config import configure_logging
from app.db.base import Base
from app.db.session import engine

# Register models
from app.db import models  # noqa: F401

from services.wms.inventory_ops.api import router as warehouse_router
from services.wms.scan.api import router as scan_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Rackslot WMS")


@app.exception_handler(WarehouseError)
async def _warehouse_error(request: Request, exc: WarehouseError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def _storage_error(request: Request, exc: SQLAlchemyError):
    logger.exception("storage failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"error": "STORAGE_UNAVAILABLE", "detail": "Storage unavailable"})


app.include_router(warehouse_router)
app.include_router(scan_router)


@app.on_event("startup")
async def _startup():
    # Dev-friendly schema creation (migrations are available for real upgrades)
    Base.metadata.create_all(bind=engine)

    from app.events.dispatcher import register_default_handlers, run_dispatcher_forever

    register_default_handlers()
    asyncio.create_task(run_dispatcher_forever())


@app.get("/health")
def health():
    return {"ok": True, "service": "rackslot"}
