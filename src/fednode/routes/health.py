"""Health and readiness routes."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from fednode.db.connection import get_conn

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict[str, bool]:
    return {"ok": True}


@router.get("/readyz")
async def readyz() -> JSONResponse:
    db_ok = True
    try:
        with get_conn() as conn:
            conn.execute("SELECT 1 FROM ledger_messages LIMIT 1")
    except Exception:
        logger.exception("Readiness check failed")
        db_ok = False
    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={"ok": db_ok, "db": db_ok},
    )
