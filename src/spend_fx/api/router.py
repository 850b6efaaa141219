from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from spend_fx.core.db import db_session
from spend_fx.modules.fx.api import router as fx_router

router = APIRouter()

router.include_router(fx_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz/db")
def healthz_db(session: Session = Depends(db_session)) -> JSONResponse:
    try:
        session.execute(text("SELECT 1"))
    except Exception as e:  # noqa: BLE001
        return JSONResponse(
            status_code=503, content={"ok": False, "error_type": type(e).__name__}
        )
    return JSONResponse(status_code=200, content={"ok": True})
