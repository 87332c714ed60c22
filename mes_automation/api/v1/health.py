"""
Health endpoint for the MES automation backend.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from ...core.config import get_app_env
from ...core.db import get_db
from ...core.errors import log_exception


router = APIRouter(prefix="/api/v1/health", tags=["health"])
logger = logging.getLogger("health")


@router.get("")
def health(db: Session = Depends(get_db)):
    body = {
        "status": "ok",
        "env": get_app_env(),
        "timestamp_utc": datetime.utcnow().isoformat() + "Z",
        "database": {"ok": True},
    }
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        log_exception(logger, "Database health check failed", exc=exc)
        body["status"] = "degraded"
        body["database"] = {"ok": False, "error": exc.__class__.__name__}
        return JSONResponse(status_code=503, content=body)
    return body
