"""
Public inbound webhook endpoint.

Callers authenticate with the per-registration ``X-Webhook-Secret`` header,
not with a user token. Responses use ``{"error": ...}`` bodies for every
terminal rejection so integrators can rely on one shape.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...core.errors import log_exception
from ...core.request_limits import read_limited_body
from ...services.webhook_ingestion import ingest


logger = logging.getLogger("webhook_receiver")
router = APIRouter(prefix="/webhook-receiver", tags=["webhook-receiver"])

MISSING_KEY_MESSAGE = "Endpoint key required. Use: /webhook-receiver/{your-endpoint-key}"


@router.post("")
@router.post("/")
def missing_endpoint_key() -> JSONResponse:
    logger.info("Webhook call without endpoint key")
    return JSONResponse(status_code=400, content={"error": MISSING_KEY_MESSAGE})


@router.post("/{endpoint_key}")
async def receive_webhook(
    endpoint_key: str,
    request: Request,
    db: Session = Depends(get_db),
) -> JSONResponse:
    key = endpoint_key.strip()
    if not key:
        return JSONResponse(status_code=400, content={"error": MISSING_KEY_MESSAGE})
    try:
        raw_body = await read_limited_body(request)
    except HTTPException as exc:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    try:
        outcome = await run_in_threadpool(
            ingest,
            db,
            endpoint_key=key,
            headers=request.headers,
            raw_body=raw_body,
            http_session=getattr(request.app.state, "http_session", None),
        )
    except Exception as exc:
        log_exception(logger, "Webhook receiver error", extra={"endpoint_key": key}, exc=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)
