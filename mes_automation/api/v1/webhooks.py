"""
Admin endpoints for webhook registrations.

``POST /create-webhook`` issues a new registration and is the only
response that ever carries the full secret. The ``/api/v1/webhooks``
routes give masked read access, execution logs and rule dry runs.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ...core.auth import UserContext, require_admin
from ...core.config import settings
from ...core.db import get_db
from ...core.pagination import DEFAULT_PAGE_SIZE, PageWindow
from ...core.rate_limit import RateLimiter, SlidingWindowRateLimiter
from ...core.request_limits import read_limited_body
from ...schemas.webhook import WebhookCreate, WebhookCreateResponse, WebhookTestRequest
from ...services.rule_simulation import simulate_registration
from ...services.webhook_registration import (
    CREATED_MESSAGE,
    create_registration,
    get_registration,
    list_execution_logs,
    list_registrations,
    list_rules,
    serialize_registration,
)


logger = logging.getLogger("webhooks_api")

create_router = APIRouter(tags=["webhooks"])
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


def get_create_limiter(request: Request) -> RateLimiter:
    limiter = getattr(request.app.state, "webhook_create_limiter", None)
    if limiter is None:
        limiter = SlidingWindowRateLimiter(
            limit=settings.webhook_create_rate_limit,
            window_sec=settings.webhook_create_rate_window_sec,
        )
        request.app.state.webhook_create_limiter = limiter
    return limiter


def _validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request body"
    first = errors[0]
    msg = str(first.get("msg") or "Invalid request body")
    return msg.removeprefix("Value error, ")


@create_router.post("/create-webhook", response_model=WebhookCreateResponse)
async def create_webhook(
    request: Request,
    user: UserContext = Depends(require_admin),
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_create_limiter),
):
    raw = await read_limited_body(request)
    try:
        data = WebhookCreate.model_validate_json(raw or b"{}")
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_message(exc))

    decision = await run_in_threadpool(limiter.hit, user.user_id or "anonymous")
    if not decision.allowed:
        logger.warning("Webhook creation rate limited user_id=%s retry_after=%s", user.user_id, decision.retry_after)
        return JSONResponse(
            status_code=429,
            content={
                "error": "Rate limit exceeded. Try again later.",
                "retry_after": decision.retry_after,
            },
            headers=decision.headers(),
        )

    created = await run_in_threadpool(create_registration, db, data, created_by=user.user_id)
    body = WebhookCreateResponse(
        webhook=serialize_registration(created.registration),
        secret=created.secret,
        message=CREATED_MESSAGE,
    )
    return JSONResponse(status_code=200, content=body.model_dump(mode="json"), headers=decision.headers())


@router.get("")
def list_webhooks(
    response: Response,
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_admin),
) -> dict:
    window = PageWindow.from_query(page, page_size)
    rows, total = list_registrations(db, offset=window.offset, limit=window.page_size)
    window.apply_headers(response, total)
    return window.envelope([serialize_registration(r).model_dump(mode="json") for r in rows], total)


def _require_registration(db: Session, webhook_id: str):
    registration = get_registration(db, webhook_id)
    if registration is None:
        raise HTTPException(status_code=404, detail="Webhook not found")
    return registration


@router.get("/{webhook_id}")
def get_webhook(
    webhook_id: str,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_admin),
) -> dict:
    registration = _require_registration(db, webhook_id)
    return serialize_registration(registration, include_rules=True).model_dump(mode="json")


@router.get("/{webhook_id}/logs")
def get_webhook_logs(
    webhook_id: str,
    response: Response,
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_admin),
) -> dict:
    _require_registration(db, webhook_id)
    window = PageWindow.from_query(page, page_size)
    items, total = list_execution_logs(db, webhook_id, offset=window.offset, limit=window.page_size)
    window.apply_headers(response, total)
    return window.envelope([item.model_dump(mode="json") for item in items], total)


@router.post("/{webhook_id}/test")
def test_webhook(
    webhook_id: str,
    payload: Optional[WebhookTestRequest] = None,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_admin),
) -> dict:
    registration = _require_registration(db, webhook_id)
    rules = list_rules(db, registration.id)
    test_payload = payload.test_payload if payload is not None else {}
    if test_payload is None:
        test_payload = {}
    return simulate_registration(db, registration, rules, test_payload)
