"""
Inbound webhook ingestion: authenticate, parse, run rules, persist, respond.

Every call that reaches the registration lookup leaves exactly one row in
``webhook_logs``, including rejected ones (unknown key, disabled
registration, wrong secret). Calls rejected before that point (no endpoint
key, oversized or malformed body) leave none.
"""

from __future__ import annotations

import datetime
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import requests
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.errors import guarded_call, log_exception
from ..core.security import secrets_match
from ..models.webhook import AutomationRule, WebhookExecutionLog, WebhookRegistration
from .actions import ActionContext
from .rule_executor import ExecutionResult, execute_rules


logger = logging.getLogger("webhook_receiver")

SECRET_HEADER = "X-Webhook-Secret"
REDACTED_HEADERS = {"x-webhook-secret", "authorization", "cookie"}
REDACTED_VALUE = "[redacted]"

MSG_NOT_FOUND = "Webhook endpoint not found"
MSG_DISABLED = "Webhook endpoint is disabled"
MSG_BAD_SECRET = "Invalid secret key"
MSG_BAD_JSON = "Invalid JSON body"
MSG_RULES_FAILED = "Failed to fetch automation rules"


class IngestionError(Exception):
    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        audit: bool = True,
        registration_id: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.audit = audit
        self.registration_id = registration_id
        super().__init__(message)


@dataclass
class IngestionOutcome:
    status_code: int
    body: dict


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for key, value in headers.items():
        out[key] = REDACTED_VALUE if key.lower() in REDACTED_HEADERS else value
    return out


def authenticate_request(db: Session, endpoint_key: str, provided_secret: Optional[str]) -> WebhookRegistration:
    registration = db.execute(
        select(WebhookRegistration).where(WebhookRegistration.endpoint_key == endpoint_key)
    ).scalar_one_or_none()
    if registration is None:
        raise IngestionError(404, MSG_NOT_FOUND)
    if not registration.enabled:
        raise IngestionError(403, MSG_DISABLED, registration_id=registration.id)
    if not secrets_match(provided_secret, registration.secret_key):
        raise IngestionError(401, MSG_BAD_SECRET, registration_id=registration.id)
    return registration


def parse_body(raw: bytes) -> Any:
    if not raw or not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError) as exc:
        raise IngestionError(400, MSG_BAD_JSON, audit=False) from exc


def load_enabled_rules(db: Session, registration_id: str) -> list[AutomationRule]:
    stmt = (
        select(AutomationRule)
        .where(AutomationRule.incoming_webhook_id == registration_id, AutomationRule.enabled.is_(True))
        .order_by(AutomationRule.sort_order.asc(), AutomationRule.id.asc())
    )
    return list(db.execute(stmt).scalars())


def write_execution_log(
    db: Session,
    *,
    registration_id: Optional[str],
    endpoint_key: Optional[str],
    status_code: int,
    headers: Mapping[str, str],
    request_body: Any = None,
    response_body: Optional[dict] = None,
    executed_rules: Optional[list] = None,
    error_message: Optional[str] = None,
    is_test: bool = False,
) -> WebhookExecutionLog:
    row = WebhookExecutionLog(
        incoming_webhook_id=registration_id,
        endpoint_key=endpoint_key,
        request_body=request_body,
        request_headers=redact_headers(headers),
        response_status=status_code,
        response_body=response_body,
        executed_rules=executed_rules,
        error_message=error_message,
        is_test=is_test,
    )
    db.add(row)
    db.commit()
    return row


def record_trigger(db: Session, registration_id: str, now: datetime.datetime) -> None:
    # Single UPDATE so concurrent deliveries never lose an increment.
    db.execute(
        update(WebhookRegistration)
        .where(WebhookRegistration.id == registration_id)
        .values(
            trigger_count=WebhookRegistration.trigger_count + 1,
            last_triggered_at=now,
        )
    )


def build_response_body(result: ExecutionResult) -> dict:
    return {
        "success": True,
        "status": result.status,
        "executed": len(result.executed),
        "errors": len(result.errors),
        "details": result.as_dict(),
    }


def _reject(db: Session, exc: IngestionError, *, endpoint_key: str, headers: Mapping[str, str]) -> IngestionOutcome:
    body = {"error": exc.message}
    if exc.audit:
        guarded_call(
            "write rejection log",
            lambda: write_execution_log(
                db,
                registration_id=exc.registration_id,
                endpoint_key=endpoint_key,
                status_code=exc.status_code,
                headers=headers,
                response_body=body,
                error_message=exc.message,
            ),
            logger=logger,
            context={"endpoint_key": endpoint_key, "status": exc.status_code},
        )
    return IngestionOutcome(status_code=exc.status_code, body=body)


def ingest(
    db: Session,
    *,
    endpoint_key: str,
    headers: Mapping[str, str],
    raw_body: bytes,
    http_session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> IngestionOutcome:
    try:
        registration = authenticate_request(db, endpoint_key, headers.get(SECRET_HEADER))
        registration_id = registration.id
        payload = parse_body(raw_body)
    except IngestionError as exc:
        if exc.status_code == 404:
            logger.info("Webhook not found endpoint_key=%s", endpoint_key)
        else:
            logger.warning("Webhook rejected endpoint_key=%s status=%s reason=%s", endpoint_key, exc.status_code, exc.message)
        db.rollback()
        return _reject(db, exc, endpoint_key=endpoint_key, headers=headers)

    try:
        rules = load_enabled_rules(db, registration_id)
    except SQLAlchemyError as exc:
        db.rollback()
        log_exception(logger, "Failed to load rules", extra={"endpoint_key": endpoint_key}, exc=exc)
        return _reject(
            db,
            IngestionError(500, MSG_RULES_FAILED, registration_id=registration_id),
            endpoint_key=endpoint_key,
            headers=headers,
        )

    ctx = ActionContext(
        db=db,
        payload=payload,
        registration_id=registration_id,
        http_session=http_session,
        sleep=sleep,
    )
    result = execute_rules(ctx, rules)
    status_code = 207 if result.errors else 200
    body = build_response_body(result)

    def _persist() -> bool:
        record_trigger(db, registration_id, datetime.datetime.utcnow())
        write_execution_log(
            db,
            registration_id=registration_id,
            endpoint_key=endpoint_key,
            status_code=status_code,
            headers=headers,
            request_body=payload,
            response_body=result.as_dict(),
            executed_rules=result.executed,
            error_message="; ".join(result.errors) if result.errors else None,
        )
        return True

    persisted = guarded_call(
        "persist webhook execution",
        _persist,
        fallback=False,
        logger=logger,
        context={"endpoint_key": endpoint_key},
    )
    if not persisted:
        db.rollback()

    logger.info(
        "Webhook processed endpoint_key=%s rules=%s executed=%s errors=%s status=%s",
        endpoint_key,
        len(rules),
        len(result.executed),
        len(result.errors),
        status_code,
    )
    return IngestionOutcome(status_code=status_code, body=body)
