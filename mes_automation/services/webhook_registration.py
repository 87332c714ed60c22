"""
Creation and read access for webhook registrations.

The full secret leaves the service exactly once, in the result of
``create_registration``. Every other read goes through
``serialize_registration``, which masks it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core.security import generate_endpoint_key, generate_secret_key, mask_secret
from ..models.activity_log import ActivityLog
from ..models.webhook import AutomationRule, WebhookExecutionLog, WebhookRegistration
from ..schemas.webhook import AutomationRuleOut, ExecutionLogOut, WebhookCreate, WebhookOut


logger = logging.getLogger("webhook_registration")

CREATED_MESSAGE = "Webhook created. This is the only time the full secret will be shown."


@dataclass
class CreatedRegistration:
    registration: WebhookRegistration
    secret: str


def create_registration(db: Session, data: WebhookCreate, *, created_by: Optional[str]) -> CreatedRegistration:
    secret = generate_secret_key()
    registration = WebhookRegistration(
        name=data.name,
        description=data.description,
        endpoint_key=generate_endpoint_key(),
        secret_key=secret,
        enabled=True,
        created_by=created_by,
        trigger_count=0,
    )
    db.add(registration)
    db.flush()
    db.add(
        ActivityLog(
            user_id=created_by,
            action="webhook_created",
            entity_type="incoming_webhook",
            entity_id=registration.id,
            details={"name": registration.name, "endpoint_key": registration.endpoint_key},
        )
    )
    db.commit()
    db.refresh(registration)
    logger.info("Webhook registration created id=%s endpoint_key=%s by=%s", registration.id, registration.endpoint_key, created_by)
    return CreatedRegistration(registration=registration, secret=secret)


def serialize_registration(registration: WebhookRegistration, *, include_rules: bool = False) -> WebhookOut:
    rules = None
    if include_rules:
        rules = [AutomationRuleOut.model_validate(rule) for rule in registration.rules]
    return WebhookOut(
        id=registration.id,
        name=registration.name,
        description=registration.description,
        endpoint_key=registration.endpoint_key,
        secret_key=mask_secret(registration.secret_key),
        enabled=bool(registration.enabled),
        created_by=registration.created_by,
        trigger_count=int(registration.trigger_count or 0),
        last_triggered_at=registration.last_triggered_at,
        created_at=registration.created_at,
        updated_at=registration.updated_at,
        rules=rules,
    )


def list_registrations(db: Session, *, offset: int, limit: int) -> tuple[list[WebhookRegistration], int]:
    total = db.execute(select(func.count()).select_from(WebhookRegistration)).scalar_one()
    rows = db.execute(
        select(WebhookRegistration)
        .order_by(WebhookRegistration.created_at.desc(), WebhookRegistration.id.asc())
        .offset(offset)
        .limit(limit)
    ).scalars()
    return list(rows), int(total)


def get_registration(db: Session, registration_id: str) -> Optional[WebhookRegistration]:
    return db.get(WebhookRegistration, registration_id)


def list_rules(db: Session, registration_id: str) -> list[AutomationRule]:
    stmt = (
        select(AutomationRule)
        .where(AutomationRule.incoming_webhook_id == registration_id)
        .order_by(AutomationRule.sort_order.asc(), AutomationRule.id.asc())
    )
    return list(db.execute(stmt).scalars())


def list_execution_logs(
    db: Session, registration_id: str, *, offset: int, limit: int
) -> tuple[list[ExecutionLogOut], int]:
    base = select(WebhookExecutionLog).where(WebhookExecutionLog.incoming_webhook_id == registration_id)
    total = db.execute(select(func.count()).select_from(base.subquery())).scalar_one()
    rows = db.execute(
        base.order_by(WebhookExecutionLog.created_at.desc(), WebhookExecutionLog.id.asc()).offset(offset).limit(limit)
    ).scalars()
    return [ExecutionLogOut.model_validate(row) for row in rows], int(total)
