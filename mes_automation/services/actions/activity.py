"""log_activity: append one activity-log row for an inbound call."""

from __future__ import annotations

from ...models.activity_log import ActivityLog
from ..field_names import RuleFields
from ..path_resolver import MISSING
from .base import ActionContext, text_value

DEFAULT_ACTION = "webhook_triggered"
DEFAULT_ENTITY_TYPE = "webhook"


def log_activity(ctx: ActionContext, fields: RuleFields) -> dict:
    action = text_value(fields.value("action")) or DEFAULT_ACTION
    entity_type = text_value(fields.value("entityType")) or DEFAULT_ENTITY_TYPE
    entity_id = text_value(fields.value("entityId")) or ctx.registration_id
    if fields.configured("details"):
        details = fields.value("details")
        if details is MISSING:
            details = None
    else:
        details = ctx.payload

    row = ActivityLog(
        user_id=None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
    )
    ctx.db.add(row)
    ctx.db.flush()
    return {"action": action, "entity_type": entity_type, "entity_id": entity_id}
