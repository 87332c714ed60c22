"""trigger_outgoing_webhook: relay the inbound payload to a configured URL."""

from __future__ import annotations

from ..field_names import RuleFields
from ..outgoing_webhooks import OutgoingWebhookError, deliver_with_retry
from .base import ActionContext, ActionError


def trigger_outgoing_webhook(ctx: ActionContext, fields: RuleFields) -> dict:
    url = fields.literal("webhookUrl")
    if not url:
        raise ActionError("No webhookUrl configured")
    try:
        result = deliver_with_retry(url, ctx.payload, session=ctx.http_session, sleep=ctx.sleep)
    except OutgoingWebhookError as exc:
        raise ActionError(str(exc)) from exc
    return result.as_dict()
