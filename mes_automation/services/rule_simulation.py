"""
Dry-run simulation of a registration's rules against a sample payload.

Nothing is executed: the simulation reports, per rule and in execution
order, the values each mapping would extract and whether the rule would
run. Rule ``conditions`` are evaluated and reported for operators, but
live ingestion does not gate on them, so they do not change
``would_execute``.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..models.webhook import AutomationRule, WebhookRegistration
from .field_names import ActionType, RuleFields
from .path_resolver import MISSING, resolve_path
from .rule_executor import order_rules
from .webhook_ingestion import write_execution_log


logger = logging.getLogger("rule_simulation")


def _show(value: Any) -> str:
    if value is MISSING:
        return "undefined"
    return json.dumps(value, default=str)


def evaluate_condition(conditions: Optional[dict], payload: Any) -> Optional[dict]:
    if not isinstance(conditions, dict) or not conditions.get("field"):
        return None
    field = str(conditions["field"])
    operator = str(conditions.get("operator") or "")
    expected = conditions.get("value")
    actual = resolve_path(payload, field)

    if operator == "equals":
        passed = actual is not MISSING and actual == expected
        reason = f"{field} ({_show(actual)}) {'==' if passed else '!='} {_show(expected)}"
    elif operator == "not_equals":
        passed = actual is MISSING or actual != expected
        reason = f"{field} ({_show(actual)}) {'!=' if passed else '=='} {_show(expected)}"
    elif operator == "contains":
        haystack = "" if actual is MISSING or actual is None else str(actual)
        passed = expected is not None and str(expected) in haystack
        reason = f"{field} ({_show(actual)}) {'contains' if passed else 'does not contain'} {_show(expected)}"
    elif operator == "exists":
        passed = actual is not MISSING and actual is not None
        reason = f"{field} {'exists' if passed else 'does not exist'}"
    else:
        passed = False
        reason = f"Unsupported operator '{operator}'"
    return {"passed": passed, "reason": reason}


def _extract_raw(mappings: Optional[dict], payload: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, path in (mappings or {}).items():
        if isinstance(path, str) and path:
            value = resolve_path(payload, path)
            out[key] = None if value is MISSING else value
    return out


def simulate_rule(rule: AutomationRule, payload: Any) -> dict:
    action = ActionType.parse(rule.action_type)
    if action is None:
        extracted = _extract_raw(rule.field_mappings, payload)
    else:
        extracted = RuleFields(action, rule.field_mappings, payload).extracted()
    return {
        "rule_id": rule.id,
        "rule_name": rule.name,
        "action_type": rule.action_type,
        "known_action": action is not None,
        "enabled": bool(rule.enabled),
        "extracted_values": extracted,
        "would_execute": bool(rule.enabled) and action is not None,
        "condition_result": evaluate_condition(rule.conditions, payload),
    }


def simulate_registration(
    db: Session,
    registration: WebhookRegistration,
    rules: list[AutomationRule],
    payload: Any,
) -> dict:
    started = time.monotonic()
    results = [simulate_rule(rule, payload) for rule in order_rules(rules)]
    response_time_ms = int((time.monotonic() - started) * 1000)
    would_run = [r for r in results if r["would_execute"]]

    write_execution_log(
        db,
        registration_id=registration.id,
        endpoint_key=registration.endpoint_key,
        status_code=200,
        headers={},
        request_body=payload,
        response_body={"summary": {"total_rules": len(results), "would_execute": len(would_run)}},
        executed_rules=[{"name": r["rule_name"], "action": r["action_type"]} for r in would_run],
        is_test=True,
    )
    logger.info(
        "Test webhook id=%s rules=%s would_execute=%s",
        registration.id,
        len(results),
        len(would_run),
    )
    return {
        "success": True,
        "webhook": {"id": registration.id, "name": registration.name, "enabled": bool(registration.enabled)},
        "test_payload": payload,
        "rule_results": results,
        "summary": {
            "total_rules": len(results),
            "would_execute": len(would_run),
            "skipped": len(results) - len(would_run),
        },
        "response_time_ms": response_time_ms,
        "dry_run": True,
    }
