"""
Rule executor for inbound webhook automation.

Rules run strictly one after another in ascending ``sort_order`` because a
later rule may depend on an earlier rule's effect (create an order, then
assign batch numbers to it). Each handler is its own unit of work: its
writes are committed when it returns and rolled back when it raises. A
failing rule never stops the rules after it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

from ..core.errors import log_exception
from .actions import HANDLERS, ActionContext, ActionError, ActionHandler
from .field_names import ActionType, RuleFields


logger = logging.getLogger("rule_executor")

INTERNAL_RULE_ERROR = "Internal error while executing rule"


@dataclass
class ExecutionResult:
    executed: list[dict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        return "partial" if self.errors else "success"

    def as_dict(self) -> dict[str, Any]:
        return {"executed": self.executed, "errors": self.errors}


def order_rules(rules: Iterable[Any]) -> list[Any]:
    """Stable sort by sort_order; ties keep their input (insertion) order."""
    return sorted(rules, key=lambda rule: int(rule.sort_order or 0))


def execute_rules(
    ctx: ActionContext,
    rules: Sequence[Any],
    handlers: Optional[Mapping[ActionType, ActionHandler]] = None,
) -> ExecutionResult:
    table = HANDLERS if handlers is None else handlers
    result = ExecutionResult()

    for rule in order_rules(rules):
        if not rule.enabled:
            continue
        name = rule.name
        raw_action = rule.action_type
        action = ActionType.parse(raw_action)
        handler = table.get(action) if action is not None else None
        if handler is None:
            result.errors.append(f"Rule {name}: Unknown action type '{raw_action}'")
            logger.warning("Unknown action type rule=%s action_type=%s", name, raw_action)
            continue

        try:
            fields = RuleFields(action, rule.field_mappings, ctx.payload)
            outcome = handler(ctx, fields)
            ctx.db.commit()
        except ActionError as exc:
            ctx.db.rollback()
            result.errors.append(f"Rule {name}: {exc}")
            logger.warning("Rule failed rule=%s action=%s err=%s", name, action.value, exc)
            continue
        except Exception as exc:
            ctx.db.rollback()
            # Driver errors carry SQL and bound parameters; those stay in the log.
            result.errors.append(f"Rule {name}: {INTERNAL_RULE_ERROR} ({exc.__class__.__name__})")
            log_exception(logger, "Rule crashed", extra={"rule": name, "action": action.value}, exc=exc)
            continue

        result.executed.append({"rule": name, "action": action.value, "result": outcome or {}})

    logger.info("Rules executed=%s errors=%s", len(result.executed), len(result.errors))
    return result
