"""
Action handlers keyed by action type.

The table is closed over ``ActionType``: importing this package fails if an
action type has no handler, so a new enum member cannot ship unhandled.
"""

from __future__ import annotations

from ..field_names import ActionType
from .activity import log_activity
from .base import ActionContext, ActionError, ActionHandler
from .exact_sync import assign_batch_numbers, sync_exact_work_order, sync_products
from .outgoing import trigger_outgoing_webhook
from .work_orders import create_work_order, update_item_status, update_work_order_status

HANDLERS: dict[ActionType, ActionHandler] = {
    ActionType.CREATE_WORK_ORDER: create_work_order,
    ActionType.UPDATE_WORK_ORDER_STATUS: update_work_order_status,
    ActionType.UPDATE_ITEM_STATUS: update_item_status,
    ActionType.LOG_ACTIVITY: log_activity,
    ActionType.TRIGGER_OUTGOING_WEBHOOK: trigger_outgoing_webhook,
    ActionType.SYNC_EXACT_WORK_ORDER: sync_exact_work_order,
    ActionType.ASSIGN_BATCH_NUMBERS: assign_batch_numbers,
    ActionType.SYNC_PRODUCTS: sync_products,
}

_missing = [action.value for action in ActionType if action not in HANDLERS]
if _missing:
    raise RuntimeError(f"No handler registered for action types: {', '.join(_missing)}")

__all__ = ["HANDLERS", "ActionContext", "ActionError", "ActionHandler"]
