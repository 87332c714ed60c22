"""
Work-order handlers: create an order with its units, and move orders or
units between statuses.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from ...core.auth import ADMIN_ROLE, first_user_with_role
from ...core.config import settings
from ...models.work_order import PRODUCT_TYPES, WORK_ORDER_STATUSES, WorkOrder, WorkOrderItem
from ..field_names import RuleFields
from .base import ActionContext, ActionError, date_value, int_value, now_millis, text_value


logger = logging.getLogger("actions.work_orders")

DEFAULT_PRODUCT_TYPE = "SDM_ECO"

SERIAL_PREFIXES = {
    "SENSOR": "Q",
    "MLA": "W",
    "HMI": "X",
    "TRANSMITTER": "T",
}


def serial_prefix(product_type: str) -> str:
    return SERIAL_PREFIXES.get(product_type, "S")


def build_serial_numbers(product_type: str, quantity: int, stamp_ms: int) -> list[str]:
    prefix = serial_prefix(product_type)
    return [f"{prefix}-{stamp_ms}-{position:03d}" for position in range(1, quantity + 1)]


def _find_order(ctx: ActionContext, wo_number: str) -> WorkOrder | None:
    return ctx.db.execute(select(WorkOrder).where(WorkOrder.wo_number == wo_number)).scalar_one_or_none()


def _free_stamp(ctx: ActionContext, prefix: str, stamp_ms: int, *, auto_number: bool) -> int:
    """First stamp at or after ``stamp_ms`` whose serials (and auto order number) are unused."""
    while True:
        taken = ctx.db.execute(
            select(WorkOrderItem.id).where(WorkOrderItem.serial_number == f"{prefix}-{stamp_ms}-001")
        ).first()
        if taken is None and not (auto_number and _find_order(ctx, f"WO-{stamp_ms}") is not None):
            return stamp_ms
        stamp_ms += 1


def create_work_order(ctx: ActionContext, fields: RuleFields) -> dict:
    explicit_number = text_value(fields.value("workOrderNumber"))
    product_type = (text_value(fields.value("productType")) or DEFAULT_PRODUCT_TYPE).upper()
    if product_type not in PRODUCT_TYPES:
        raise ActionError(f"Invalid productType '{product_type}'")

    quantity = int_value(fields.value("quantity"))
    if quantity is None or quantity < 1:
        quantity = 1
    if quantity > settings.max_batch_size:
        raise ActionError(f"quantity {quantity} exceeds the maximum batch size of {settings.max_batch_size}")

    start_date = date_value(fields.value("startDate"), "startDate")
    ship_date = date_value(fields.value("shipDate"), "shipDate")

    actor_id = first_user_with_role(ctx.db, ADMIN_ROLE)
    if not actor_id:
        raise ActionError("No admin user found for work order creation")

    if explicit_number:
        existing = _find_order(ctx, explicit_number)
        if existing is not None:
            logger.info("Work order already exists wo_number=%s; skipping creation", explicit_number)
            return {"work_order_id": existing.id, "wo_number": explicit_number, "duplicate": True}

    # Two orders created in the same millisecond must not share serials.
    stamp_ms = _free_stamp(ctx, serial_prefix(product_type), now_millis(), auto_number=not explicit_number)
    wo_number = explicit_number or f"WO-{stamp_ms}"

    order = WorkOrder(
        wo_number=wo_number,
        product_type=product_type,
        batch_size=quantity,
        status="planned",
        created_by=actor_id,
        customer_name=text_value(fields.value("customer")),
        external_order_number=text_value(fields.value("externalReference")),
        scheduled_date=start_date,
        shipping_date=ship_date,
        notes=text_value(fields.value("notes")),
    )
    ctx.db.add(order)
    ctx.db.flush()

    serials = build_serial_numbers(product_type, quantity, stamp_ms)
    ctx.db.add_all(
        [
            WorkOrderItem(
                work_order_id=order.id,
                serial_number=serial,
                position_in_batch=position,
                status="planned",
                current_step=1,
            )
            for position, serial in enumerate(serials, start=1)
        ]
    )
    ctx.db.flush()
    return {"work_order_id": order.id, "wo_number": wo_number, "items_created": len(serials)}


def update_work_order_status(ctx: ActionContext, fields: RuleFields) -> dict:
    wo_number = text_value(fields.value("workOrderNumber"))
    status = text_value(fields.value("status"))
    if not wo_number or not status:
        raise ActionError("Missing workOrderNumber or status in payload")
    status = status.lower()
    if status not in WORK_ORDER_STATUSES:
        raise ActionError(f"Invalid status '{status}'")

    order = _find_order(ctx, wo_number)
    if order is None:
        raise ActionError(f"Work order {wo_number} not found")

    now = ctx.now()
    order.status = status
    if status == "in_progress" and order.started_at is None:
        order.started_at = now
    if status == "completed":
        order.completed_at = now
    ctx.db.flush()
    return {"wo_number": wo_number, "status": status}


def update_item_status(ctx: ActionContext, fields: RuleFields) -> dict:
    serial_number = text_value(fields.value("serialNumber"))
    if not serial_number:
        raise ActionError("Missing serialNumber in payload")

    updates: dict = {}
    status = text_value(fields.value("status"))
    if status:
        status = status.lower()
        if status not in WORK_ORDER_STATUSES:
            raise ActionError(f"Invalid status '{status}'")
        updates["status"] = status
    raw_step = fields.value("step")
    if text_value(raw_step) is not None:
        step = int_value(raw_step)
        if step is None or step < 1:
            raise ActionError(f"Invalid step '{raw_step}'")
        updates["current_step"] = step
    if not updates:
        raise ActionError("No updates specified")

    item = ctx.db.execute(
        select(WorkOrderItem).where(WorkOrderItem.serial_number == serial_number)
    ).scalar_one_or_none()
    if item is None:
        raise ActionError(f"Item {serial_number} not found")
    for key, value in updates.items():
        setattr(item, key, value)
    ctx.db.flush()
    return {"serial_number": serial_number, "updates": updates}
