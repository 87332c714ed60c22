"""
Handlers fed by the Exact ERP integration: shop-order sync fields, batch
number assignment on units, and the product catalog.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ...core.errors import error_text, log_exception
from ...models.product import Product
from ...models.work_order import (
    MATERIALS_ISSUED_STATUSES,
    SYNC_STATUSES,
    WorkOrder,
    WorkOrderItem,
)
from ..field_names import RuleFields
from ..path_resolver import MISSING
from .base import ActionContext, ActionError, date_value, int_value, text_value


logger = logging.getLogger("actions.exact_sync")


def _entry_value(entry: dict, *keys: str) -> Any:
    for key in keys:
        if key in entry and entry[key] is not None:
            return entry[key]
    return None


def _load_order(ctx: ActionContext, wo_id: Optional[str], wo_number: Optional[str]) -> Optional[WorkOrder]:
    if wo_id:
        return ctx.db.get(WorkOrder, wo_id)
    return ctx.db.execute(select(WorkOrder).where(WorkOrder.wo_number == wo_number)).scalar_one_or_none()


def _apply_sync_fields(ctx: ActionContext, order: WorkOrder, fields: RuleFields) -> list[str]:
    updated: list[str] = []

    for key, column in (
        ("exactShopOrderNumber", "exact_shop_order_number"),
        ("exactShopOrderLink", "exact_shop_order_link"),
    ):
        value = text_value(fields.value(key))
        if value is not None:
            setattr(order, column, value)
            updated.append(column)

    ready = date_value(fields.value("productionReadyDate"), "productionReadyDate")
    if ready is not None:
        order.production_ready_date = ready
        updated.append("production_ready_date")

    summary = fields.value("materialsSummary")
    if summary is not MISSING and summary is not None:
        order.materials_summary = summary
        updated.append("materials_summary")

    issued = text_value(fields.value("materialsIssuedStatus"))
    if issued is not None:
        issued = issued.lower()
        if issued not in MATERIALS_ISSUED_STATUSES:
            raise ActionError(f"Invalid materialsIssuedStatus '{issued}'")
        order.materials_issued_status = issued
        updated.append("materials_issued_status")

    sync_status = (text_value(fields.value("syncStatus")) or "synced").lower()
    if sync_status not in SYNC_STATUSES:
        raise ActionError(f"Invalid syncStatus '{sync_status}'")
    order.sync_status = sync_status
    order.last_sync_at = ctx.now()
    order.last_sync_error = None
    updated.append("sync_status")
    return updated


def _mark_sync_failed(ctx: ActionContext, order_id: str, message: str) -> None:
    order = ctx.db.get(WorkOrder, order_id)
    if order is None:
        raise ActionError(f"Work order {order_id} disappeared while recording sync failure")
    order.sync_status = "sync_failed"
    order.last_sync_error = message
    order.last_sync_at = ctx.now()
    order.sync_retry_count = int(order.sync_retry_count or 0) + 1
    ctx.db.commit()


def sync_exact_work_order(ctx: ActionContext, fields: RuleFields) -> dict:
    wo_id = text_value(fields.value("workOrderId"))
    wo_number = text_value(fields.value("workOrderNumber"))
    if not wo_id and not wo_number:
        raise ActionError("Missing workOrderId or workOrderNumber in payload")

    order = _load_order(ctx, wo_id, wo_number)
    if order is None:
        raise ActionError(f"Work order {wo_id or wo_number} not found")
    order_id = order.id

    try:
        updated = _apply_sync_fields(ctx, order, fields)
        ctx.db.flush()
    except Exception as exc:
        if isinstance(exc, ActionError):
            message = error_text(exc)
        else:
            log_exception(logger, "Exact sync update failed", extra={"work_order_id": order_id}, exc=exc)
            message = f"Sync update failed ({exc.__class__.__name__})"
        ctx.db.rollback()
        try:
            _mark_sync_failed(ctx, order_id, message)
        except Exception as mark_exc:
            ctx.db.rollback()
            log_exception(logger, "Failed to record sync failure", extra={"work_order_id": order_id}, exc=mark_exc)
            raise ActionError(f"{message}; recording sync failure also failed ({mark_exc.__class__.__name__})") from mark_exc
        raise ActionError(message) from exc

    return {
        "work_order_id": order.id,
        "wo_number": order.wo_number,
        "sync_status": order.sync_status,
        "updated": updated,
    }


def materials_status(assigned: int, total: int) -> str:
    if assigned <= 0 or total <= 0:
        return "not_issued"
    if assigned >= total:
        return "complete"
    return "partial"


def assign_batch_numbers(ctx: ActionContext, fields: RuleFields) -> dict:
    wo_id = text_value(fields.value("workOrderId"))
    if not wo_id:
        raise ActionError("Missing workOrderId in payload")
    assignments = fields.value("assignments")
    if not isinstance(assignments, list):
        raise ActionError("assignments must be a list")

    order = ctx.db.get(WorkOrder, wo_id)
    if order is None:
        raise ActionError(f"Work order {wo_id} not found")

    items = list(
        ctx.db.execute(
            select(WorkOrderItem)
            .where(WorkOrderItem.work_order_id == order.id)
            .order_by(WorkOrderItem.position_in_batch.asc())
        ).scalars()
    )
    by_serial = {item.serial_number: item for item in items}
    by_position = {item.position_in_batch: item for item in items}

    now = ctx.now()
    assigned = 0
    failed = 0
    for entry in assignments:
        if not isinstance(entry, dict):
            failed += 1
            continue
        batch_number = text_value(_entry_value(entry, "batchNumber", "batch_number"))
        serial = text_value(_entry_value(entry, "serialNumber", "serial_number"))
        position = int_value(_entry_value(entry, "position", "position_in_batch"))
        if not batch_number:
            failed += 1
            continue
        if serial:
            item = by_serial.get(serial)
        elif position is not None:
            item = by_position.get(position)
        else:
            item = None
        if item is None:
            failed += 1
            continue
        item.batch_number = batch_number
        item.batch_assigned_at = now
        assigned += 1

    with_batch = sum(1 for item in items if item.batch_number)
    status = materials_status(with_batch, len(items))
    order.materials_issued_status = status
    ctx.db.flush()
    if failed:
        logger.info("Batch assignment partial work_order_id=%s assigned=%s failed=%s", order.id, assigned, failed)
    return {
        "work_order_id": order.id,
        "assigned": assigned,
        "failed": failed,
        "total_items": len(items),
        "materials_issued_status": status,
    }


def _stock_value(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"invalid stock '{raw}'")


def _upsert_product(ctx: ActionContext, entry: dict) -> None:
    exact_item_id = text_value(_entry_value(entry, "exactItemId", "exact_item_id"))
    item_code = text_value(_entry_value(entry, "itemCode", "item_code", "code"))
    name = text_value(_entry_value(entry, "name"))
    if not exact_item_id or not item_code or not name:
        raise ValueError("exactItemId, itemCode and name are required")
    stock = _stock_value(_entry_value(entry, "stock"))

    product = ctx.db.execute(select(Product).where(Product.exact_item_id == exact_item_id)).scalar_one_or_none()
    if product is None:
        product = Product(exact_item_id=exact_item_id, item_code=item_code, name=name)
        ctx.db.add(product)
    product.item_code = item_code
    product.name = name
    product.name_nl = text_value(_entry_value(entry, "nameNl", "name_nl"))
    product.description = text_value(_entry_value(entry, "description"))
    product.product_type = text_value(_entry_value(entry, "productType", "product_type"))
    product.items_group = text_value(_entry_value(entry, "itemsGroup", "items_group"))
    product.barcode = text_value(_entry_value(entry, "barcode"))
    product.stock = stock
    is_active = _entry_value(entry, "isActive", "is_active")
    product.is_active = True if is_active is None else bool(is_active)
    product.last_synced_at = ctx.now()
    ctx.db.flush()


def sync_products(ctx: ActionContext, fields: RuleFields) -> dict:
    products = fields.value("products")
    if not isinstance(products, list):
        raise ActionError("products must be a list")

    synced = 0
    failed = 0
    for entry in products:
        if not isinstance(entry, dict):
            failed += 1
            continue
        # One savepoint per entry: a store error drops that entry only.
        try:
            with ctx.db.begin_nested():
                _upsert_product(ctx, entry)
        except ValueError as exc:
            failed += 1
            logger.info("Product entry skipped err=%s", exc)
            continue
        except SQLAlchemyError as exc:
            failed += 1
            logger.warning(
                "Product entry rejected by store exact_item_id=%s err=%s",
                _entry_value(entry, "exactItemId", "exact_item_id"),
                exc.__class__.__name__,
            )
            continue
        synced += 1
    return {"synced": synced, "failed": failed, "total": len(products)}
