import datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from mes_automation.models import Base
from mes_automation.models.product import Product
from mes_automation.models.work_order import WorkOrder, WorkOrderItem
from mes_automation.services.actions import ActionContext, ActionError, exact_sync
from mes_automation.services.actions.exact_sync import (
    assign_batch_numbers,
    materials_status,
    sync_exact_work_order,
    sync_products,
)
from mes_automation.services.field_names import ActionType, RuleFields


FIXED_NOW = datetime.datetime(2026, 5, 4, 12, 0, 0)


def _make_session():
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    return SessionLocal()


def _ctx(db, payload):
    return ActionContext(db=db, payload=payload, now=lambda: FIXED_NOW)


def _seed_order(db, wo_number="WO-77", items=3):
    order = WorkOrder(wo_number=wo_number, product_type="SENSOR", batch_size=items, status="planned")
    db.add(order)
    db.flush()
    for pos in range(1, items + 1):
        db.add(WorkOrderItem(work_order_id=order.id, serial_number=f"Q-1-{pos:03d}", position_in_batch=pos))
    db.commit()
    return order.id


def test_sync_exact_work_order_applies_fields():
    db = _make_session()
    order_id = _seed_order(db)
    payload = {
        "wo": "WO-77",
        "exact": {"number": "SO-5501", "link": "https://exact.example/so/5501", "ready": "2026-06-01"},
        "materials": {"lines": 4},
    }
    mappings = {
        "workOrderNumber": "$.wo",
        "exactShopOrderNumber": "$.exact.number",
        "exactShopOrderLink": "$.exact.link",
        "productionReadyDate": "$.exact.ready",
        "materialsSummary": "$.materials",
    }
    result = sync_exact_work_order(_ctx(db, payload), RuleFields(ActionType.SYNC_EXACT_WORK_ORDER, mappings, payload))
    db.commit()

    order = db.get(WorkOrder, order_id)
    assert result["sync_status"] == "synced"
    assert "exact_shop_order_number" in result["updated"]
    assert order.exact_shop_order_number == "SO-5501"
    assert order.exact_shop_order_link == "https://exact.example/so/5501"
    assert order.production_ready_date == datetime.date(2026, 6, 1)
    assert order.materials_summary == {"lines": 4}
    assert order.sync_status == "synced"
    assert order.last_sync_at == FIXED_NOW


def test_sync_exact_work_order_records_failure_on_order():
    db = _make_session()
    order_id = _seed_order(db)
    payload = {"id": order_id, "status": "teleported"}
    mappings = {"workOrderId": "$.id", "syncStatus": "$.status"}

    with pytest.raises(ActionError, match="Invalid syncStatus"):
        sync_exact_work_order(_ctx(db, payload), RuleFields(ActionType.SYNC_EXACT_WORK_ORDER, mappings, payload))

    db.expire_all()
    order = db.get(WorkOrder, order_id)
    assert order.sync_status == "sync_failed"
    assert "Invalid syncStatus" in order.last_sync_error
    assert order.sync_retry_count == 1


def test_sync_exact_work_order_requires_identifier():
    db = _make_session()
    with pytest.raises(ActionError, match="Missing workOrderId or workOrderNumber"):
        sync_exact_work_order(_ctx(db, {}), RuleFields(ActionType.SYNC_EXACT_WORK_ORDER, {}, {}))
    payload = {"wo": "WO-NOPE"}
    with pytest.raises(ActionError, match="not found"):
        sync_exact_work_order(
            _ctx(db, payload), RuleFields(ActionType.SYNC_EXACT_WORK_ORDER, {"wo_number": "$.wo"}, payload)
        )


def test_assign_batch_numbers_partial_then_complete():
    db = _make_session()
    order_id = _seed_order(db)
    mappings = {"workOrderId": "$.order", "assignments": "$.batches"}
    payload = {
        "order": order_id,
        "batches": [
            {"serialNumber": "Q-1-001", "batchNumber": "B-1"},
            {"position": 2, "batch_number": "B-2"},
            {"serialNumber": "Q-9-999", "batchNumber": "B-3"},
            {"serialNumber": "Q-1-003"},
            "junk",
        ],
    }
    result = assign_batch_numbers(_ctx(db, payload), RuleFields(ActionType.ASSIGN_BATCH_NUMBERS, mappings, payload))
    db.commit()

    assert result["assigned"] == 2
    assert result["failed"] == 3
    assert result["total_items"] == 3
    assert result["materials_issued_status"] == "partial"
    item = db.execute(select(WorkOrderItem).where(WorkOrderItem.serial_number == "Q-1-002")).scalar_one()
    assert item.batch_number == "B-2"
    assert item.batch_assigned_at == FIXED_NOW

    payload = {"order": order_id, "batches": [{"serial_number": "Q-1-003", "batchNumber": "B-3"}]}
    result = assign_batch_numbers(_ctx(db, payload), RuleFields(ActionType.ASSIGN_BATCH_NUMBERS, mappings, payload))
    db.commit()
    assert result["materials_issued_status"] == "complete"
    assert db.get(WorkOrder, order_id).materials_issued_status == "complete"


def test_assign_batch_numbers_validation():
    db = _make_session()
    order_id = _seed_order(db)
    with pytest.raises(ActionError, match="Missing workOrderId"):
        assign_batch_numbers(_ctx(db, {}), RuleFields(ActionType.ASSIGN_BATCH_NUMBERS, {}, {}))
    payload = {"order": order_id, "batches": {"not": "a list"}}
    mappings = {"work_order_id": "$.order", "batch_assignments": "$.batches"}
    with pytest.raises(ActionError, match="assignments must be a list"):
        assign_batch_numbers(_ctx(db, payload), RuleFields(ActionType.ASSIGN_BATCH_NUMBERS, mappings, payload))


def test_materials_status():
    assert materials_status(0, 4) == "not_issued"
    assert materials_status(2, 4) == "partial"
    assert materials_status(4, 4) == "complete"
    assert materials_status(0, 0) == "not_issued"


def test_sync_products_upserts_by_exact_item_id():
    db = _make_session()
    mappings = {"products": "$.items"}
    payload = {
        "items": [
            {"exactItemId": "EX-1", "itemCode": "SDM-100", "name": "Sensor housing", "stock": "12.5"},
            {"exact_item_id": "EX-2", "code": "SDM-200", "name": "Display", "isActive": False},
            {"exactItemId": "EX-3", "name": "No code"},
            {"exactItemId": "EX-4", "itemCode": "SDM-400", "name": "Bad stock", "stock": "lots"},
        ]
    }
    result = sync_products(_ctx(db, payload), RuleFields(ActionType.SYNC_PRODUCTS, mappings, payload))
    db.commit()
    assert result == {"synced": 2, "failed": 2, "total": 4}

    payload = {"items": [{"exactItemId": "EX-1", "itemCode": "SDM-100", "name": "Sensor housing v2"}]}
    result = sync_products(_ctx(db, payload), RuleFields(ActionType.SYNC_PRODUCTS, mappings, payload))
    db.commit()
    assert result == {"synced": 1, "failed": 0, "total": 1}

    rows = db.execute(select(Product).order_by(Product.exact_item_id)).scalars().all()
    assert [p.exact_item_id for p in rows] == ["EX-1", "EX-2"]
    assert rows[0].name == "Sensor housing v2"
    assert rows[0].last_synced_at == FIXED_NOW
    assert rows[1].item_code == "SDM-200"
    assert rows[1].is_active is False


def test_sync_products_store_error_drops_only_that_entry(monkeypatch):
    db = _make_session()
    real_upsert = exact_sync._upsert_product

    def upsert_with_conflict(ctx, entry):
        real_upsert(ctx, entry)
        if entry["exactItemId"] == "EX-BAD":
            ctx.db.add(Product(exact_item_id="EX-1", item_code="dup", name="dup"))
            ctx.db.flush()

    monkeypatch.setattr(exact_sync, "_upsert_product", upsert_with_conflict)
    mappings = {"products": "$.items"}
    payload = {
        "items": [
            {"exactItemId": "EX-1", "itemCode": "SDM-100", "name": "Sensor housing"},
            {"exactItemId": "EX-BAD", "itemCode": "SDM-666", "name": "Conflicting"},
            {"exactItemId": "EX-3", "itemCode": "SDM-300", "name": "Cable"},
        ]
    }

    result = sync_products(_ctx(db, payload), RuleFields(ActionType.SYNC_PRODUCTS, mappings, payload))
    db.commit()

    assert result == {"synced": 2, "failed": 1, "total": 3}
    rows = db.execute(select(Product).order_by(Product.exact_item_id)).scalars().all()
    assert [p.exact_item_id for p in rows] == ["EX-1", "EX-3"]
    assert rows[0].name == "Sensor housing"


def test_sync_exact_work_order_store_error_is_recorded_without_sql(monkeypatch):
    db = _make_session()
    order_id = _seed_order(db)

    def failing_apply(ctx, order, fields):
        raise IntegrityError("UPDATE work_orders SET sync_status=? WHERE id=?", ("synced", order_id), Exception("locked"))

    monkeypatch.setattr(exact_sync, "_apply_sync_fields", failing_apply)
    payload = {"id": order_id}

    with pytest.raises(ActionError) as err:
        sync_exact_work_order(_ctx(db, payload), RuleFields(ActionType.SYNC_EXACT_WORK_ORDER, {"workOrderId": "$.id"}, payload))

    assert str(err.value) == "Sync update failed (IntegrityError)"
    db.expire_all()
    order = db.get(WorkOrder, order_id)
    assert order.sync_status == "sync_failed"
    assert order.last_sync_error == "Sync update failed (IntegrityError)"

def test_sync_products_requires_list():
    db = _make_session()
    with pytest.raises(ActionError, match="products must be a list"):
        sync_products(_ctx(db, {"items": "nope"}), RuleFields(ActionType.SYNC_PRODUCTS, {"products": "$.items"}, {"items": "nope"}))
