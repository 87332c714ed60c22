"""
Work orders and their serialized units.

Only the columns the automation handlers read or write are declared here;
the production UI owns the rest of the schema.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from . import Base

PRODUCT_TYPES = ("SDM_ECO", "SENSOR", "MLA", "HMI", "TRANSMITTER")
WORK_ORDER_STATUSES = ("planned", "in_progress", "on_hold", "completed", "cancelled")
SYNC_STATUSES = ("not_sent", "waiting_for_exact", "synced", "sync_failed", "out_of_sync")
MATERIALS_ISSUED_STATUSES = ("not_issued", "partial", "complete")


class WorkOrder(Base):
    __tablename__ = "work_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    wo_number: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    product_type: Mapped[str] = mapped_column(String(32), nullable=False)
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="planned", nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    external_order_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    shipping_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Exact (ERP) synchronisation
    exact_shop_order_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    exact_shop_order_link: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    sync_status: Mapped[str] = mapped_column(String(32), default="not_sent", nullable=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    production_ready_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    materials_summary: Mapped[Any] = mapped_column(JSON, nullable=True)
    materials_issued_status: Mapped[str] = mapped_column(String(32), default="not_issued", nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class WorkOrderItem(Base):
    __tablename__ = "work_order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    work_order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("work_orders.id", ondelete="CASCADE"), index=True, nullable=False
    )
    serial_number: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    position_in_batch: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="planned", nullable=False)
    current_step: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    batch_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    batch_assigned_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
