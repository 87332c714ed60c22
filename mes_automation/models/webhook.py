"""
Webhook registrations, their automation rules and the per-call execution log.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base


class WebhookRegistration(Base):
    __tablename__ = "incoming_webhooks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Public, used in the receiver URL. Never changes once issued.
    endpoint_key: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    secret_key: Mapped[str] = mapped_column(String(128), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    trigger_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_triggered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    rules: Mapped[list["AutomationRule"]] = relationship(
        back_populates="registration",
        order_by="(AutomationRule.sort_order, AutomationRule.id)",
    )


class AutomationRule(Base):
    __tablename__ = "automation_rules"

    # Autoincrement id doubles as insertion order for sort_order ties.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    incoming_webhook_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("incoming_webhooks.id", ondelete="CASCADE"), index=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    field_mappings: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    conditions: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    registration: Mapped[WebhookRegistration] = relationship(back_populates="rules")


class WebhookExecutionLog(Base):
    __tablename__ = "webhook_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Null when the endpoint key did not match any registration.
    incoming_webhook_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("incoming_webhooks.id", ondelete="SET NULL"), nullable=True
    )
    endpoint_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    request_body: Mapped[Any] = mapped_column(JSON, nullable=True)
    request_headers: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    response_status: Mapped[int] = mapped_column(Integer, nullable=False)
    response_body: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    executed_rules: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_test: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_webhook_logs_webhook_created", "incoming_webhook_id", "created_at"),
    )
