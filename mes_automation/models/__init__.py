"""
SQLAlchemy model base class for the MES automation backend.

This package defines ORM models for webhook registrations, automation
rules and execution logs, plus the subset of production tables (work
orders, items, products, activity logs, users) that the automation
handlers read or write. All models inherit from the declarative `Base`
defined here.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


from .app_user import AppUser, UserRole  # noqa: E402,F401
from .webhook import WebhookRegistration, AutomationRule, WebhookExecutionLog  # noqa: E402,F401
from .work_order import WorkOrder, WorkOrderItem  # noqa: E402,F401
from .activity_log import ActivityLog  # noqa: E402,F401
from .product import Product  # noqa: E402,F401

__all__ = [
    "Base",

    # Users
    "AppUser",
    "UserRole",

    # Webhooks / Automation
    "WebhookRegistration",
    "AutomationRule",
    "WebhookExecutionLog",

    # Production
    "WorkOrder",
    "WorkOrderItem",
    "Product",

    # Audit
    "ActivityLog",
]
