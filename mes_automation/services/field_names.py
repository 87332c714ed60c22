"""
Logical field names per action type, and the translation from a rule's
stored ``field_mappings`` to payload paths.

Rules written before the camelCase naming used snake_case storage keys
(``wo_number``, ``batch_size``, ...). Both dialects stay readable:
``upgrade_mappings`` converts any stored mapping to the current dialect on
read, so handlers only ever ask for current names and no data migration
is needed. A new dialect means a new entry in ``_UPGRADERS``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from .path_resolver import MISSING, resolve_path


class ActionType(str, Enum):
    CREATE_WORK_ORDER = "create_work_order"
    UPDATE_WORK_ORDER_STATUS = "update_work_order_status"
    UPDATE_ITEM_STATUS = "update_item_status"
    LOG_ACTIVITY = "log_activity"
    TRIGGER_OUTGOING_WEBHOOK = "trigger_outgoing_webhook"
    SYNC_EXACT_WORK_ORDER = "sync_exact_work_order"
    ASSIGN_BATCH_NUMBERS = "assign_batch_numbers"
    SYNC_PRODUCTS = "sync_products"

    @classmethod
    def parse(cls, raw: str | None) -> Optional["ActionType"]:
        try:
            return cls(str(raw or "").strip())
        except ValueError:
            return None


@dataclass(frozen=True)
class FieldSpec:
    name: str
    legacy: Optional[str] = None
    # Literal fields hold configuration values (e.g. a URL), not payload paths.
    literal: bool = False


ACTION_FIELDS: dict[ActionType, tuple[FieldSpec, ...]] = {
    ActionType.CREATE_WORK_ORDER: (
        FieldSpec("workOrderNumber", "wo_number"),
        FieldSpec("productType", "product_type"),
        FieldSpec("quantity", "batch_size"),
        FieldSpec("customer", "customer_name"),
        FieldSpec("externalReference", "external_order_number"),
        FieldSpec("startDate", "scheduled_date"),
        FieldSpec("shipDate", "shipping_date"),
        FieldSpec("notes"),
    ),
    ActionType.UPDATE_WORK_ORDER_STATUS: (
        FieldSpec("workOrderNumber", "wo_number"),
        FieldSpec("status"),
    ),
    ActionType.UPDATE_ITEM_STATUS: (
        FieldSpec("serialNumber", "serial_number"),
        FieldSpec("status"),
        FieldSpec("step", "current_step"),
    ),
    ActionType.LOG_ACTIVITY: (
        FieldSpec("action"),
        FieldSpec("entityType", "entity_type"),
        FieldSpec("entityId", "entity_id"),
        FieldSpec("details", "details_path"),
    ),
    ActionType.TRIGGER_OUTGOING_WEBHOOK: (
        FieldSpec("webhookUrl", "webhook_url", literal=True),
    ),
    ActionType.SYNC_EXACT_WORK_ORDER: (
        FieldSpec("workOrderId", "work_order_id"),
        FieldSpec("workOrderNumber", "wo_number"),
        FieldSpec("exactShopOrderNumber", "exact_shop_order_number"),
        FieldSpec("exactShopOrderLink", "exact_shop_order_link"),
        FieldSpec("syncStatus", "sync_status"),
        FieldSpec("productionReadyDate", "production_ready_date"),
        FieldSpec("materialsSummary", "materials_summary"),
        FieldSpec("materialsIssuedStatus", "materials_issued_status"),
    ),
    ActionType.ASSIGN_BATCH_NUMBERS: (
        FieldSpec("workOrderId", "work_order_id"),
        FieldSpec("assignments", "batch_assignments"),
    ),
    ActionType.SYNC_PRODUCTS: (
        FieldSpec("products"),
    ),
}

CURRENT_MAPPINGS_VERSION = 2


def _configured(raw: dict, key: Optional[str]) -> Any:
    if not key or key not in raw:
        return None
    value = raw[key]
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return value


def translate(action_type: ActionType, mappings: dict | None, key: str) -> Optional[str]:
    """Return the configured path (or literal) for ``key``, or None when unmapped.

    The current name wins; the legacy key is only consulted when the
    current one is absent.
    """
    raw = mappings or {}
    spec = _field_spec(action_type, key)
    value = _configured(raw, key)
    if value is None and spec is not None:
        value = _configured(raw, spec.legacy)
    if value is None:
        return None
    if spec is not None and spec.literal:
        return value
    return value if isinstance(value, str) else None


def _field_spec(action_type: ActionType, key: str) -> Optional[FieldSpec]:
    for spec in ACTION_FIELDS.get(action_type, ()):
        if spec.name == key:
            return spec
    return None


def _upgrade_v1(action_type: ActionType, raw: dict) -> dict:
    out: dict = {}
    for spec in ACTION_FIELDS.get(action_type, ()):
        value = translate(action_type, raw, spec.name)
        if value is not None:
            out[spec.name] = value
    return out


_UPGRADERS: dict[int, Callable[[ActionType, dict], dict]] = {
    1: _upgrade_v1,
}


def detect_version(action_type: ActionType, raw: dict) -> int:
    legacy = {spec.legacy for spec in ACTION_FIELDS.get(action_type, ()) if spec.legacy}
    return 1 if legacy.intersection(raw.keys()) else CURRENT_MAPPINGS_VERSION


def upgrade_mappings(action_type: ActionType, raw: dict | None) -> dict:
    """Convert stored field mappings to the current dialect, keyed by logical name."""
    mappings = dict(raw or {})
    version = detect_version(action_type, mappings)
    while version < CURRENT_MAPPINGS_VERSION:
        mappings = _UPGRADERS[version](action_type, mappings)
        version += 1
    known = {spec.name for spec in ACTION_FIELDS.get(action_type, ())}
    return {key: value for key, value in mappings.items() if key in known and _configured(mappings, key) is not None}


class RuleFields:
    """Field access for one rule against one payload."""

    def __init__(self, action_type: ActionType, mappings: dict | None, payload: Any) -> None:
        self.action_type = action_type
        self.mappings = upgrade_mappings(action_type, mappings)
        self.payload = payload

    def configured(self, key: str) -> bool:
        return key in self.mappings

    def path(self, key: str) -> Optional[str]:
        return translate(self.action_type, self.mappings, key)

    def literal(self, key: str) -> Any:
        return self.mappings.get(key)

    def value(self, key: str) -> Any:
        """Resolved payload value, or MISSING when unmapped or absent."""
        path = self.path(key)
        if path is None:
            return MISSING
        return resolve_path(self.payload, path)

    def extracted(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for spec in ACTION_FIELDS.get(self.action_type, ()):
            if not self.configured(spec.name):
                continue
            if spec.literal:
                out[spec.name] = self.literal(spec.name)
                continue
            value = self.value(spec.name)
            out[spec.name] = None if value is MISSING else value
        return out
