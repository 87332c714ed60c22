"""
Pydantic schemas for webhook registrations, rules and execution logs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

NAME_MAX_LENGTH = 100


class WebhookCreate(BaseModel):
    name: str
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("Name is required")
        if len(value) > NAME_MAX_LENGTH:
            raise ValueError(f"Name must be {NAME_MAX_LENGTH} characters or less")
        return value

    @field_validator("description")
    @classmethod
    def _clean_description(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class AutomationRuleOut(BaseModel):
    id: int
    name: str
    action_type: str
    field_mappings: dict = Field(default_factory=dict)
    conditions: Optional[dict] = None
    enabled: bool
    sort_order: int

    class Config:
        from_attributes = True


class WebhookOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    endpoint_key: str
    # Always masked outside the creation response.
    secret_key: str
    enabled: bool
    created_by: Optional[str] = None
    trigger_count: int = 0
    last_triggered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    rules: Optional[List[AutomationRuleOut]] = None


class WebhookCreateResponse(BaseModel):
    webhook: WebhookOut
    secret: str
    message: str


class ExecutionLogOut(BaseModel):
    id: str
    incoming_webhook_id: Optional[str] = None
    endpoint_key: Optional[str] = None
    request_body: Any = None
    request_headers: Optional[dict] = None
    response_status: int
    response_body: Optional[dict] = None
    error_message: Optional[str] = None
    executed_rules: Optional[list] = None
    is_test: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WebhookTestRequest(BaseModel):
    test_payload: Any = Field(default_factory=dict)
