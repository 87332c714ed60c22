"""
Shared types and value coercion for automation action handlers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Optional, Protocol

import requests
from sqlalchemy.orm import Session

from ..field_names import RuleFields
from ..path_resolver import MISSING


class ActionError(RuntimeError):
    """A rule-level failure. The executor records it and moves on."""


@dataclass
class ActionContext:
    db: Session
    payload: Any
    registration_id: Optional[str] = None
    http_session: Optional[requests.Session] = None
    sleep: Callable[[float], None] = time.sleep
    now: Callable[[], datetime] = field(default=datetime.utcnow)


class ActionHandler(Protocol):
    def __call__(self, ctx: ActionContext, fields: RuleFields) -> dict: ...


def text_value(value: Any) -> Optional[str]:
    if value is MISSING or value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip()
    return text or None


def int_value(value: Any) -> Optional[int]:
    """Lenient integer parse: 5, "5", "5.0" and " 5 " all give 5."""
    if value is MISSING or value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        pass
    try:
        return int(float(str(value).strip()))
    except ValueError:
        return None


def date_value(value: Any, field_name: str) -> Optional[date]:
    text = text_value(value)
    if text is None:
        return None
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ActionError(f"Invalid {field_name} '{text}'") from exc


def now_millis() -> int:
    return int(time.time() * 1000)
