"""
Caller identity and role checks for admin endpoints.

Identity comes from a bearer JWT issued by ``/api/v1/auth/login``. Roles are
not carried in the token; they are looked up in ``user_roles`` on every
request so that revoking a role takes effect immediately.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import get_db
from .security import decode_access_token
from ..models.app_user import UserRole

ADMIN_ROLE = "admin"


@dataclass
class UserContext:
    user_id: Optional[str] = None
    username: Optional[str] = None
    is_admin: bool = False


def _auth_disabled() -> bool:
    return os.getenv("MES_AUTH_DISABLED", "false").lower() in {"1", "true", "yes"}


def _extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None


def user_has_role(db: Session, user_id: str, role: str) -> bool:
    stmt = select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role == role).limit(1)
    return db.execute(stmt).first() is not None


def first_user_with_role(db: Session, role: str) -> Optional[str]:
    """Return the id of some user holding ``role`` (used as a system actor)."""
    stmt = select(UserRole.user_id).where(UserRole.role == role).order_by(UserRole.id.asc()).limit(1)
    return db.execute(stmt).scalar_one_or_none()


def get_current_user(authorization: Optional[str] = Header(None)) -> UserContext:
    if _auth_disabled():
        return UserContext(user_id="dev", username="dev", is_admin=True)
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        claims = decode_access_token(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")
    username = str(claims.get("sub") or "").strip() or None
    user_id = str(claims.get("user_id") or "").strip() or None
    if not username or not user_id:
        raise HTTPException(status_code=401, detail="Invalid token claims")
    return UserContext(user_id=user_id, username=username)


def require_admin(
    user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> UserContext:
    if user.is_admin:
        return user
    if not user.user_id or not user_has_role(db, user.user_id, ADMIN_ROLE):
        raise HTTPException(status_code=403, detail="Admin access required")
    user.is_admin = True
    return user
