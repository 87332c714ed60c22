"""
Authentication endpoints for the MES automation backend.

Operators exchange a username and password for a bearer token that the
admin endpoints (webhook registration, logs, dry runs) require.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from ...core.auth import ADMIN_ROLE, UserContext, get_current_user, user_has_role
from ...core.db import get_db
from ...core.security import create_access_token, verify_password
from ...models.app_user import AppUser, UserRole


router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


class LoginIn(BaseModel):
    username: str
    password: str


def _roles_for(db: Session, user_id: str) -> list[str]:
    rows = db.query(UserRole.role).filter(UserRole.user_id == user_id).order_by(UserRole.role.asc()).all()
    return [row[0] for row in rows]


@router.post("/login")
def login(payload: LoginIn, db: Session = Depends(get_db)) -> dict:
    username = payload.username.strip()
    if not username or not payload.password:
        raise HTTPException(status_code=400, detail="username and password are required")
    user = db.query(AppUser).filter(func.lower(AppUser.username) == username.lower()).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_access_token(sub=user.username, user_id=user.id)
    return {
        "access_token": token,
        "token_type": "bearer",
        "user": {
            "id": user.id,
            "username": user.username,
            "name": user.full_name or user.username.title(),
            "roles": _roles_for(db, user.id),
        },
    }


@router.get("/me")
def me(user: UserContext = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    is_admin = user.is_admin or bool(user.user_id and user_has_role(db, user.user_id, ADMIN_ROLE))
    return {"id": user.user_id, "username": user.username, "is_admin": is_admin}
