"""
Bootstrap seed helper for the first administrator.
"""

from __future__ import annotations

import logging
import os

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.auth import ADMIN_ROLE
from ..core.security import hash_password
from ..models.app_user import AppUser, UserRole


def seed_admin_user(db: Session) -> None:
    logger = logging.getLogger("auth-seed")
    username = (os.getenv("MES_ADMIN_USERNAME") or "admin").strip()
    password = (os.getenv("MES_ADMIN_PASSWORD") or "").strip()

    if not username:
        logger.warning("Skipping admin seed: empty MES_ADMIN_USERNAME")
        return
    if not password:
        logger.warning("Skipping admin seed: MES_ADMIN_PASSWORD is empty")
        return

    user = db.query(AppUser).filter(func.lower(AppUser.username) == username.lower()).first()
    if user is None:
        user = AppUser(
            username=username,
            password_hash=hash_password(password),
            is_active=True,
        )
        db.add(user)
        db.flush()
        logger.info("Seeded admin user username=%s", username)
    elif not user.is_active:
        user.is_active = True

    has_role = (
        db.query(UserRole.id)
        .filter(UserRole.user_id == user.id, UserRole.role == ADMIN_ROLE)
        .first()
    )
    if not has_role:
        db.add(UserRole(user_id=user.id, role=ADMIN_ROLE))
    db.commit()
