"""
Entry point for the MES automation backend.

This module creates the FastAPI application and includes all API routers.
Run with:

    uvicorn mes_automation.main:app --reload

"""

from __future__ import annotations

import logging
import os

import requests
from fastapi import FastAPI

from .api import api_router
from .core.config import Settings, get_app_env, settings as default_settings
from .core.db import engine, SessionLocal
from .core.errors import log_exception
from .core.logging_config import setup_logging
from .core.rate_limit import SlidingWindowRateLimiter
from .models import Base
from .services.auth_seed import seed_admin_user


def create_app(settings: Settings | None = None) -> FastAPI:
    cfg = settings or default_settings
    setup_logging(cfg.log_level)
    app = FastAPI(title="MES Automation Backend", version="0.1.0")
    app.include_router(api_router)
    app.state.settings = cfg
    app.state.http_session = requests.Session()
    app.state.webhook_create_limiter = SlidingWindowRateLimiter(
        limit=cfg.webhook_create_rate_limit,
        window_sec=cfg.webhook_create_rate_window_sec,
    )

    # Ensure tables exist for local use; production runs scripts.create_db.
    @app.on_event("startup")
    def _init_db() -> None:
        logger = logging.getLogger("startup")
        env = get_app_env()
        if cfg.auto_create_db:
            try:
                Base.metadata.create_all(bind=engine)
            except Exception as exc:
                log_exception(logger, "DB create_all failed", exc=exc)
                if env == "prod":
                    raise
        if cfg.auto_seed_admin_user:
            try:
                with SessionLocal() as db:
                    seed_admin_user(db)
            except Exception as exc:
                log_exception(logger, "Seed admin user failed", exc=exc)
                if env == "prod":
                    raise
        logger.info("MES automation backend started env=%s pid=%s", env, os.getpid())

    @app.on_event("shutdown")
    def _shutdown() -> None:
        session = getattr(app.state, "http_session", None)
        if session is not None:
            session.close()

    return app


app = create_app()
