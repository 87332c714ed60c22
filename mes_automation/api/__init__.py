"""
API package for the MES automation backend.

This package aggregates all API routers to be included in the FastAPI
application. Admin APIs are versioned under ``/api/v1``; the inbound
receiver and the registration endpoint keep their integration-facing
paths (``/webhook-receiver/{key}``, ``/create-webhook``).
"""

from fastapi import APIRouter
from .v1.auth import router as auth_router
from .v1.health import router as health_router
from .v1.webhook_receiver import router as webhook_receiver_router
from .v1.webhooks import create_router as create_webhook_router, router as webhooks_router

api_router = APIRouter()
api_router.include_router(auth_router)
api_router.include_router(health_router)
api_router.include_router(webhook_receiver_router)
api_router.include_router(create_webhook_router)
api_router.include_router(webhooks_router)
