import asyncio
import json
import re

from fastapi.testclient import TestClient
from sqlalchemy import select

from mes_automation.api.v1 import webhooks as webhooks_api
from mes_automation.core.db import SessionLocal
from mes_automation.core.rate_limit import SlidingWindowRateLimiter
from mes_automation.core.security import hash_password
from mes_automation.main import create_app
from mes_automation.models.activity_log import ActivityLog
from mes_automation.models.app_user import AppUser, UserRole
from mes_automation.models.webhook import AutomationRule, WebhookExecutionLog, WebhookRegistration


def _client() -> TestClient:
    return TestClient(create_app())


def _create_user(*, username: str, password: str, admin: bool) -> str:
    with SessionLocal() as db:
        user = AppUser(username=username, password_hash=hash_password(password), is_active=True)
        db.add(user)
        db.flush()
        if admin:
            db.add(UserRole(user_id=user.id, role="admin"))
        db.commit()
        return user.id


def _login_headers(client: TestClient, username: str, password: str) -> dict:
    resp = client.post("/api/v1/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def _admin(client: TestClient) -> dict:
    _create_user(username="admin", password="admin-pass", admin=True)
    return _login_headers(client, "admin", "admin-pass")


def test_create_requires_authentication(app_db):
    with _client() as client:
        resp = client.post("/create-webhook", json={"name": "Exact sync"})
    assert resp.status_code == 401


def test_create_requires_admin_role(app_db):
    with _client() as client:
        _create_user(username="operator", password="op-pass", admin=False)
        headers = _login_headers(client, "operator", "op-pass")
        resp = client.post("/create-webhook", json={"name": "Exact sync"}, headers=headers)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Admin access required"


def test_create_rejects_invalid_names(app_db):
    with _client() as client:
        headers = _admin(client)
        blank = client.post("/create-webhook", json={"name": "   "}, headers=headers)
        too_long = client.post("/create-webhook", json={"name": "x" * 101}, headers=headers)
        missing = client.post("/create-webhook", json={}, headers=headers)
        garbage = client.post("/create-webhook", content="{oops", headers=headers)

    assert blank.status_code == 400
    assert blank.json()["detail"] == "Name is required"
    assert too_long.status_code == 400
    assert too_long.json()["detail"] == "Name must be 100 characters or less"
    assert missing.status_code == 400
    assert garbage.status_code == 400
    with SessionLocal() as db:
        assert db.execute(select(WebhookRegistration)).scalars().all() == []


def test_create_returns_secret_once_and_masks_later(app_db):
    with _client() as client:
        headers = _admin(client)
        resp = client.post(
            "/create-webhook",
            json={"name": "  Exact sync  ", "description": "  shop orders "},
            headers=headers,
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        secret = body["secret"]
        webhook = body["webhook"]

        assert re.fullmatch(r"[0-9a-f]{64}", secret)
        assert re.fullmatch(r"[0-9a-f]{32}", webhook["endpoint_key"])
        assert webhook["name"] == "Exact sync"
        assert webhook["description"] == "shop orders"
        assert webhook["enabled"] is True
        assert webhook["trigger_count"] == 0
        assert webhook["secret_key"] == "********" + secret[-4:]
        assert "only time" in body["message"]
        assert resp.headers["X-RateLimit-Remaining"] == "9"

        detail = client.get(f"/api/v1/webhooks/{webhook['id']}", headers=headers)
        assert detail.status_code == 200
        assert detail.json()["secret_key"] == "********" + secret[-4:]
        assert detail.json()["rules"] == []
        assert secret not in detail.text

        listing = client.get("/api/v1/webhooks", headers=headers)
        assert listing.status_code == 200
        assert listing.headers["X-Total-Count"] == "1"
        assert secret not in listing.text

    with SessionLocal() as db:
        stored = db.execute(select(WebhookRegistration)).scalar_one()
        assert stored.secret_key == secret
        audit = db.execute(select(ActivityLog)).scalar_one()
        assert audit.action == "webhook_created"
        assert audit.entity_id == stored.id


def test_created_registration_accepts_deliveries(app_db):
    with _client() as client:
        headers = _admin(client)
        body = client.post("/create-webhook", json={"name": "Scanner"}, headers=headers).json()
        key = body["webhook"]["endpoint_key"]

        ok = client.post(f"/webhook-receiver/{key}", json={"a": 1}, headers={"X-Webhook-Secret": body["secret"]})
        masked = client.post(
            f"/webhook-receiver/{key}", json={"a": 1}, headers={"X-Webhook-Secret": body["webhook"]["secret_key"]}
        )
    assert ok.status_code == 200
    assert masked.status_code == 401


def test_create_is_rate_limited_per_user(app_db):
    app = create_app()
    app.state.webhook_create_limiter = SlidingWindowRateLimiter(limit=2, window_sec=3600)
    with TestClient(app) as client:
        headers = _admin(client)
        first = client.post("/create-webhook", json={"name": "one"}, headers=headers)
        second = client.post("/create-webhook", json={"name": "two"}, headers=headers)
        invalid = client.post("/create-webhook", json={"name": ""}, headers=headers)
        third = client.post("/create-webhook", json={"name": "three"}, headers=headers)

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.headers["X-RateLimit-Remaining"] == "0"
    assert invalid.status_code == 400
    assert third.status_code == 429
    assert third.json()["error"] == "Rate limit exceeded. Try again later."
    assert third.json()["retry_after"] >= 1
    assert int(third.headers["Retry-After"]) >= 1
    assert third.headers["X-RateLimit-Remaining"] == "0"
    assert "X-RateLimit-Reset" in third.headers
    with SessionLocal() as db:
        assert len(db.execute(select(WebhookRegistration)).scalars().all()) == 2


def test_create_runs_store_work_off_the_event_loop(app_db, monkeypatch):
    on_loop = []
    real_create = webhooks_api.create_registration

    def recording_create(*args, **kwargs):
        try:
            asyncio.get_running_loop()
            on_loop.append(True)
        except RuntimeError:
            on_loop.append(False)
        return real_create(*args, **kwargs)

    monkeypatch.setattr(webhooks_api, "create_registration", recording_create)
    with _client() as client:
        headers = _admin(client)
        resp = client.post("/create-webhook", json={"name": "threaded"}, headers=headers)

    assert resp.status_code == 200
    assert on_loop == [False]

def _add_rules(registration_id: str) -> None:
    with SessionLocal() as db:
        db.add_all(
            [
                AutomationRule(
                    incoming_webhook_id=registration_id,
                    name="relay",
                    action_type="trigger_outgoing_webhook",
                    field_mappings={"webhookUrl": "https://hooks.example.com/out"},
                    sort_order=2,
                ),
                AutomationRule(
                    incoming_webhook_id=registration_id,
                    name="create order",
                    action_type="create_work_order",
                    field_mappings={"wo_number": "$.order.number", "quantity": "$.order.qty"},
                    conditions={"field": "$.order.type", "operator": "equals", "value": "SENSOR"},
                    sort_order=1,
                ),
                AutomationRule(
                    incoming_webhook_id=registration_id,
                    name="off",
                    action_type="log_activity",
                    field_mappings={},
                    enabled=False,
                    sort_order=3,
                ),
                AutomationRule(
                    incoming_webhook_id=registration_id,
                    name="mystery",
                    action_type="make_coffee",
                    field_mappings={"cup": "$.cup"},
                    sort_order=4,
                ),
            ]
        )
        db.commit()


def test_dry_run_reports_rules_without_side_effects(app_db):
    with _client() as client:
        headers = _admin(client)
        webhook = client.post("/create-webhook", json={"name": "Orders"}, headers=headers).json()["webhook"]
        _add_rules(webhook["id"])

        payload = {"order": {"number": "WO-1", "qty": 4, "type": "SENSOR"}}
        resp = client.post(f"/api/v1/webhooks/{webhook['id']}/test", json={"test_payload": payload}, headers=headers)
        assert resp.status_code == 200, resp.text
        body = resp.json()

        logs = client.get(f"/api/v1/webhooks/{webhook['id']}/logs", headers=headers)

    assert body["dry_run"] is True
    assert body["test_payload"] == payload
    names = [r["rule_name"] for r in body["rule_results"]]
    assert names == ["create order", "relay", "off", "mystery"]
    first = body["rule_results"][0]
    assert first["extracted_values"] == {"workOrderNumber": "WO-1", "quantity": 4}
    assert first["would_execute"] is True
    assert first["condition_result"]["passed"] is True
    assert body["rule_results"][1]["extracted_values"] == {"webhookUrl": "https://hooks.example.com/out"}
    assert body["rule_results"][2]["would_execute"] is False
    assert body["rule_results"][3]["known_action"] is False
    assert body["rule_results"][3]["would_execute"] is False
    assert body["summary"] == {"total_rules": 4, "would_execute": 2, "skipped": 2}

    assert logs.status_code == 200
    assert logs.headers["X-Total-Count"] == "1"
    entry = logs.json()["items"][0]
    assert entry["is_test"] is True
    assert entry["executed_rules"] == [
        {"name": "create order", "action": "create_work_order"},
        {"name": "relay", "action": "trigger_outgoing_webhook"},
    ]

    with SessionLocal() as db:
        registration = db.get(WebhookRegistration, webhook["id"])
        assert registration.trigger_count == 0
        assert registration.last_triggered_at is None
        assert db.execute(select(WebhookExecutionLog)).scalar_one().is_test is True


def test_dry_run_without_body_uses_empty_payload(app_db):
    with _client() as client:
        headers = _admin(client)
        webhook = client.post("/create-webhook", json={"name": "Orders"}, headers=headers).json()["webhook"]
        resp = client.post(f"/api/v1/webhooks/{webhook['id']}/test", headers=headers)
        missing = client.post("/api/v1/webhooks/does-not-exist/test", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["test_payload"] == {}
    assert resp.json()["summary"]["total_rules"] == 0
    assert missing.status_code == 404


def test_logs_are_paginated(app_db):
    with _client() as client:
        headers = _admin(client)
        body = client.post("/create-webhook", json={"name": "Scanner"}, headers=headers).json()
        key = body["webhook"]["endpoint_key"]
        for i in range(3):
            client.post(
                f"/webhook-receiver/{key}",
                content=json.dumps({"i": i}),
                headers={"X-Webhook-Secret": body["secret"]},
            )
        page = client.get(
            f"/api/v1/webhooks/{body['webhook']['id']}/logs",
            params={"page": 2, "page_size": 2},
            headers=headers,
        )
    assert page.status_code == 200
    assert page.headers["X-Total-Count"] == "3"
    assert page.json()["total"] == 3
    assert len(page.json()["items"]) == 1
    assert page.json()["items"][0]["request_headers"]["x-webhook-secret"] == "[redacted]"
