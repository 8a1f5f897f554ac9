"""Tests for the webhook management REST API."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from agilepm.api import create_app
from agilepm.api.auth import set_settings
from agilepm.api.router import get_storage
from agilepm.config import Settings
from agilepm.models import DeliveryAttemptRecord, ProjectRef
from agilepm.storage import WebhookStorage
from agilepm.webhooks import get_dispatcher

ADMIN = {"X-Company-Id": "C", "X-Company-Role": "ADMIN", "X-User-Id": "usr_admin"}
MEMBER = {"X-Company-Id": "C", "X-Company-Role": "MEMBER"}
OTHER_ADMIN = {"X-Company-Id": "D", "X-Company-Role": "OWNER"}


@pytest.fixture
def client() -> Iterator[TestClient]:
    """App with an in-memory store, header-based identity and a live lifespan."""
    settings = Settings(
        env="test",
        qdrant_url=":memory:",
        collection_prefix="api",
        auth_enabled=False,
    )
    with TestClient(create_app(settings)) as test_client:
        yield test_client
    set_settings(None)


@pytest.fixture
def api_storage(client: TestClient) -> WebhookStorage:
    storage: WebhookStorage = client.portal.call(get_storage)
    client.portal.call(storage.store_project, ProjectRef(project_id="P1", company_id="C"))
    client.portal.call(storage.store_project, ProjectRef(project_id="PD", company_id="D"))
    return storage


def create_webhook(client: TestClient, **overrides: object) -> dict:
    body: dict[str, object] = {
        "url": "https://hooks.example.com/agilepm",
        "events": ["task.created", "task.updated"],
        "secret": "topsecret",
    }
    body.update(overrides)
    response = client.post("/api/v1/webhooks", json=body, headers=ADMIN)
    assert response.status_code == 201, response.text
    return response.json()


class TestLifespan:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "version": "0.1.0",
            "storage_connected": True,
        }

    def test_dispatcher_installed(self, client: TestClient) -> None:
        assert get_dispatcher() is not None


class TestCreateWebhook:
    """Tests for POST /webhooks."""

    def test_create(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client, project_id="P1", description="CI")

        assert webhook["id"].startswith("whk_")
        assert webhook["company_id"] == "C"
        assert webhook["project_id"] == "P1"
        assert webhook["url"] == "https://hooks.example.com/agilepm"
        assert webhook["events"] == ["task.created", "task.updated"]
        assert webhook["active"] is True
        assert webhook["has_secret"] is True
        assert "secret" not in webhook

    def test_camel_case_project_id(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client, projectId="P1")
        assert webhook["project_id"] == "P1"

    def test_unsigned(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client, secret=None)
        assert webhook["has_secret"] is False

    def test_project_of_other_company(
        self, client: TestClient, api_storage: WebhookStorage
    ) -> None:
        response = client.post(
            "/api/v1/webhooks",
            json={"url": "https://x.example.com/", "events": ["task.created"], "project_id": "PD"},
            headers=ADMIN,
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_unknown_project(self, client: TestClient, api_storage: WebhookStorage) -> None:
        response = client.post(
            "/api/v1/webhooks",
            json={"url": "https://x.example.com/", "events": ["task.created"], "project_id": "P?"},
            headers=ADMIN,
        )
        assert response.status_code == 404

    @pytest.mark.parametrize(
        "body",
        [
            {"url": "https://x.example.com/", "events": []},
            {"url": "https://x.example.com/", "events": ["task.exploded"]},
            {"url": "/relative", "events": ["task.created"]},
            {"events": ["task.created"]},
            {"url": "https://x.example.com/", "events": ["task.created"], "extra": 1},
        ],
    )
    def test_invalid_body(self, client: TestClient, body: dict) -> None:
        response = client.post("/api/v1/webhooks", json=body, headers=ADMIN)
        assert response.status_code == 400

    def test_invalid_body_error_shape(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/webhooks",
            json={"url": "https://x.example.com/", "events": []},
            headers=ADMIN,
        )
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["field"] == "events"

    def test_member_forbidden(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/webhooks",
            json={"url": "https://x.example.com/", "events": ["task.created"]},
            headers=MEMBER,
        )
        assert response.status_code == 403

    def test_no_company(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/webhooks",
            json={"url": "https://x.example.com/", "events": ["task.created"]},
        )
        assert response.status_code == 400


class TestReadWebhooks:
    """Tests for listing and fetching."""

    def test_list_is_company_scoped(self, client: TestClient, api_storage: WebhookStorage) -> None:
        first = create_webhook(client)
        second = create_webhook(client, project_id="P1")

        listed = client.get("/api/v1/webhooks", headers=MEMBER).json()
        assert {w["id"] for w in listed} == {first["id"], second["id"]}
        assert all("secret" not in w for w in listed)

        assert client.get("/api/v1/webhooks", headers=OTHER_ADMIN).json() == []

    def test_list_by_project(self, client: TestClient, api_storage: WebhookStorage) -> None:
        create_webhook(client)
        scoped = create_webhook(client, project_id="P1")

        listed = client.get("/api/v1/webhooks", params={"project_id": "P1"}, headers=ADMIN).json()

        assert [w["id"] for w in listed] == [scoped["id"]]

    def test_list_by_foreign_project(self, client: TestClient, api_storage: WebhookStorage) -> None:
        create_webhook(client, project_id="P1")

        response = client.get("/api/v1/webhooks", params={"project_id": "PD"}, headers=ADMIN)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_list_by_unknown_project(self, client: TestClient, api_storage: WebhookStorage) -> None:
        response = client.get("/api/v1/webhooks", params={"project_id": "P?"}, headers=MEMBER)
        assert response.status_code == 404

    def test_get(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client)

        response = client.get(f"/api/v1/webhooks/{webhook['id']}", headers=MEMBER)

        assert response.status_code == 200
        assert response.json() == webhook

    def test_get_other_company(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client)
        response = client.get(f"/api/v1/webhooks/{webhook['id']}", headers=OTHER_ADMIN)
        assert response.status_code == 404


class TestUpdateWebhook:
    """Tests for PATCH /webhooks/{id}."""

    def test_partial_update(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client, project_id="P1")

        response = client.patch(
            f"/api/v1/webhooks/{webhook['id']}",
            json={"active": False, "events": ["sprint.completed"]},
            headers=ADMIN,
        )

        assert response.status_code == 200
        updated = response.json()
        assert updated["active"] is False
        assert updated["events"] == ["sprint.completed"]
        assert updated["project_id"] == "P1"
        assert updated["url"] == webhook["url"]
        assert updated["has_secret"] is True

    def test_clear_project_scope(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client, project_id="P1")

        response = client.patch(
            f"/api/v1/webhooks/{webhook['id']}", json={"project_id": None}, headers=ADMIN
        )

        assert response.json()["project_id"] is None

    def test_move_to_foreign_project(
        self, client: TestClient, api_storage: WebhookStorage
    ) -> None:
        webhook = create_webhook(client)
        response = client.patch(
            f"/api/v1/webhooks/{webhook['id']}", json={"project_id": "PD"}, headers=ADMIN
        )
        assert response.status_code == 404

    def test_empty_events_rejected(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client)
        response = client.patch(
            f"/api/v1/webhooks/{webhook['id']}", json={"events": []}, headers=ADMIN
        )
        assert response.status_code == 400

    def test_unknown_webhook(self, client: TestClient, api_storage: WebhookStorage) -> None:
        response = client.patch("/api/v1/webhooks/whk_nope", json={"active": True}, headers=ADMIN)
        assert response.status_code == 404

    def test_member_forbidden(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client)
        response = client.patch(
            f"/api/v1/webhooks/{webhook['id']}", json={"active": False}, headers=MEMBER
        )
        assert response.status_code == 403


class TestDeleteWebhook:
    def test_delete(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client)

        response = client.delete(f"/api/v1/webhooks/{webhook['id']}", headers=ADMIN)

        assert response.status_code == 200
        assert response.json() == {"message": "Webhook deleted successfully"}
        assert client.get(f"/api/v1/webhooks/{webhook['id']}", headers=ADMIN).status_code == 404

    def test_delete_other_company(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client)
        response = client.delete(f"/api/v1/webhooks/{webhook['id']}", headers=OTHER_ADMIN)
        assert response.status_code == 404


class TestDeliveryLogs:
    """Tests for GET /webhooks/{id}/logs."""

    def _seed(self, client: TestClient, storage: WebhookStorage, webhook_id: str) -> list[str]:
        start = datetime(2024, 1, 1, tzinfo=UTC)
        ids = []
        for minute, status in enumerate(["success", "failed", "pending"]):
            record = DeliveryAttemptRecord(
                subscription_id=webhook_id,
                company_id="C",
                event="task.created",
                status=status,
                created_at=start + timedelta(minutes=minute),
            )
            client.portal.call(storage.log_delivery, record)
            ids.append(record.id)
        return ids

    def test_paginated_newest_first(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client)
        ids = self._seed(client, api_storage, webhook["id"])

        response = client.get(
            f"/api/v1/webhooks/{webhook['id']}/logs",
            params={"limit": 2, "offset": 0},
            headers=ADMIN,
        )

        assert response.status_code == 200
        page = response.json()
        assert [r["id"] for r in page["data"]] == [ids[2], ids[1]]
        assert page["data"][0]["status"] == "pending"
        assert page["pagination"] == {"total": 3, "limit": 2, "offset": 0}

    def test_default_page(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client)
        self._seed(client, api_storage, webhook["id"])

        page = client.get(f"/api/v1/webhooks/{webhook['id']}/logs", headers=ADMIN).json()

        assert page["pagination"] == {"total": 3, "limit": 50, "offset": 0}
        assert len(page["data"]) == 3

    def test_member_forbidden(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client)
        response = client.get(f"/api/v1/webhooks/{webhook['id']}/logs", headers=MEMBER)
        assert response.status_code == 403

    def test_logs_gone_after_delete(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client)
        self._seed(client, api_storage, webhook["id"])

        client.delete(f"/api/v1/webhooks/{webhook['id']}", headers=ADMIN)

        assert client.portal.call(api_storage.count_delivery_logs, webhook["id"]) == 0
        response = client.get(f"/api/v1/webhooks/{webhook['id']}/logs", headers=ADMIN)
        assert response.status_code == 404

    def test_limit_bounds(self, client: TestClient, api_storage: WebhookStorage) -> None:
        webhook = create_webhook(client)
        response = client.get(
            f"/api/v1/webhooks/{webhook['id']}/logs", params={"limit": 0}, headers=ADMIN
        )
        assert response.status_code == 400
