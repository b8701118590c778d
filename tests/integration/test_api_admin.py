"""Testes de integração das rotas administrativas de dead-letter."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from mtn_notifications.adapters.channels.mock import MockChannelTransport
from mtn_notifications.config.settings import Settings
from mtn_notifications.domain.enums import Channel, DeadLetterReason, FailureKind

INTERNAL_HEADERS = {"X-Internal-Token": "internal-test-token"}


@pytest.fixture()
def failing_email():
    return MockChannelTransport(Channel.EMAIL, fail_always=FailureKind.PERMANENT)


@pytest.fixture()
def admin_client(app_factory, failing_email) -> TestClient:
    app = app_factory(
        transports={
            Channel.EMAIL: failing_email,
            Channel.SMS: MockChannelTransport(Channel.SMS),
        }
    )
    return TestClient(app)


def _dead_letter_one(client: TestClient) -> str:
    """Submete um e-mail e executa a tentativa (falha permanente → dead-letter)."""
    response = client.post(
        "/notifications",
        json={
            "channel": "EMAIL",
            "recipient": "apoderado@mtn.cl",
            "template_name": "welcome",
            "idempotency_key": "welcome-ana",
        },
    )
    request_id = response.json()["request_id"]
    asyncio.run(client.app.state.pipeline.process_due())
    return request_id


class TestDeadLetterRoutes:
    def test_requires_token(self, admin_client: TestClient) -> None:
        assert admin_client.get("/admin/dead-letters").status_code == 401
        assert admin_client.post("/admin/dead-letters/x/reprocess").status_code == 401

    def test_wrong_token(self, admin_client: TestClient) -> None:
        response = admin_client.get("/admin/dead-letters", headers={"X-Internal-Token": "nope"})
        assert response.status_code == 401

    def test_list_dead_letters(self, admin_client: TestClient) -> None:
        request_id = _dead_letter_one(admin_client)

        response = admin_client.get("/admin/dead-letters", headers=INTERNAL_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        item = data["items"][0]
        assert item["request_id"] == request_id
        assert item["reason"] == "PERMANENT"
        assert item["final_attempt_number"] == 1
        assert admin_client.get(f"/notifications/{request_id}").json()["status"] == "DEAD_LETTERED"

    def test_reprocess_restarts_at_attempt_one(
        self, admin_client: TestClient, failing_email: MockChannelTransport
    ) -> None:
        request_id = _dead_letter_one(admin_client)
        failing_email.fail_always = None

        response = admin_client.post(
            f"/admin/dead-letters/{request_id}/reprocess", headers=INTERNAL_HEADERS
        )
        assert response.status_code == 202
        assert response.json()["attempt_number"] == 1

        asyncio.run(admin_client.app.state.pipeline.process_due())
        record = admin_client.get(f"/notifications/{request_id}").json()
        assert record["status"] == "SENT"
        assert len(record["previous_attempts"]) == 1
        listing = admin_client.get("/admin/dead-letters", headers=INTERNAL_HEADERS).json()
        assert listing["count"] == 0

    def test_reprocess_twice_not_found(self, admin_client: TestClient) -> None:
        request_id = _dead_letter_one(admin_client)
        url = f"/admin/dead-letters/{request_id}/reprocess"

        assert admin_client.post(url, headers=INTERNAL_HEADERS).status_code == 202
        assert admin_client.post(url, headers=INTERNAL_HEADERS).status_code == 404
        assert admin_client.app.state.pipeline.pending_count() == 1

    def test_reprocess_of_live_request_conflict(self, admin_client: TestClient) -> None:
        request_id = _dead_letter_one(admin_client)
        pipeline = admin_client.app.state.pipeline
        admin_client.post(f"/admin/dead-letters/{request_id}/reprocess", headers=INTERNAL_HEADERS)
        # Entrada regravada enquanto a request já está de volta na fila
        record = pipeline.status(request_id)
        pipeline.dead_letters.record(
            record.request,
            record.previous_attempts[-1],
            DeadLetterReason.PERMANENT,
            record.accepted_at,
        )

        response = admin_client.post(
            f"/admin/dead-letters/{request_id}/reprocess", headers=INTERNAL_HEADERS
        )

        assert response.status_code == 409
        assert response.json()["detail"] == "not_dead_lettered"
        assert pipeline.dead_letters.get(request_id) is not None
        assert pipeline.pending_count() == 1

    def test_reprocess_unknown(self, admin_client: TestClient) -> None:
        response = admin_client.post("/admin/dead-letters/nope/reprocess", headers=INTERNAL_HEADERS)
        assert response.status_code == 404


class TestAppFactory:
    def test_invalid_config_fails_fast(self, app_factory) -> None:
        with pytest.raises(ValueError, match="Configuração inválida"):
            app_factory(Settings(environment="test", retry_max_attempts=0))

    def test_http_mode_without_credentials_fails_fast(self, app_factory) -> None:
        with pytest.raises(ValueError):
            app_factory(Settings(environment="test", delivery_mode="http"))
