from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient

from mtn_notifications.adapters.channels.mock import MockChannelTransport
from mtn_notifications.api.app import create_app
from mtn_notifications.application.dispatcher import DeliveryDispatcher
from mtn_notifications.application.idempotency_guard import IdempotencyGuard
from mtn_notifications.application.pipeline import DeliveryPipeline
from mtn_notifications.application.rate_limiter import RateLimiter
from mtn_notifications.application.retry import BackoffPolicy
from mtn_notifications.application.templates.catalog import build_renderer
from mtn_notifications.config.settings import Settings, get_settings
from mtn_notifications.domain.enums import Channel
from mtn_notifications.domain.protocols.dead_letter import DeadLetterStore
from mtn_notifications.infra.dead_letter_memory import InMemoryDeadLetterStore
from mtn_notifications.infra.idempotency import InMemoryIdempotencyStore
from mtn_notifications.infra.rate_limit import InMemoryRateLimitStore
from mtn_notifications.observability.metrics import DeliveryMetrics

INTERNAL_TOKEN = "internal-test-token"


@pytest.fixture()
def now() -> datetime:
    return datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC)


@pytest.fixture()
def settings() -> Settings:
    return Settings(environment="test", internal_task_token=INTERNAL_TOKEN)


@pytest.fixture()
def pipeline_factory(now: datetime) -> Callable[..., DeliveryPipeline]:
    """Monta um pipeline em memória com transportes mock configuráveis."""

    def _build(
        email: MockChannelTransport | None = None,
        sms: MockChannelTransport | None = None,
        *,
        max_count: int = 10,
        max_attempts: int = 5,
        window_seconds: int = 300,
        dead_letter_store: DeadLetterStore | None = None,
        ledger_retention_seconds: int = 3600,
    ) -> DeliveryPipeline:
        transports = {
            Channel.EMAIL: email or MockChannelTransport(Channel.EMAIL),
            Channel.SMS: sms or MockChannelTransport(Channel.SMS),
        }
        return DeliveryPipeline(
            guard=IdempotencyGuard(InMemoryIdempotencyStore(), window_seconds),
            rate_limiter=RateLimiter(InMemoryRateLimitStore(), 60, max_count),
            renderer=build_renderer(),
            dispatcher=DeliveryDispatcher(transports),
            dead_letter_store=dead_letter_store or InMemoryDeadLetterStore(),
            policy=BackoffPolicy(max_attempts=max_attempts, base_seconds=1.0),
            metrics=DeliveryMetrics(),
            clock=lambda: now,
            ledger_retention_seconds=ledger_retention_seconds,
        )

    return _build


@pytest.fixture()
def app_factory(monkeypatch: pytest.MonkeyPatch):
    """Cria apps com env de teste; restaura handlers do root logger no fim."""
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("INTERNAL_TASK_TOKEN", INTERNAL_TOKEN)
    monkeypatch.setenv("WORKER_IDLE_POLL_SECONDS", "0.05")
    get_settings.cache_clear()
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield create_app
    root.handlers, root.level = saved_handlers, saved_level
    get_settings.cache_clear()


@pytest.fixture()
def app(app_factory):
    return app_factory()


@pytest.fixture()
def client(app) -> TestClient:
    """Cliente sem lifespan: workers parados, fila inspecionável."""
    return TestClient(app)


@pytest.fixture()
def live_client(app):
    """Cliente com lifespan: workers e consumidor de eventos rodando."""
    with TestClient(app) as test_client:
        yield test_client
