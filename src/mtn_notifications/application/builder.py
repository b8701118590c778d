"""Montagem do DeliveryPipeline a partir de Settings."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any

from mtn_notifications.adapters.channels.factory import create_channel_transports
from mtn_notifications.application.dispatcher import DeliveryDispatcher
from mtn_notifications.application.idempotency_guard import IdempotencyGuard
from mtn_notifications.application.pipeline import DeliveryPipeline
from mtn_notifications.application.rate_limiter import RateLimiter
from mtn_notifications.application.retry import BackoffPolicy
from mtn_notifications.application.templates.catalog import build_renderer
from mtn_notifications.domain.enums import Channel
from mtn_notifications.domain.models import utcnow
from mtn_notifications.domain.protocols.transport import ChannelTransport
from mtn_notifications.infra.dead_letter_factory import create_dead_letter_store
from mtn_notifications.infra.idempotency import create_idempotency_store
from mtn_notifications.infra.rate_limit import create_rate_limit_store
from mtn_notifications.observability.logging import get_logger
from mtn_notifications.observability.metrics import DeliveryMetrics

if TYPE_CHECKING:
    from mtn_notifications.config.settings import Settings

logger: logging.Logger = get_logger(__name__)


def create_redis_client(settings: Settings) -> Any | None:
    """Cliente Redis compartilhado quando algum backend usa Redis."""
    uses_redis = "redis" in {
        settings.idempotency_backend.lower(),
        settings.rate_limit_backend.lower(),
    }
    if not uses_redis or not settings.redis_url:
        return None
    import redis

    return redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=5.0,
        socket_connect_timeout=5.0,
    )


def build_backoff_policy(settings: Settings) -> BackoffPolicy:
    return BackoffPolicy(
        max_attempts=settings.retry_max_attempts,
        base_seconds=settings.retry_base_seconds,
        max_delay_seconds=settings.retry_max_delay_seconds,
        jitter=settings.retry_jitter,
    )


def build_pipeline(
    settings: Settings,
    *,
    redis_client: Any | None = None,
    firestore_client: Any | None = None,
    transports: Mapping[Channel, ChannelTransport] | None = None,
    metrics: DeliveryMetrics | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> DeliveryPipeline:
    """Cria stores, renderer, dispatcher e política conforme configuração."""
    redis_client = redis_client or create_redis_client(settings)

    guard = IdempotencyGuard(
        create_idempotency_store(settings, redis_client=redis_client),
        settings.idempotency_window_seconds,
    )
    rate_limiter = RateLimiter(
        create_rate_limit_store(settings, redis_client=redis_client),
        settings.rate_limit_window_seconds,
        settings.rate_limit_max_count,
    )
    pipeline = DeliveryPipeline(
        guard=guard,
        rate_limiter=rate_limiter,
        renderer=build_renderer(settings.templates_path),
        dispatcher=DeliveryDispatcher(transports or create_channel_transports(settings)),
        dead_letter_store=create_dead_letter_store(settings, firestore_client=firestore_client),
        policy=build_backoff_policy(settings),
        metrics=metrics,
        clock=clock,
        ledger_retention_seconds=settings.ledger_retention_seconds,
    )
    logger.info(
        "pipeline_built",
        extra={
            "delivery_mode": settings.delivery_mode,
            "max_attempts": settings.retry_max_attempts,
            "idempotency_window_seconds": settings.idempotency_window_seconds,
        },
    )
    return pipeline
