"""Fábrica da aplicação FastAPI."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI

from mtn_notifications.api import admin_routes, routes
from mtn_notifications.application.builder import build_pipeline
from mtn_notifications.application.events import EventConsumer
from mtn_notifications.application.workers import DeliveryWorkerPool
from mtn_notifications.config.settings import Settings, get_settings
from mtn_notifications.domain.enums import Channel
from mtn_notifications.domain.models import utcnow
from mtn_notifications.domain.protocols.transport import ChannelTransport
from mtn_notifications.infra.message_queue import InMemoryMessageQueue
from mtn_notifications.observability.logging import configure_logging, get_logger
from mtn_notifications.observability.middleware import CorrelationIdMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    workers: DeliveryWorkerPool = app.state.worker_pool
    consumer: EventConsumer = app.state.event_consumer
    await workers.start()
    await consumer.start()
    try:
        yield
    finally:
        await consumer.stop()
        await workers.stop()
        await app.state.pipeline.close()


def create_app(
    settings: Settings | None = None,
    *,
    redis_client: Any | None = None,
    firestore_client: Any | None = None,
    transports: Mapping[Channel, ChannelTransport] | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """Cria a aplicação FastAPI.

    Raises:
        ValueError: Se a configuração for inválida (fail-fast)
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.service_name, settings.log_format)

    validation_errors = settings.validate_all()
    if validation_errors:
        error_msg = "; ".join(validation_errors)
        raise ValueError(f"Configuração inválida: {error_msg}")

    app = FastAPI(title=settings.service_name, version=settings.version, lifespan=_lifespan)
    app.add_middleware(CorrelationIdMiddleware, header_name=settings.correlation_id_header)
    app.include_router(routes.router)
    app.include_router(admin_routes.router)

    pipeline = build_pipeline(
        settings,
        redis_client=redis_client,
        firestore_client=firestore_client,
        transports=transports,
        clock=clock,
    )
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.worker_pool = DeliveryWorkerPool(
        pipeline,
        concurrency=settings.worker_concurrency,
        idle_poll_seconds=settings.worker_idle_poll_seconds,
        sweep_interval_seconds=settings.housekeeping_interval_seconds,
    )
    app.state.event_consumer = EventConsumer(
        InMemoryMessageQueue(),
        pipeline,
        batch_size=settings.event_consumer_batch_size,
        idle_poll_seconds=settings.worker_idle_poll_seconds,
    )
    return app
