"""Rotas HTTP de notificações (submissão, status, cancelamento, eventos)."""

from __future__ import annotations

import math
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from mtn_notifications.api.dependencies import (
    get_event_consumer,
    get_pipeline,
    get_settings,
    require_internal_token,
)
from mtn_notifications.api.schemas import EventEnvelopeIn, NotificationIn
from mtn_notifications.application.events import EventConsumer, InvalidEvent
from mtn_notifications.application.pipeline import DeliveryPipeline
from mtn_notifications.config.settings import Settings
from mtn_notifications.domain.enums import Channel, DeliveryStatus
from mtn_notifications.domain.errors import (
    DuplicateRequest,
    IdempotencyStoreError,
    MissingVariable,
    NotCancellable,
    RateLimitStoreError,
    RequestNotFound,
    TemplateNotFound,
    Throttled,
)
from mtn_notifications.domain.models import DeliveryRequest
from mtn_notifications.infra.message_queue import MessageQueueError
from mtn_notifications.observability.logging import get_logger
from mtn_notifications.observability.metrics import PROMETHEUS_CONTENT_TYPE
from mtn_notifications.observability.middleware import get_correlation_id

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health")
def health(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    """Healthcheck simples."""
    return {"status": "ok", "service": settings.service_name, "version": settings.version}


@router.get("/metrics")
def metrics(pipeline: DeliveryPipeline = Depends(get_pipeline)) -> Response:
    """Contadores por estágio no formato texto do Prometheus."""
    return Response(content=pipeline.metrics.render(), media_type=PROMETHEUS_CONTENT_TYPE)


@router.post("/notifications", status_code=status.HTTP_202_ACCEPTED)
async def submit_notification(
    body: NotificationIn,
    pipeline: DeliveryPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Aceita pedido de notificação e agenda a primeira tentativa."""
    correlation_id = get_correlation_id() or None
    request = DeliveryRequest(
        channel=body.channel,
        recipient=body.recipient,
        template_name=body.template_name,
        variables=body.variables,
        idempotency_key=body.idempotency_key or "",
        subject=body.subject,
        correlation_id=correlation_id,
    )

    try:
        attempt = pipeline.submit(request)
    except DuplicateRequest as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "duplicate_request", "idempotency_key": exc.idempotency_key},
        ) from exc
    except Throttled as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"error": "throttled", "retry_after_seconds": exc.retry_after_seconds},
            headers={"Retry-After": str(max(math.ceil(exc.retry_after_seconds), 1))},
        ) from exc
    except TemplateNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "template_not_found", "template_name": exc.template_name},
        ) from exc
    except MissingVariable as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": "missing_variable", "variable": exc.variable},
        ) from exc
    except (IdempotencyStoreError, RateLimitStoreError) as exc:
        logger.error("submission_store_unavailable", extra={"error_type": type(exc).__name__})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "store_unavailable", "correlation_id": correlation_id},
        ) from exc

    return {
        "ok": True,
        "status": "accepted",
        "request_id": request.id,
        "idempotency_key": request.idempotency_key,
        "attempt_number": attempt.attempt_number,
        "scheduled_at": attempt.scheduled_at.isoformat(),
        "correlation_id": correlation_id,
    }


@router.get("/notifications")
def list_notifications(
    status_filter: DeliveryStatus | None = Query(None, alias="status"),
    channel: Channel | None = None,
    template_name: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    pipeline: DeliveryPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Histórico de entregas com filtros e paginação (mais recentes primeiro)."""
    total, records = pipeline.list_records(
        status=status_filter,
        channel=channel,
        template_name=template_name,
        limit=limit,
        offset=offset,
    )
    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "items": [record.to_dict() for record in records],
    }


@router.get("/templates")
def list_templates(pipeline: DeliveryPipeline = Depends(get_pipeline)) -> dict[str, Any]:
    """Catálogo de templates registrados."""
    templates = pipeline.renderer.describe()
    return {"count": len(templates), "items": templates}


@router.get("/notifications/{request_id}")
def notification_status(
    request_id: str,
    pipeline: DeliveryPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Estado agregado e histórico de tentativas."""
    try:
        record = pipeline.status(request_id)
    except RequestNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found") from exc
    return record.to_dict()


@router.delete("/notifications/{request_id}")
def cancel_notification(
    request_id: str,
    pipeline: DeliveryPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Cancela request PENDING antes da próxima tentativa."""
    try:
        record = pipeline.cancel(request_id)
    except RequestNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found") from exc
    except NotCancellable as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="not_cancellable") from exc
    return {"ok": True, "request_id": request_id, "status": record.status.value}


@router.post(
    "/internal/events",
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_internal_token)],
)
async def publish_event(
    envelope: EventEnvelopeIn,
    consumer: EventConsumer = Depends(get_event_consumer),
) -> dict[str, Any]:
    """Publica evento EmailRequested.v1 / SmsRequested.v1 na fila interna."""
    try:
        task_id = await consumer.publish(envelope.model_dump())
    except InvalidEvent as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_event", "reason": str(exc)},
        ) from exc
    except MessageQueueError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="enqueue_failed"
        ) from exc
    return {"ok": True, "status": "enqueued", "task_id": task_id}
