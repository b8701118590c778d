"""Rotas administrativas de dead-letter (token interno obrigatório)."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from mtn_notifications.api.dependencies import get_pipeline, require_internal_token
from mtn_notifications.application.pipeline import DeliveryPipeline
from mtn_notifications.domain.errors import (
    DeadLetterStoreError,
    NotReprocessable,
    RenderError,
    RequestNotFound,
)
from mtn_notifications.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", dependencies=[Depends(require_internal_token)])


@router.get("/dead-letters")
def list_dead_letters(
    limit: int = Query(100, ge=1, le=1000),
    pipeline: DeliveryPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    try:
        entries = pipeline.dead_letters.list(limit)
    except DeadLetterStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="dead_letter_unavailable"
        ) from exc
    return {"count": len(entries), "items": [entry.to_dict() for entry in entries]}


@router.post("/dead-letters/{request_id}/reprocess", status_code=status.HTTP_202_ACCEPTED)
def reprocess_dead_letter(
    request_id: str,
    pipeline: DeliveryPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Reagenda a request como tentativa 1, ignorando a janela de idempotência."""
    try:
        attempt = pipeline.reprocess(request_id)
    except RequestNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found") from exc
    except NotReprocessable as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="not_dead_lettered"
        ) from exc
    except RenderError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": "render_failed", "reason": str(exc)},
        ) from exc
    except DeadLetterStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="dead_letter_unavailable"
        ) from exc

    logger.info("operator_reprocess", extra={"request_id": request_id})
    return {
        "ok": True,
        "request_id": request_id,
        "attempt_number": attempt.attempt_number,
        "scheduled_at": attempt.scheduled_at.isoformat(),
    }
