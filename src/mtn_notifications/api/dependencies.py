"""Dependências injetadas nas rotas."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from mtn_notifications.application.events import EventConsumer
from mtn_notifications.application.pipeline import DeliveryPipeline
from mtn_notifications.config.settings import Settings


def get_settings(request: Request) -> Settings:
    """Retorna settings da aplicação."""
    return request.app.state.settings


def get_pipeline(request: Request) -> DeliveryPipeline:
    """Retorna o pipeline de entrega ativo."""
    return request.app.state.pipeline


def get_event_consumer(request: Request) -> EventConsumer:
    return request.app.state.event_consumer


def require_internal_token(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    """Valida token interno (publicação de eventos e rotas administrativas)."""
    expected = settings.internal_task_token
    provided = request.headers.get(settings.internal_token_header)

    if expected and provided == expected:
        return

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="unauthorized_internal_call",
    )
