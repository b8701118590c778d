"""Modelos de entrada da API (pydantic)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from mtn_notifications.domain.enums import Channel


class NotificationIn(BaseModel):
    """Pedido direto de notificação."""

    channel: Channel
    recipient: str = Field(min_length=1, max_length=254)
    template_name: str = Field(min_length=1, max_length=100)
    variables: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = Field(default=None, max_length=200)
    subject: str | None = None


class EventEnvelopeIn(BaseModel):
    """Envelope de evento de domínio (EmailRequested.v1 / SmsRequested.v1)."""

    type: str  # noqa: A003
    id: str  # noqa: A003
    data: dict[str, Any]
