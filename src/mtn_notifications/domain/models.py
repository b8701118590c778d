"""Modelos de domínio do pipeline de entrega.

DeliveryRequest é imutável depois de criada; DeliveryAttempt é append-only
por request (uma única tentativa PENDING por vez).
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any

from mtn_notifications.domain.enums import (
    AttemptOutcome,
    Channel,
    DeadLetterReason,
    FailureKind,
)


def utcnow() -> datetime:
    """Relógio padrão (UTC, timezone-aware)."""
    return datetime.now(tz=UTC)


@dataclass(slots=True, frozen=True)
class DeliveryRequest:
    """Pedido de entrega de uma notificação."""

    channel: Channel
    recipient: str
    template_name: str
    variables: Mapping[str, Any] = field(default_factory=dict)
    idempotency_key: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    subject: str | None = None
    correlation_id: str | None = None

    def __post_init__(self) -> None:
        # Congela as variáveis: a request não muda depois de criada.
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))
        if not self.idempotency_key:
            object.__setattr__(self, "idempotency_key", self.id)

    def to_dict(self) -> dict[str, Any]:
        """Serializa para persistência (dead-letter) e respostas da API."""
        return {
            "id": self.id,
            "channel": self.channel.value,
            "recipient": self.recipient,
            "template_name": self.template_name,
            "variables": dict(self.variables),
            "idempotency_key": self.idempotency_key,
            "created_at": self.created_at.isoformat(),
            "subject": self.subject,
            "correlation_id": self.correlation_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DeliveryRequest:
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        return cls(
            id=data["id"],
            channel=Channel(data["channel"]),
            recipient=data["recipient"],
            template_name=data["template_name"],
            variables=data.get("variables") or {},
            idempotency_key=data.get("idempotency_key") or data["id"],
            created_at=created_at or utcnow(),
            subject=data.get("subject"),
            correlation_id=data.get("correlation_id"),
        )


@dataclass(slots=True, frozen=True)
class DeliveryAttempt:
    """Tentativa de entrega (attempt_number começa em 1)."""

    request_id: str
    attempt_number: int
    scheduled_at: datetime
    executed_at: datetime | None = None
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    error_detail: str | None = None
    failure_kind: FailureKind | None = None

    @property
    def is_pending(self) -> bool:
        return self.outcome is AttemptOutcome.PENDING

    def resolve(
        self,
        outcome: AttemptOutcome,
        executed_at: datetime,
        error_detail: str | None = None,
        failure_kind: FailureKind | None = None,
    ) -> DeliveryAttempt:
        """Retorna a tentativa com resultado final preenchido."""
        if not self.is_pending:
            raise ValueError(
                f"Tentativa {self.attempt_number} de {self.request_id} já resolvida"
            )
        return replace(
            self,
            outcome=outcome,
            executed_at=executed_at,
            error_detail=error_detail,
            failure_kind=failure_kind,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "attempt_number": self.attempt_number,
            "scheduled_at": self.scheduled_at.isoformat(),
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "outcome": self.outcome.value,
            "error_detail": self.error_detail,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
        }


@dataclass(slots=True, frozen=True)
class IdempotencyRecord:
    """Chave vista pelo Idempotency Guard."""

    idempotency_key: str
    first_seen_at: datetime


@dataclass(slots=True)
class RateLimitBucket:
    """Contador de janela fixa por destinatário."""

    recipient: str
    window_start: datetime
    count: int = 0


@dataclass(slots=True, frozen=True)
class RenderedPayload:
    """Payload pronto para o canal (subject só se aplica a EMAIL)."""

    template_name: str
    channel: Channel
    body: str
    subject: str | None = None


@dataclass(slots=True, frozen=True)
class TransportResult:
    """Resultado bruto retornado por um channel adapter."""

    success: bool
    provider_message_id: str | None = None
    error: str | None = None
    failure_kind: FailureKind | None = None


@dataclass(slots=True, frozen=True)
class DeadLetterEntry:
    """Entrega terminalmente falha; só volta via reprocessamento manual."""

    request_id: str
    final_attempt_number: int
    last_error: str
    moved_at: datetime
    reason: DeadLetterReason
    request: DeliveryRequest

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "final_attempt_number": self.final_attempt_number,
            "last_error": self.last_error,
            "moved_at": self.moved_at.isoformat(),
            "reason": self.reason.value,
            "request": self.request.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DeadLetterEntry:
        moved_at = data["moved_at"]
        if isinstance(moved_at, str):
            moved_at = datetime.fromisoformat(moved_at)
        return cls(
            request_id=data["request_id"],
            final_attempt_number=int(data["final_attempt_number"]),
            last_error=data.get("last_error") or "",
            moved_at=moved_at,
            reason=DeadLetterReason(data["reason"]),
            request=DeliveryRequest.from_dict(data["request"]),
        )
