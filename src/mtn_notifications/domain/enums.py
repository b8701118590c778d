"""Enums de domínio do pipeline de entrega de notificações."""

from __future__ import annotations

from enum import StrEnum


class Channel(StrEnum):
    """Canais de entrega suportados."""

    EMAIL = "EMAIL"
    SMS = "SMS"


class AttemptOutcome(StrEnum):
    """Resultado de uma tentativa de entrega.

    PENDING é o único estado não terminal de uma tentativa.
    """

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    THROTTLED = "THROTTLED"


class DeliveryStatus(StrEnum):
    """Estado agregado de uma DeliveryRequest."""

    PENDING = "PENDING"
    IN_FLIGHT = "IN_FLIGHT"
    SENT = "SENT"
    DEAD_LETTERED = "DEAD_LETTERED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            DeliveryStatus.SENT,
            DeliveryStatus.DEAD_LETTERED,
            DeliveryStatus.CANCELLED,
        )


class Admission(StrEnum):
    """Resultado do Idempotency Guard."""

    ADMITTED = "ADMITTED"
    DUPLICATE = "DUPLICATE"


class FailureKind(StrEnum):
    """Classificação de erro de transporte."""

    TRANSIENT = "TRANSIENT"
    PERMANENT = "PERMANENT"


class DeadLetterReason(StrEnum):
    """Motivo pelo qual a entrega foi movida para o dead-letter."""

    PERMANENT = "PERMANENT"
    RETRIES_EXHAUSTED = "RETRIES_EXHAUSTED"


class EventType(StrEnum):
    """Eventos de domínio consumidos do broker (versão v1)."""

    EMAIL_REQUESTED = "EmailRequested.v1"
    SMS_REQUESTED = "SmsRequested.v1"

    @property
    def channel(self) -> Channel:
        if self is EventType.EMAIL_REQUESTED:
            return Channel.EMAIL
        return Channel.SMS
