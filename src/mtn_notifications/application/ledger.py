"""Histórico de tentativas e estado agregado por request.

Invariantes garantidas aqui:
- no máximo uma tentativa não resolvida por request
- attempt_number cresce de 1 em 1, sem lacunas
- SENT, DEAD_LETTERED e CANCELLED são terminais (só reprocessamento reabre)

Registros terminais ficam disponíveis para consulta até ``evict_finished``
removê-los (retenção configurável, ver DeliveryPipeline.sweep).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mtn_notifications.domain.enums import AttemptOutcome, Channel, DeliveryStatus, FailureKind
from mtn_notifications.domain.errors import NotCancellable, NotReprocessable, RequestNotFound
from mtn_notifications.domain.models import DeliveryAttempt, DeliveryRequest, RenderedPayload


@dataclass(slots=True)
class DeliveryRecord:
    request: DeliveryRequest
    payload: RenderedPayload
    accepted_at: datetime
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: list[DeliveryAttempt] = field(default_factory=list)
    previous_attempts: list[DeliveryAttempt] = field(default_factory=list)
    provider_message_id: str | None = None
    finished_at: datetime | None = None

    @property
    def last_attempt(self) -> DeliveryAttempt | None:
        return self.attempts[-1] if self.attempts else None

    def to_dict(self) -> dict[str, Any]:
        last = self.last_attempt
        return {
            "request": self.request.to_dict(),
            "status": self.status.value,
            "accepted_at": self.accepted_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "attempts": [a.to_dict() for a in self.attempts],
            "previous_attempts": [a.to_dict() for a in self.previous_attempts],
            "provider_message_id": self.provider_message_id,
            "last_error": last.error_detail if last else None,
        }


class DeliveryLedger:
    """Estado em memória das requests aceitas pelo pipeline."""

    def __init__(self) -> None:
        self._records: dict[str, DeliveryRecord] = {}
        self._lock = threading.Lock()

    def _get(self, request_id: str) -> DeliveryRecord:
        record = self._records.get(request_id)
        if record is None:
            raise RequestNotFound(request_id)
        return record

    def get(self, request_id: str) -> DeliveryRecord:
        with self._lock:
            return self._get(request_id)

    def _register(
        self, request: DeliveryRequest, payload: RenderedPayload, scheduled_at: datetime
    ) -> DeliveryAttempt:
        if request.id in self._records:
            raise ValueError(f"Request {request.id} já registrada")
        attempt = DeliveryAttempt(request_id=request.id, attempt_number=1, scheduled_at=scheduled_at)
        self._records[request.id] = DeliveryRecord(
            request=request, payload=payload, accepted_at=scheduled_at, attempts=[attempt]
        )
        return attempt

    def _restart(
        self, request_id: str, payload: RenderedPayload, scheduled_at: datetime
    ) -> DeliveryAttempt:
        record = self._get(request_id)
        if record.status is not DeliveryStatus.DEAD_LETTERED:
            raise NotReprocessable(
                f"Request {request_id} não está em dead-letter (estado {record.status.value})"
            )
        attempt = DeliveryAttempt(request_id=request_id, attempt_number=1, scheduled_at=scheduled_at)
        record.previous_attempts.extend(record.attempts)
        record.attempts = [attempt]
        record.payload = payload
        record.status = DeliveryStatus.PENDING
        record.finished_at = None
        return attempt

    def register(
        self,
        request: DeliveryRequest,
        payload: RenderedPayload,
        scheduled_at: datetime,
    ) -> DeliveryAttempt:
        """Aceita a request com a tentativa 1 PENDING."""
        with self._lock:
            return self._register(request, payload, scheduled_at)

    def restart(
        self, request_id: str, payload: RenderedPayload, scheduled_at: datetime
    ) -> DeliveryAttempt:
        """Nova sequência a partir da tentativa 1 (reprocessamento de dead-letter).

        Raises:
            RequestNotFound, NotReprocessable
        """
        with self._lock:
            return self._restart(request_id, payload, scheduled_at)

    def adopt(
        self,
        request: DeliveryRequest,
        payload: RenderedPayload,
        scheduled_at: datetime,
    ) -> DeliveryAttempt:
        """Reabre a request; registra do zero se o registro já não existe aqui."""
        with self._lock:
            if request.id in self._records:
                return self._restart(request.id, payload, scheduled_at)
            return self._register(request, payload, scheduled_at)

    def begin(self, request_id: str, attempt_number: int) -> DeliveryAttempt | None:
        """PENDING → IN_FLIGHT. Retorna None se a tentativa não deve rodar."""
        with self._lock:
            record = self._records.get(request_id)
            if record is None or record.status is not DeliveryStatus.PENDING:
                return None
            attempt = record.last_attempt
            if attempt is None or not attempt.is_pending or attempt.attempt_number != attempt_number:
                return None
            record.status = DeliveryStatus.IN_FLIGHT
            return attempt

    def resolve(
        self,
        request_id: str,
        outcome: AttemptOutcome,
        executed_at: datetime,
        *,
        error_detail: str | None = None,
        failure_kind: FailureKind | None = None,
        provider_message_id: str | None = None,
    ) -> DeliveryAttempt:
        with self._lock:
            record = self._get(request_id)
            resolved = record.attempts[-1].resolve(outcome, executed_at, error_detail, failure_kind)
            record.attempts[-1] = resolved
            if outcome is AttemptOutcome.SENT:
                record.status = DeliveryStatus.SENT
                record.provider_message_id = provider_message_id
                record.finished_at = executed_at
            return resolved

    def next_attempt(self, request_id: str, scheduled_at: datetime) -> DeliveryAttempt:
        """Anexa a tentativa k+1 depois que a tentativa k foi resolvida."""
        with self._lock:
            record = self._get(request_id)
            last = record.attempts[-1]
            if last.is_pending:
                raise ValueError(f"Tentativa {last.attempt_number} de {request_id} não resolvida")
            if record.status.is_terminal:
                raise ValueError(f"Request {request_id} já está em estado terminal")
            attempt = DeliveryAttempt(
                request_id=request_id,
                attempt_number=last.attempt_number + 1,
                scheduled_at=scheduled_at,
            )
            record.attempts.append(attempt)
            record.status = DeliveryStatus.PENDING
            return attempt

    def mark_dead_lettered(self, request_id: str, moved_at: datetime) -> None:
        with self._lock:
            record = self._get(request_id)
            record.status = DeliveryStatus.DEAD_LETTERED
            record.finished_at = moved_at

    def cancel(self, request_id: str, now: datetime) -> DeliveryRecord:
        """Só requests PENDING, antes da próxima tentativa começar."""
        with self._lock:
            record = self._get(request_id)
            if record.status is not DeliveryStatus.PENDING:
                raise NotCancellable(
                    f"Request {request_id} não pode ser cancelada no estado {record.status.value}"
                )
            # A tentativa agendada nunca começou: sai do histórico
            if record.attempts and record.attempts[-1].is_pending:
                record.attempts.pop()
            record.status = DeliveryStatus.CANCELLED
            record.finished_at = now
            return record

    def query(
        self,
        *,
        status: DeliveryStatus | None = None,
        channel: Channel | None = None,
        template_name: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[int, list[DeliveryRecord]]:
        """Filtra registros, mais recentes primeiro.

        Returns:
            (total que casa com os filtros, página pedida)
        """
        with self._lock:
            matching = [
                record
                for record in self._records.values()
                if (status is None or record.status is status)
                and (channel is None or record.request.channel is channel)
                and (template_name is None or record.request.template_name == template_name)
            ]
        matching.sort(key=lambda r: r.accepted_at, reverse=True)
        return len(matching), matching[offset : offset + limit]

    def evict_finished(self, finished_before: datetime) -> int:
        """Remove registros terminais concluídos antes do corte."""
        with self._lock:
            stale = [
                request_id
                for request_id, record in self._records.items()
                if record.status.is_terminal
                and record.finished_at is not None
                and record.finished_at < finished_before
            ]
            for request_id in stale:
                del self._records[request_id]
        return len(stale)

    def __len__(self) -> int:
        return len(self._records)
