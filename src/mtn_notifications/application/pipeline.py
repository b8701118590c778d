"""DeliveryPipeline: encadeia os estágios do pipeline de entrega.

Fluxo síncrono (submit):
    Idempotency Guard → Template Renderer → Rate Limiter → tentativa 1 agendada

Fluxo assíncrono (process_due):
    fila de temporizadores → Delivery Dispatcher → SENT | retry | dead-letter

Rejeições síncronas liberam a chave de idempotência: pedido rejeitado não
deixa efeito colateral além de log e métrica.

Uma request só vira DEAD_LETTERED depois que a entrada foi gravada no store.
Se o store falhar, a entrada fica retida em memória (request em IN_FLIGHT)
e a gravação é refeita a cada process_due.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from mtn_notifications.application.dead_letter import DeadLetterSink
from mtn_notifications.application.dispatcher import DeliveryDispatcher, DispatchResult
from mtn_notifications.application.idempotency_guard import IdempotencyGuard
from mtn_notifications.application.ledger import DeliveryLedger, DeliveryRecord
from mtn_notifications.application.rate_limiter import RateLimiter
from mtn_notifications.application.retry import BackoffPolicy, RetryScheduler, ScheduledAttempt
from mtn_notifications.application.templates.renderer import TemplateRenderer
from mtn_notifications.domain.enums import (
    Admission,
    AttemptOutcome,
    Channel,
    DeadLetterReason,
    DeliveryStatus,
    FailureKind,
)
from mtn_notifications.domain.errors import (
    DeadLetterStoreError,
    DuplicateRequest,
    PermanentTransportError,
    RetriesExhausted,
    Throttled,
)
from mtn_notifications.domain.models import (
    DeliveryAttempt,
    DeliveryRequest,
    RenderedPayload,
    utcnow,
)
from mtn_notifications.domain.protocols.dead_letter import DeadLetterStore
from mtn_notifications.observability.logging import get_logger, mask_recipient
from mtn_notifications.observability.metrics import DeliveryMetrics
from mtn_notifications.observability.middleware import bind_correlation_id, reset_correlation_id

logger = get_logger(__name__)

DEFAULT_LEDGER_RETENTION_SECONDS = 24 * 60 * 60


@dataclass(slots=True, frozen=True)
class _UnsavedDeadLetter:
    request: DeliveryRequest
    attempt: DeliveryAttempt
    reason: DeadLetterReason


class DeliveryPipeline:
    """Orquestra submit / process_due / cancel / status / reprocess."""

    def __init__(
        self,
        *,
        guard: IdempotencyGuard,
        rate_limiter: RateLimiter,
        renderer: TemplateRenderer,
        dispatcher: DeliveryDispatcher,
        dead_letter_store: DeadLetterStore,
        policy: BackoffPolicy | None = None,
        metrics: DeliveryMetrics | None = None,
        clock: Callable[[], datetime] = utcnow,
        ledger_retention_seconds: int = DEFAULT_LEDGER_RETENTION_SECONDS,
    ) -> None:
        self._guard = guard
        self._rate_limiter = rate_limiter
        self._renderer = renderer
        self._dispatcher = dispatcher
        self._policy = policy or BackoffPolicy()
        self._scheduler = RetryScheduler()
        self._ledger = DeliveryLedger()
        self.metrics = metrics or DeliveryMetrics()
        self.dead_letters = DeadLetterSink(dead_letter_store, self._resubmit)
        self._clock = clock
        self._ledger_retention = timedelta(seconds=ledger_retention_seconds)
        self._unsaved_dead_letters: dict[str, _UnsavedDeadLetter] = {}
        self._wakeup_listeners: list[Callable[[], None]] = []

    @property
    def policy(self) -> BackoffPolicy:
        return self._policy

    @property
    def clock(self) -> Callable[[], datetime]:
        return self._clock

    @property
    def renderer(self) -> TemplateRenderer:
        return self._renderer

    def add_wakeup_listener(self, listener: Callable[[], None]) -> None:
        """Chamado sempre que uma tentativa entra na fila (acorda workers)."""
        self._wakeup_listeners.append(listener)

    def remove_wakeup_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._wakeup_listeners:
            self._wakeup_listeners.remove(listener)

    def _notify(self) -> None:
        for listener in self._wakeup_listeners:
            listener()

    # ------------------------------------------------------------------
    # Estágios síncronos
    # ------------------------------------------------------------------

    def _render(self, request: DeliveryRequest) -> RenderedPayload:
        payload = self._renderer.render(request.template_name, request.variables, request.channel)
        # Assunto explícito do chamador prevalece sobre o do template
        if request.subject and request.channel is Channel.EMAIL:
            payload = replace(payload, subject=request.subject)
        return payload

    def submit(self, request: DeliveryRequest, now: datetime | None = None) -> DeliveryAttempt:
        """Aceita a request e agenda a tentativa 1.

        Raises:
            DuplicateRequest, TemplateNotFound, MissingVariable, Throttled
        """
        now = now or self._clock()
        channel = request.channel.value

        if self._guard.admit(request.idempotency_key, now) is Admission.DUPLICATE:
            self.metrics.inc("duplicate", channel)
            raise DuplicateRequest(request.idempotency_key)

        try:
            payload = self._render(request)
            decision = self._rate_limiter.try_acquire(request.recipient, now, request.channel)
            if not decision.allowed:
                self.metrics.inc("throttled", channel)
                raise Throttled(request.recipient, decision.retry_after_seconds)
            attempt = self._ledger.register(request, payload, now)
        except Exception:
            self._guard.release(request.idempotency_key)
            raise

        self._scheduler.schedule(request, attempt.attempt_number, now)
        self.metrics.inc("admitted", channel)
        logger.info(
            "delivery_admitted",
            extra={
                "request_id": request.id,
                "channel": channel,
                "template": request.template_name,
                "recipient": mask_recipient(request.recipient),
            },
        )
        self._notify()
        return attempt

    def cancel(self, request_id: str) -> DeliveryRecord:
        """Cancela request PENDING antes da próxima tentativa.

        Raises:
            RequestNotFound, NotCancellable
        """
        record = self._ledger.cancel(request_id, self._clock())
        self._scheduler.cancel(request_id)
        self.metrics.inc("cancelled", record.request.channel.value)
        logger.info("delivery_cancelled", extra={"request_id": request_id})
        return record

    def status(self, request_id: str) -> DeliveryRecord:
        """Raises: RequestNotFound"""
        return self._ledger.get(request_id)

    def list_records(
        self,
        *,
        status: DeliveryStatus | None = None,
        channel: Channel | None = None,
        template_name: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[int, list[DeliveryRecord]]:
        """Histórico filtrado, mais recentes primeiro."""
        return self._ledger.query(
            status=status,
            channel=channel,
            template_name=template_name,
            limit=limit,
            offset=offset,
        )

    def reprocess(self, request_id: str, now: datetime | None = None) -> DeliveryAttempt:
        """Reprocessa entrada de dead-letter (ignora o Idempotency Guard)."""
        return self.dead_letters.reprocess(request_id, now or self._clock())

    def _resubmit(self, request: DeliveryRequest, now: datetime) -> DeliveryAttempt:
        payload = self._render(request)
        attempt = self._ledger.adopt(request, payload, now)
        self._scheduler.schedule(request, attempt.attempt_number, now)
        self.metrics.inc("reprocessed", request.channel.value)
        self._notify()
        return attempt

    def next_ready_at(self) -> datetime | None:
        return self._scheduler.next_ready_at()

    def pending_count(self) -> int:
        return len(self._scheduler)

    def unsaved_dead_letter_count(self) -> int:
        return len(self._unsaved_dead_letters)

    def sweep(self, now: datetime | None = None) -> dict[str, int]:
        """Limpeza periódica: chaves de idempotência, buckets e registros terminais."""
        now = now or self._clock()
        purged = {
            "idempotency_keys": self._guard.sweep(now),
            "rate_limit_buckets": self._rate_limiter.sweep(now),
            "ledger_records": self._ledger.evict_finished(now - self._ledger_retention),
        }
        if any(purged.values()):
            logger.info("pipeline_sweep", extra=purged)
        return purged

    # ------------------------------------------------------------------
    # Tentativas (workers)
    # ------------------------------------------------------------------

    async def process_due(
        self,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> list[DeliveryAttempt]:
        """Executa uma vez cada tentativa vencida; requests distintas em paralelo."""
        now = now or self._clock()
        self._flush_unsaved_dead_letters(now)
        due = self._scheduler.pop_due(now, limit)
        if not due:
            return []

        results = await asyncio.gather(
            *(self._run_attempt(entry, now) for entry in due),
            return_exceptions=True,
        )
        attempts: list[DeliveryAttempt] = []
        for entry, result in zip(due, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "attempt_processing_error",
                    extra={
                        "request_id": entry.request.id,
                        "attempt_number": entry.attempt_number,
                        "error_type": type(result).__name__,
                    },
                )
            elif result is not None:
                attempts.append(result)
        return attempts

    async def _run_attempt(self, entry: ScheduledAttempt, now: datetime) -> DeliveryAttempt | None:
        request = entry.request
        if self._ledger.begin(request.id, entry.attempt_number) is None:
            logger.debug("attempt_skipped", extra={"request_id": request.id})
            return None

        token = bind_correlation_id(request.correlation_id) if request.correlation_id else None
        try:
            record = self._ledger.get(request.id)
            result = await self._dispatcher.send(request.channel, request.recipient, record.payload)
            return self._record_outcome(request, result, now)
        finally:
            if token is not None:
                reset_correlation_id(token)

    def _record_outcome(
        self,
        request: DeliveryRequest,
        result: DispatchResult,
        now: datetime,
    ) -> DeliveryAttempt:
        channel = request.channel.value

        if result.sent:
            attempt = self._ledger.resolve(
                request.id,
                AttemptOutcome.SENT,
                now,
                provider_message_id=result.provider_message_id,
            )
            self.metrics.inc("sent", channel)
            logger.info(
                "delivery_sent",
                extra={"request_id": request.id, "attempt_number": attempt.attempt_number},
            )
            return attempt

        attempt = self._ledger.resolve(
            request.id,
            AttemptOutcome.FAILED,
            now,
            error_detail=result.error,
            failure_kind=result.failure_kind,
        )
        self.metrics.inc("failed", channel)
        logger.warning(
            "delivery_failed",
            extra={
                "request_id": request.id,
                "attempt_number": attempt.attempt_number,
                "failure_kind": result.failure_kind.value if result.failure_kind else None,
            },
        )

        if result.failure_kind is FailureKind.PERMANENT:
            self._dead_letter(request, attempt, PermanentTransportError(result.error or ""), now)
        elif not self._policy.can_retry(attempt.attempt_number):
            exhausted = RetriesExhausted(request.id, attempt.attempt_number, result.error or "")
            self._dead_letter(request, attempt, exhausted, now)
        else:
            ready_at = now + self._policy.delay_for(attempt.attempt_number)
            following = self._ledger.next_attempt(request.id, ready_at)
            self._scheduler.schedule(request, following.attempt_number, ready_at)
            logger.info(
                "retry_scheduled",
                extra={
                    "request_id": request.id,
                    "attempt_number": following.attempt_number,
                    "ready_at": ready_at.isoformat(),
                },
            )
            self._notify()
        return attempt

    def _dead_letter(
        self,
        request: DeliveryRequest,
        attempt: DeliveryAttempt,
        cause: PermanentTransportError | RetriesExhausted,
        now: datetime,
    ) -> None:
        reason = (
            DeadLetterReason.RETRIES_EXHAUSTED
            if isinstance(cause, RetriesExhausted)
            else DeadLetterReason.PERMANENT
        )
        logger.warning(
            "delivery_dead_lettered",
            extra={"request_id": request.id, "cause": type(cause).__name__, "detail": str(cause)},
        )
        self._persist_dead_letter(_UnsavedDeadLetter(request, attempt, reason), now)

    def _persist_dead_letter(self, pending: _UnsavedDeadLetter, now: datetime) -> bool:
        request = pending.request
        try:
            self.dead_letters.record(request, pending.attempt, pending.reason, now)
        except DeadLetterStoreError as exc:
            self._unsaved_dead_letters[request.id] = pending
            logger.error(
                "dead_letter_persist_failed",
                extra={"request_id": request.id, "error_type": type(exc).__name__},
            )
            return False

        self._unsaved_dead_letters.pop(request.id, None)
        self._ledger.mark_dead_lettered(request.id, now)
        self.metrics.inc("dead_lettered", request.channel.value)
        return True

    def _flush_unsaved_dead_letters(self, now: datetime) -> None:
        for pending in list(self._unsaved_dead_letters.values()):
            if not self._persist_dead_letter(pending, now):
                # Store ainda indisponível: tenta de novo na próxima rodada
                break

    async def close(self) -> None:
        await self._dispatcher.close()
