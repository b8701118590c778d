"""Testes do DeliveryPipeline: submissão, retry, dead-letter e cancelamento."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from mtn_notifications.adapters.channels.mock import MockChannelTransport
from mtn_notifications.application.pipeline import DeliveryPipeline
from mtn_notifications.domain.enums import (
    AttemptOutcome,
    Channel,
    DeadLetterReason,
    DeliveryStatus,
    FailureKind,
)
from mtn_notifications.domain.errors import (
    DuplicateRequest,
    MissingVariable,
    NotCancellable,
    RequestNotFound,
    TemplateNotFound,
    Throttled,
)
from mtn_notifications.domain.models import DeliveryRequest, RenderedPayload, TransportResult
from mtn_notifications.domain.protocols.transport import ChannelTransport


def _welcome(key: str = "welcome-a@x.com", recipient: str = "a@x.com") -> DeliveryRequest:
    return DeliveryRequest(
        channel=Channel.EMAIL,
        recipient=recipient,
        template_name="welcome",
        variables={"name": "Ana"},
        idempotency_key=key,
    )


async def _drain(pipeline: DeliveryPipeline) -> list[datetime]:
    """Executa a fila de temporizadores até esvaziar; retorna os instantes usados."""
    instants = []
    while (ready_at := pipeline.next_ready_at()) is not None:
        instants.append(ready_at)
        await pipeline.process_due(ready_at)
    return instants


class TestSubmit:
    def test_accepts_and_schedules_first_attempt(self, pipeline_factory, now) -> None:
        pipeline = pipeline_factory()
        attempt = pipeline.submit(_welcome(), now)

        assert attempt.attempt_number == 1
        assert attempt.scheduled_at == now
        assert pipeline.next_ready_at() == now
        assert pipeline.status(attempt.request_id).status is DeliveryStatus.PENDING
        assert pipeline.metrics.snapshot()["admitted"] == 1

    def test_duplicate_within_window_rejected(self, pipeline_factory, now) -> None:
        pipeline = pipeline_factory()
        pipeline.submit(_welcome(), now)

        with pytest.raises(DuplicateRequest):
            pipeline.submit(_welcome(), now + timedelta(seconds=299))
        assert pipeline.metrics.snapshot()["duplicate"] == 1
        assert pipeline.pending_count() == 1

    def test_same_key_after_window_admitted(self, pipeline_factory, now) -> None:
        pipeline = pipeline_factory()
        pipeline.submit(_welcome(), now)
        pipeline.submit(_welcome(), now + timedelta(seconds=300))
        assert pipeline.pending_count() == 2

    def test_throttled_carries_retry_after_and_releases_key(self, pipeline_factory, now) -> None:
        pipeline = pipeline_factory(max_count=1)
        pipeline.submit(_welcome(key="k1"), now)

        with pytest.raises(Throttled) as exc_info:
            pipeline.submit(_welcome(key="k2"), now + timedelta(seconds=10))
        assert exc_info.value.retry_after_seconds == 50.0
        assert pipeline.metrics.snapshot()["throttled"] == 1

        # A chave rejeitada não ficou marcada: nova janela aceita o mesmo pedido
        pipeline.submit(_welcome(key="k2"), now + timedelta(seconds=60))

    def test_render_errors_rejected_without_side_effect(self, pipeline_factory, now) -> None:
        pipeline = pipeline_factory(max_count=1)
        bad = DeliveryRequest(Channel.SMS, "+56912345678", "VERIFICATION_CODE", {}, "code-1")
        with pytest.raises(MissingVariable):
            pipeline.submit(bad, now)
        with pytest.raises(TemplateNotFound):
            pipeline.submit(
                DeliveryRequest(Channel.SMS, "+56912345678", "nope", {}, "code-2"), now
            )

        # Nem a chave nem a cota do destinatário foram consumidas
        good = DeliveryRequest(
            Channel.SMS, "+56912345678", "VERIFICATION_CODE", {"code": "1234"}, "code-1"
        )
        assert pipeline.submit(good, now).attempt_number == 1
        assert pipeline.metrics.snapshot()["admitted"] == 1


class TestDelivery:
    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(Channel.EMAIL)
        pipeline = pipeline_factory(email=email)
        request = _welcome()
        pipeline.submit(request, now)

        attempts = await pipeline.process_due(now)

        assert [a.outcome for a in attempts] == [AttemptOutcome.SENT]
        record = pipeline.status(request.id)
        assert record.status is DeliveryStatus.SENT
        assert record.provider_message_id == email.sent[0].provider_message_id
        assert email.sent[0].payload.subject == "Bienvenido al Sistema de Admisión MTN"
        assert pipeline.next_ready_at() is None

    @pytest.mark.asyncio
    async def test_not_due_is_not_processed(self, pipeline_factory, now) -> None:
        pipeline = pipeline_factory()
        pipeline.submit(_welcome(), now)
        assert await pipeline.process_due(now - timedelta(seconds=1)) == []

    @pytest.mark.asyncio
    async def test_always_transient_dead_letters_after_five_attempts(
        self, pipeline_factory, now
    ) -> None:
        """Retries em offsets 1, 3, 7, 15; a 5ª falha vai para dead-letter."""
        email = MockChannelTransport(Channel.EMAIL, fail_always=FailureKind.TRANSIENT)
        pipeline = pipeline_factory(email=email)
        request = _welcome()
        pipeline.submit(request, now)

        instants = await _drain(pipeline)

        offsets = [(t - now).total_seconds() for t in instants]
        assert offsets == [0.0, 1.0, 3.0, 7.0, 15.0]
        assert email.calls == 5

        entry = pipeline.dead_letters.get(request.id)
        assert entry is not None
        assert entry.final_attempt_number == 5
        assert entry.reason is DeadLetterReason.RETRIES_EXHAUSTED
        assert entry.moved_at == now + timedelta(seconds=15)

        record = pipeline.status(request.id)
        assert record.status is DeliveryStatus.DEAD_LETTERED
        assert [a.attempt_number for a in record.attempts] == [1, 2, 3, 4, 5]
        assert all(a.outcome is AttemptOutcome.FAILED for a in record.attempts)

        snapshot = pipeline.metrics.snapshot()
        assert snapshot["failed"] == 5
        assert snapshot["dead_lettered"] == 1

    @pytest.mark.asyncio
    async def test_permanent_failure_dead_letters_immediately(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(Channel.EMAIL, fail_always=FailureKind.PERMANENT)
        pipeline = pipeline_factory(email=email)
        request = _welcome()
        pipeline.submit(request, now)

        await _drain(pipeline)

        entry = pipeline.dead_letters.get(request.id)
        assert entry is not None
        assert entry.final_attempt_number == 1
        assert entry.reason is DeadLetterReason.PERMANENT
        assert email.calls == 1

    @pytest.mark.asyncio
    async def test_invalid_recipient_is_permanent(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(Channel.EMAIL)
        pipeline = pipeline_factory(email=email)
        request = _welcome(recipient="sin-arroba")
        pipeline.submit(request, now)

        await _drain(pipeline)

        assert pipeline.dead_letters.get(request.id).final_attempt_number == 1
        assert email.calls == 0

    @pytest.mark.asyncio
    async def test_transient_then_success(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(
            Channel.EMAIL, failures=[FailureKind.TRANSIENT, FailureKind.TRANSIENT]
        )
        pipeline = pipeline_factory(email=email)
        request = _welcome()
        pipeline.submit(request, now)

        await _drain(pipeline)

        record = pipeline.status(request.id)
        assert record.status is DeliveryStatus.SENT
        assert [a.outcome for a in record.attempts] == [
            AttemptOutcome.FAILED,
            AttemptOutcome.FAILED,
            AttemptOutcome.SENT,
        ]
        assert pipeline.dead_letters.list() == []

    @pytest.mark.asyncio
    async def test_retries_are_not_rate_limited(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(Channel.EMAIL, failures=[FailureKind.TRANSIENT])
        pipeline = pipeline_factory(email=email, max_count=1)
        request = _welcome()
        pipeline.submit(request, now)

        await _drain(pipeline)

        assert pipeline.status(request.id).status is DeliveryStatus.SENT

    @pytest.mark.asyncio
    async def test_custom_max_attempts(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(Channel.EMAIL, fail_always=FailureKind.TRANSIENT)
        pipeline = pipeline_factory(email=email, max_attempts=2)
        request = _welcome()
        pipeline.submit(request, now)

        await _drain(pipeline)

        assert pipeline.dead_letters.get(request.id).final_attempt_number == 2

    @pytest.mark.asyncio
    async def test_distinct_requests_processed_together(self, pipeline_factory, now) -> None:
        pipeline = pipeline_factory()
        first, second = _welcome(key="a"), _welcome(key="b", recipient="b@x.com")
        pipeline.submit(first, now)
        pipeline.submit(second, now)

        attempts = await pipeline.process_due(now)

        assert {a.request_id for a in attempts} == {first.id, second.id}


class TestReprocess:
    @pytest.mark.asyncio
    async def test_reprocess_resets_numbering_and_bypasses_idempotency(
        self, pipeline_factory, now
    ) -> None:
        email = MockChannelTransport(Channel.EMAIL, fail_always=FailureKind.TRANSIENT)
        pipeline = pipeline_factory(email=email)
        request = _welcome()
        pipeline.submit(request, now)
        await _drain(pipeline)

        # Ainda dentro da janela de 5 minutos: submit normal é duplicata
        later = now + timedelta(seconds=60)
        with pytest.raises(DuplicateRequest):
            pipeline.submit(request, later)

        email.fail_always = None
        attempt = pipeline.reprocess(request.id, later)

        assert attempt.attempt_number == 1
        assert pipeline.dead_letters.get(request.id) is None
        assert pipeline.metrics.snapshot()["reprocessed"] == 1

        await _drain(pipeline)

        record = pipeline.status(request.id)
        assert record.status is DeliveryStatus.SENT
        assert [a.attempt_number for a in record.attempts] == [1]
        assert len(record.previous_attempts) == 5

    def test_reprocess_unknown_raises(self, pipeline_factory, now) -> None:
        with pytest.raises(RequestNotFound):
            pipeline_factory().reprocess("missing", now)


class _BlockingTransport(ChannelTransport):
    """Segura a entrega até o teste liberar."""

    channel = Channel.EMAIL

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def transmit(self, recipient: str, payload: RenderedPayload) -> TransportResult:
        self.started.set()
        await self.release.wait()
        return TransportResult(success=True, provider_message_id="blocked-1")


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_pending_request(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(Channel.EMAIL)
        pipeline = pipeline_factory(email=email)
        request = _welcome()
        pipeline.submit(request, now)

        record = pipeline.cancel(request.id)

        assert record.status is DeliveryStatus.CANCELLED
        assert await pipeline.process_due(now) == []
        assert email.calls == 0
        assert pipeline.metrics.snapshot()["cancelled"] == 1

    @pytest.mark.asyncio
    async def test_cancel_between_retries(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(Channel.EMAIL, fail_always=FailureKind.TRANSIENT)
        pipeline = pipeline_factory(email=email)
        request = _welcome()
        pipeline.submit(request, now)
        await pipeline.process_due(now)

        record = pipeline.cancel(request.id)

        assert [a.attempt_number for a in record.attempts] == [1]
        assert pipeline.next_ready_at() is None

    def test_cancel_terminal_not_allowed(self, pipeline_factory, now) -> None:
        pipeline = pipeline_factory()
        request = _welcome()
        pipeline.submit(request, now)
        pipeline.cancel(request.id)
        with pytest.raises(NotCancellable):
            pipeline.cancel(request.id)

    def test_cancel_unknown(self, pipeline_factory) -> None:
        with pytest.raises(RequestNotFound):
            pipeline_factory().cancel("missing")

    @pytest.mark.asyncio
    async def test_cancel_in_flight_not_honored(self, pipeline_factory, now) -> None:
        """Tentativa já iniciada termina e tem o resultado registrado."""
        blocking = _BlockingTransport()
        pipeline = pipeline_factory(email=blocking)
        request = _welcome()
        pipeline.submit(request, now)

        task = asyncio.create_task(pipeline.process_due(now))
        await blocking.started.wait()
        assert pipeline.status(request.id).status is DeliveryStatus.IN_FLIGHT
        with pytest.raises(NotCancellable):
            pipeline.cancel(request.id)

        blocking.release.set()
        await task
        assert pipeline.status(request.id).status is DeliveryStatus.SENT


class TestSubjectOverride:
    @pytest.mark.asyncio
    async def test_email_uses_caller_subject(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(Channel.EMAIL)
        pipeline = pipeline_factory(email=email)
        request = DeliveryRequest(
            channel=Channel.EMAIL,
            recipient="a@x.com",
            template_name="welcome",
            variables={"name": "Ana"},
            subject="Asunto personalizado",
        )
        pipeline.submit(request, now)

        await _drain(pipeline)

        assert email.sent[0].payload.subject == "Asunto personalizado"
        assert pipeline.status(request.id).payload.subject == "Asunto personalizado"

    @pytest.mark.asyncio
    async def test_template_subject_when_absent(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(Channel.EMAIL)
        pipeline = pipeline_factory(email=email)
        pipeline.submit(_welcome(), now)

        await _drain(pipeline)

        assert email.sent[0].payload.subject == "Bienvenido al Sistema de Admisión MTN"

    @pytest.mark.asyncio
    async def test_sms_ignores_subject(self, pipeline_factory, now) -> None:
        sms = MockChannelTransport(Channel.SMS)
        pipeline = pipeline_factory(sms=sms)
        pipeline.submit(
            DeliveryRequest(
                channel=Channel.SMS,
                recipient="+56912345678",
                template_name="welcome",
                variables={"name": "Ana"},
                subject="Asunto personalizado",
            ),
            now,
        )

        await _drain(pipeline)

        assert sms.sent[0].payload.subject is None


class TestSweep:
    @pytest.mark.asyncio
    async def test_purges_expired_state(self, pipeline_factory, now) -> None:
        pipeline = pipeline_factory(ledger_retention_seconds=3600)
        sent = _welcome(key="k1")
        pending = _welcome(key="k2", recipient="b@x.com")
        pipeline.submit(sent, now)
        await _drain(pipeline)
        pipeline.submit(pending, now)

        assert pipeline.sweep(now) == {
            "idempotency_keys": 0,
            "rate_limit_buckets": 0,
            "ledger_records": 0,
        }

        purged = pipeline.sweep(now + timedelta(hours=2))

        assert purged == {"idempotency_keys": 2, "rate_limit_buckets": 2, "ledger_records": 1}
        with pytest.raises(RequestNotFound):
            pipeline.status(sent.id)
        assert pipeline.status(pending.id).status is DeliveryStatus.PENDING

    @pytest.mark.asyncio
    async def test_finished_records_kept_within_retention(self, pipeline_factory, now) -> None:
        pipeline = pipeline_factory(ledger_retention_seconds=3600)
        request = _welcome()
        pipeline.submit(request, now)
        await _drain(pipeline)

        assert pipeline.sweep(now + timedelta(minutes=59))["ledger_records"] == 0
        assert pipeline.status(request.id).status is DeliveryStatus.SENT

    @pytest.mark.asyncio
    async def test_evicted_dead_letter_still_reprocessable(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(Channel.EMAIL, failures=[FailureKind.PERMANENT])
        pipeline = pipeline_factory(email=email, ledger_retention_seconds=60)
        request = _welcome()
        pipeline.submit(request, now)
        await _drain(pipeline)

        later = now + timedelta(minutes=5)
        assert pipeline.sweep(later)["ledger_records"] == 1

        attempt = pipeline.reprocess(request.id, later)
        await pipeline.process_due(later)

        assert attempt.attempt_number == 1
        assert pipeline.status(request.id).status is DeliveryStatus.SENT


class TestListRecords:
    @pytest.mark.asyncio
    async def test_filters_and_pagination(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(Channel.EMAIL, failures=[FailureKind.PERMANENT])
        pipeline = pipeline_factory(email=email)
        failed = _welcome(key="k1")
        pipeline.submit(failed, now)
        await _drain(pipeline)
        ok = _welcome(key="k2", recipient="b@x.com")
        pipeline.submit(ok, now + timedelta(seconds=1))
        await _drain(pipeline)
        sms = DeliveryRequest(
            channel=Channel.SMS,
            recipient="+56912345678",
            template_name="welcome",
            idempotency_key="k3",
        )
        pipeline.submit(sms, now + timedelta(seconds=2))

        total, page = pipeline.list_records()
        assert total == 3
        assert [r.request.id for r in page] == [sms.id, ok.id, failed.id]

        total, page = pipeline.list_records(status=DeliveryStatus.DEAD_LETTERED)
        assert (total, [r.request.id for r in page]) == (1, [failed.id])

        total, page = pipeline.list_records(channel=Channel.EMAIL, limit=1, offset=1)
        assert total == 2
        assert [r.request.id for r in page] == [failed.id]

        assert pipeline.list_records(template_name="STATUS_CHANGE") == (0, [])
