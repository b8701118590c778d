"""Testes do ciclo de vida em dead-letter: persistência e reprocessamento."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from mtn_notifications.adapters.channels.mock import MockChannelTransport
from mtn_notifications.application.dead_letter import DeadLetterSink
from mtn_notifications.application.ledger import DeliveryLedger
from mtn_notifications.domain.enums import (
    AttemptOutcome,
    Channel,
    DeadLetterReason,
    DeliveryStatus,
    FailureKind,
)
from mtn_notifications.domain.errors import (
    DeadLetterStoreError,
    NotReprocessable,
    RequestNotFound,
    TemplateNotFound,
)
from mtn_notifications.domain.models import (
    DeadLetterEntry,
    DeliveryAttempt,
    DeliveryRequest,
    RenderedPayload,
)
from mtn_notifications.infra.dead_letter_memory import InMemoryDeadLetterStore

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
PAYLOAD = RenderedPayload("welcome", Channel.EMAIL, "Hola", "Bienvenido")


class _UnavailableStore(InMemoryDeadLetterStore):
    """Store que recusa gravações enquanto ``available`` for False."""

    def __init__(self) -> None:
        super().__init__()
        self.available = False
        self.save_calls = 0

    def save(self, entry: DeadLetterEntry) -> None:
        self.save_calls += 1
        if not self.available:
            raise DeadLetterStoreError("Firestore indisponível")
        super().save(entry)


class _ClaimFailingStore(InMemoryDeadLetterStore):
    def claim(self, request_id: str) -> DeadLetterEntry | None:
        raise DeadLetterStoreError("Firestore indisponível")


def _welcome(key: str = "welcome-a@x.com") -> DeliveryRequest:
    return DeliveryRequest(
        channel=Channel.EMAIL,
        recipient="a@x.com",
        template_name="welcome",
        variables={"name": "Ana"},
        idempotency_key=key,
    )


def _recorded_sink(resubmit: MagicMock) -> tuple[DeadLetterSink, DeliveryRequest]:
    store = InMemoryDeadLetterStore()
    sink = DeadLetterSink(store, resubmit=resubmit)
    request = _welcome()
    attempt = DeliveryAttempt(request.id, 5, NOW).resolve(AttemptOutcome.FAILED, NOW, "HTTP 503")
    sink.record(request, attempt, DeadLetterReason.RETRIES_EXHAUSTED, NOW)
    return sink, request


class TestUnsavedDeadLetter:
    @pytest.mark.asyncio
    async def test_store_failure_keeps_request_out_of_dead_letter(
        self, pipeline_factory, now
    ) -> None:
        store = _UnavailableStore()
        email = MockChannelTransport(Channel.EMAIL, fail_always=FailureKind.PERMANENT)
        pipeline = pipeline_factory(email=email, dead_letter_store=store)
        request = _welcome()
        pipeline.submit(request, now)

        await pipeline.process_due(now)

        assert pipeline.status(request.id).status is DeliveryStatus.IN_FLIGHT
        assert pipeline.metrics.snapshot()["dead_lettered"] == 0
        assert pipeline.unsaved_dead_letter_count() == 1
        assert pipeline.dead_letters.get(request.id) is None
        with pytest.raises(RequestNotFound):
            pipeline.reprocess(request.id, now)

    @pytest.mark.asyncio
    async def test_entry_saved_once_store_recovers(self, pipeline_factory, now) -> None:
        store = _UnavailableStore()
        email = MockChannelTransport(Channel.EMAIL, fail_always=FailureKind.PERMANENT)
        pipeline = pipeline_factory(email=email, dead_letter_store=store)
        request = _welcome()
        pipeline.submit(request, now)
        await pipeline.process_due(now)

        # Store ainda fora: nova rodada não perde a entrada
        later = now + timedelta(seconds=30)
        await pipeline.process_due(later)
        assert pipeline.unsaved_dead_letter_count() == 1
        assert store.save_calls == 2

        store.available = True
        await pipeline.process_due(later)

        record = pipeline.status(request.id)
        assert record.status is DeliveryStatus.DEAD_LETTERED
        assert record.finished_at == later
        assert pipeline.unsaved_dead_letter_count() == 0
        assert pipeline.metrics.snapshot()["dead_lettered"] == 1
        entry = pipeline.dead_letters.get(request.id)
        assert entry is not None
        assert entry.reason is DeadLetterReason.PERMANENT
        assert email.calls == 1

    @pytest.mark.asyncio
    async def test_saved_entry_can_be_reprocessed(self, pipeline_factory, now) -> None:
        store = _UnavailableStore()
        email = MockChannelTransport(Channel.EMAIL, failures=[FailureKind.PERMANENT])
        pipeline = pipeline_factory(email=email, dead_letter_store=store)
        request = _welcome()
        pipeline.submit(request, now)
        await pipeline.process_due(now)
        store.available = True
        await pipeline.process_due(now)

        attempt = pipeline.reprocess(request.id, now)
        await pipeline.process_due(now)

        assert attempt.attempt_number == 1
        assert pipeline.status(request.id).status is DeliveryStatus.SENT


class TestReprocessClaim:
    def test_failed_resubmit_restores_entry(self) -> None:
        resubmit = MagicMock(side_effect=TemplateNotFound("welcome"))
        sink, request = _recorded_sink(resubmit)

        with pytest.raises(TemplateNotFound):
            sink.reprocess(request.id, NOW)

        entry = sink.get(request.id)
        assert entry is not None
        assert entry.final_attempt_number == 5

    def test_claim_failure_does_not_resubmit(self) -> None:
        resubmit = MagicMock()
        sink = DeadLetterSink(_ClaimFailingStore(), resubmit=resubmit)

        with pytest.raises(DeadLetterStoreError):
            sink.reprocess("a", NOW)
        resubmit.assert_not_called()

    def test_second_reprocess_finds_nothing(self) -> None:
        resubmit = MagicMock(return_value=DeliveryAttempt("a", 1, NOW))
        sink, request = _recorded_sink(resubmit)

        sink.reprocess(request.id, NOW)
        with pytest.raises(RequestNotFound):
            sink.reprocess(request.id, NOW)
        resubmit.assert_called_once()

    @pytest.mark.asyncio
    async def test_pipeline_reprocess_twice_schedules_once(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(Channel.EMAIL, failures=[FailureKind.PERMANENT])
        pipeline = pipeline_factory(email=email)
        request = _welcome()
        pipeline.submit(request, now)
        await pipeline.process_due(now)

        pipeline.reprocess(request.id, now)
        with pytest.raises(RequestNotFound):
            pipeline.reprocess(request.id, now)

        assert pipeline.pending_count() == 1
        assert pipeline.metrics.snapshot()["reprocessed"] == 1

    @pytest.mark.asyncio
    async def test_claim_failure_leaves_pipeline_untouched(self, pipeline_factory, now) -> None:
        email = MockChannelTransport(Channel.EMAIL, failures=[FailureKind.PERMANENT])
        store = _ClaimFailingStore()
        pipeline = pipeline_factory(email=email, dead_letter_store=store)
        request = _welcome()
        pipeline.submit(request, now)
        await pipeline.process_due(now)

        with pytest.raises(DeadLetterStoreError):
            pipeline.reprocess(request.id, now)

        assert pipeline.status(request.id).status is DeliveryStatus.DEAD_LETTERED
        assert pipeline.pending_count() == 0
        assert store.get(request.id) is not None

    @pytest.mark.asyncio
    async def test_live_request_not_reprocessable(self, pipeline_factory, now) -> None:
        """Entrada antiga no store não reabre request que já voltou à fila."""
        email = MockChannelTransport(Channel.EMAIL, failures=[FailureKind.PERMANENT])
        store = InMemoryDeadLetterStore()
        pipeline = pipeline_factory(email=email, dead_letter_store=store)
        request = _welcome()
        pipeline.submit(request, now)
        await pipeline.process_due(now)
        stale = store.get(request.id)
        pipeline.reprocess(request.id, now)
        store.save(stale)

        with pytest.raises(NotReprocessable):
            pipeline.reprocess(request.id, now)

        assert store.get(request.id) == stale
        assert pipeline.pending_count() == 1


class TestLedgerRestart:
    def test_restart_requires_dead_letter(self) -> None:
        ledger = DeliveryLedger()
        request = _welcome()
        ledger.register(request, PAYLOAD, NOW)

        with pytest.raises(NotReprocessable):
            ledger.restart(request.id, PAYLOAD, NOW)

    def test_restart_after_dead_letter(self) -> None:
        ledger = DeliveryLedger()
        request = _welcome()
        ledger.register(request, PAYLOAD, NOW)
        ledger.begin(request.id, 1)
        ledger.resolve(request.id, AttemptOutcome.FAILED, NOW, error_detail="HTTP 400")
        ledger.mark_dead_lettered(request.id, NOW)

        attempt = ledger.restart(request.id, PAYLOAD, NOW + timedelta(minutes=1))

        record = ledger.get(request.id)
        assert attempt.attempt_number == 1
        assert record.status is DeliveryStatus.PENDING
        assert record.finished_at is None
        assert len(record.previous_attempts) == 1
