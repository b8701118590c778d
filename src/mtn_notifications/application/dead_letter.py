"""Dead-Letter Sink: guarda entregas terminalmente falhas para o operador."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from mtn_notifications.domain.enums import DeadLetterReason
from mtn_notifications.domain.errors import RequestNotFound
from mtn_notifications.domain.models import DeadLetterEntry, DeliveryAttempt, DeliveryRequest
from mtn_notifications.domain.protocols.dead_letter import DeadLetterStore
from mtn_notifications.observability.logging import get_logger

logger = get_logger(__name__)

Resubmit = Callable[[DeliveryRequest, datetime], DeliveryAttempt]


class DeadLetterSink:
    """record / list / get / reprocess sobre um DeadLetterStore.

    ``resubmit`` recoloca a request no pipeline como tentativa 1, sem passar
    pelo Idempotency Guard.
    """

    def __init__(self, store: DeadLetterStore, resubmit: Resubmit) -> None:
        self._store = store
        self._resubmit = resubmit

    def record(
        self,
        request: DeliveryRequest,
        last_attempt: DeliveryAttempt,
        reason: DeadLetterReason,
        moved_at: datetime,
    ) -> DeadLetterEntry:
        entry = DeadLetterEntry(
            request_id=request.id,
            final_attempt_number=last_attempt.attempt_number,
            last_error=last_attempt.error_detail or "",
            moved_at=moved_at,
            reason=reason,
            request=request,
        )
        self._store.save(entry)
        logger.warning(
            "dead_lettered",
            extra={
                "request_id": request.id,
                "final_attempt_number": entry.final_attempt_number,
                "reason": reason.value,
            },
        )
        return entry

    def list(self, limit: int = 100) -> list[DeadLetterEntry]:  # noqa: A003
        return self._store.list(limit)

    def get(self, request_id: str) -> DeadLetterEntry | None:
        return self._store.get(request_id)

    def reprocess(self, request_id: str, now: datetime) -> DeliveryAttempt:
        """Ressuscita a entrada como nova sequência de tentativas.

        A entrada é reivindicada (removida) antes do reenvio; se o reenvio
        falhar ela volta ao store, então a request nunca fica ao mesmo tempo
        agendada e em dead-letter.

        Raises:
            RequestNotFound: Se não há entrada para o request_id
            NotReprocessable: Se a request já saiu de dead-letter
            RenderError: Se o template não renderiza mais
            DeadLetterStoreError: Falha no backend
        """
        entry = self._store.claim(request_id)
        if entry is None:
            raise RequestNotFound(request_id)
        try:
            attempt = self._resubmit(entry.request, now)
        except Exception as exc:
            logger.warning(
                "dead_letter_restored",
                extra={"request_id": request_id, "error_type": type(exc).__name__},
            )
            self._store.save(entry)
            raise
        logger.info(
            "dead_letter_reprocessed",
            extra={"request_id": request_id, "previous_attempts": entry.final_attempt_number},
        )
        return attempt
