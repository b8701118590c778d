"""Idempotency Guard: suprime pedidos repetidos dentro da janela."""

from __future__ import annotations

from datetime import datetime

from mtn_notifications.domain.enums import Admission
from mtn_notifications.domain.protocols.idempotency import IdempotencyStore
from mtn_notifications.observability.logging import get_logger

logger = get_logger(__name__)


class IdempotencyGuard:
    """admit(key, now) → ADMITTED | DUPLICATE.

    Só ADMITTED altera o store. Chaves com ``now - first_seen_at >= window``
    contam como ausentes (purga preguiçosa no lookup e via ``sweep``).
    """

    def __init__(self, store: IdempotencyStore, window_seconds: int) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds deve ser > 0")
        self._store = store
        self._window_seconds = window_seconds

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    def admit(self, key: str, now: datetime) -> Admission:
        existing = self._store.insert_if_absent(key, now, self._window_seconds)
        if existing is None:
            return Admission.ADMITTED
        logger.info(
            "duplicate_request",
            extra={"first_seen_at": existing.first_seen_at.isoformat()},
        )
        return Admission.DUPLICATE

    def release(self, key: str) -> bool:
        """Desfaz uma admissão rejeitada por um estágio posterior."""
        return self._store.release(key)

    def sweep(self, now: datetime) -> int:
        purged = self._store.purge_expired(now, self._window_seconds)
        if purged:
            logger.debug("idempotency_sweep", extra={"purged": purged})
        return purged
