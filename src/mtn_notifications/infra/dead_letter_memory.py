"""DeadLetterStore em memória: para desenvolvimento e testes.

⚠️ Não usar em produção: entradas são perdidas ao reiniciar.
"""

from __future__ import annotations

import threading

from mtn_notifications.domain.models import DeadLetterEntry
from mtn_notifications.domain.protocols.dead_letter import DeadLetterStore


class InMemoryDeadLetterStore(DeadLetterStore):
    """Dict request_id → DeadLetterEntry, ordem de inserção preservada."""

    def __init__(self) -> None:
        self._entries: dict[str, DeadLetterEntry] = {}
        self._lock = threading.Lock()

    def save(self, entry: DeadLetterEntry) -> None:
        with self._lock:
            self._entries.pop(entry.request_id, None)
            self._entries[entry.request_id] = entry

    def get(self, request_id: str) -> DeadLetterEntry | None:
        return self._entries.get(request_id)

    def list(self, limit: int = 100) -> list[DeadLetterEntry]:  # noqa: A003
        with self._lock:
            entries = sorted(self._entries.values(), key=lambda e: e.moved_at)
        return entries[:limit]

    def claim(self, request_id: str) -> DeadLetterEntry | None:
        with self._lock:
            return self._entries.pop(request_id, None)
