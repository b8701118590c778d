"""Retry Scheduler: política de backoff e fila de temporizadores.

Uma tentativa estacionada é uma entrada ``(ready_at, request, attempt_number)``
na fila, nunca uma corrotina dormindo. Workers consomem as entradas vencidas.
"""

from __future__ import annotations

import heapq
import itertools
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from mtn_notifications.domain.models import DeliveryRequest


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    """Atraso antes da tentativa k+1 = base * 2^(k-1), limitado a max_delay.

    Com ``jitter`` o atraso é sorteado em [0, atraso] (full jitter).
    """

    max_attempts: int = 5
    base_seconds: float = 1.0
    max_delay_seconds: float = 300.0
    jitter: bool = False
    rng: random.Random = field(default_factory=random.Random, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts deve ser >= 1")
        if self.base_seconds <= 0:
            raise ValueError("base_seconds deve ser > 0")

    def delay_for(self, failed_attempt: int) -> timedelta:
        """Atraso após a falha da tentativa ``failed_attempt`` (1-based)."""
        if failed_attempt < 1:
            raise ValueError("failed_attempt começa em 1")
        delay = min(self.base_seconds * 2 ** (failed_attempt - 1), self.max_delay_seconds)
        if self.jitter:
            delay = self.rng.uniform(0, delay)
        return timedelta(seconds=delay)

    def can_retry(self, failed_attempt: int) -> bool:
        return failed_attempt < self.max_attempts


@dataclass(slots=True, frozen=True)
class ScheduledAttempt:
    ready_at: datetime
    request: DeliveryRequest
    attempt_number: int


class RetryScheduler:
    """Fila de temporizadores com no máximo uma entrada por request."""

    def __init__(self) -> None:
        self._heap: list[tuple[datetime, int, str]] = []
        self._entries: dict[str, tuple[int, ScheduledAttempt]] = {}
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def schedule(self, request: DeliveryRequest, attempt_number: int, ready_at: datetime) -> None:
        with self._lock:
            if request.id in self._entries:
                raise ValueError(f"Request {request.id} já possui tentativa agendada")
            seq = next(self._seq)
            self._entries[request.id] = (seq, ScheduledAttempt(ready_at, request, attempt_number))
            heapq.heappush(self._heap, (ready_at, seq, request.id))

    def pop_due(self, now: datetime, limit: int | None = None) -> list[ScheduledAttempt]:
        """Remove e retorna as entradas com ``ready_at <= now`` (mais antigas primeiro)."""
        due: list[ScheduledAttempt] = []
        with self._lock:
            while self._heap and (limit is None or len(due) < limit):
                ready_at, seq, request_id = self._heap[0]
                current = self._entries.get(request_id)
                if current is None or current[0] != seq:
                    # Entrada cancelada
                    heapq.heappop(self._heap)
                    continue
                if ready_at > now:
                    break
                heapq.heappop(self._heap)
                del self._entries[request_id]
                due.append(current[1])
        return due

    def cancel(self, request_id: str) -> bool:
        with self._lock:
            return self._entries.pop(request_id, None) is not None

    def next_ready_at(self) -> datetime | None:
        with self._lock:
            if not self._entries:
                return None
            return min(entry.ready_at for _, entry in self._entries.values())

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
