"""Contadores por estágio do pipeline de entrega (Prometheus).

Cada instância usa um CollectorRegistry próprio: múltiplos apps/pipelines
no mesmo processo (ex.: testes) não colidem no registry global.
"""

from __future__ import annotations

import threading

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest

STAGES: tuple[str, ...] = (
    "admitted",
    "duplicate",
    "throttled",
    "sent",
    "failed",
    "dead_lettered",
    "reprocessed",
    "cancelled",
)

PROMETHEUS_CONTENT_TYPE = CONTENT_TYPE_LATEST


class DeliveryMetrics:
    """Contadores de admitted/duplicate/throttled/sent/failed/dead_lettered."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._events = Counter(
            "notification_delivery_events_total",
            "Eventos do pipeline de entrega por estágio e canal",
            ["stage", "channel"],
            registry=self.registry,
        )
        self._totals: dict[str, int] = dict.fromkeys(STAGES, 0)
        self._lock = threading.Lock()

    def inc(self, stage: str, channel: str = "unknown") -> None:
        """Incrementa o contador de um estágio."""
        if stage not in self._totals:
            raise ValueError(f"Estágio de métrica desconhecido: {stage}")
        self._events.labels(stage=stage, channel=channel).inc()
        with self._lock:
            self._totals[stage] += 1

    def snapshot(self) -> dict[str, int]:
        """Retorna totais por estágio (todos os canais somados)."""
        with self._lock:
            return dict(self._totals)

    def render(self) -> bytes:
        """Exposição em formato texto do Prometheus."""
        return generate_latest(self.registry)
