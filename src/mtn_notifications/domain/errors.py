"""Taxonomia fechada de erros do pipeline de entrega.

- DuplicateRequest, Throttled, TemplateNotFound, MissingVariable: rejeição
  síncrona ao chamador, sem efeito colateral além de log.
- TransientTransportError: recuperado localmente pelo Retry Scheduler.
- PermanentTransportError, RetriesExhausted: vão para o Dead-Letter Sink.

Falhas de backend (Redis/Firestore) usam erros próprios de store e são
fail-closed, fora da taxonomia de entrega.
"""

from __future__ import annotations


class DeliveryError(Exception):
    """Raiz da taxonomia de erros de entrega."""


class DuplicateRequest(DeliveryError):
    """Chave de idempotência já vista dentro da janela."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(f"Pedido duplicado dentro da janela de idempotência: {idempotency_key}")
        self.idempotency_key = idempotency_key


class Throttled(DeliveryError):
    """Destinatário excedeu o limite da janela corrente."""

    def __init__(self, recipient_key: str, retry_after_seconds: float) -> None:
        super().__init__(f"Limite de envio excedido; tente novamente em {retry_after_seconds:.0f}s")
        self.recipient_key = recipient_key
        self.retry_after_seconds = retry_after_seconds


class RenderError(DeliveryError):
    """Erro genérico de renderização de template."""


class TemplateNotFound(RenderError):
    """Template não registrado (ou não suporta o canal pedido)."""

    def __init__(self, template_name: str, detail: str | None = None) -> None:
        super().__init__(detail or f"Template não encontrado: {template_name}")
        self.template_name = template_name


class MissingVariable(RenderError):
    """Placeholder referenciado sem valor e sem default."""

    def __init__(self, template_name: str, variable: str) -> None:
        super().__init__(f"Variável ausente no template {template_name}: {variable}")
        self.template_name = template_name
        self.variable = variable


class TransportError(DeliveryError):
    """Erro classificado de channel adapter."""


class TransientTransportError(TransportError):
    """Falha transitória (timeout, 5xx, 429): elegível para retry."""


class PermanentTransportError(TransportError):
    """Falha permanente (destinatário inválido, 4xx): direto para dead-letter."""


class RetriesExhausted(DeliveryError):
    """Todas as tentativas falharam de forma transitória."""

    def __init__(self, request_id: str, attempts: int, last_error: str) -> None:
        super().__init__(
            f"Tentativas esgotadas para {request_id} após {attempts} tentativas: {last_error}"
        )
        self.request_id = request_id
        self.attempts = attempts
        self.last_error = last_error


class RequestNotFound(Exception):
    """Request ou entrada de dead-letter inexistente."""


class NotCancellable(Exception):
    """Request não pode ser cancelada (terminal ou com tentativa em andamento)."""


class IdempotencyStoreError(Exception):
    """Falha no backend de idempotência (fail-closed: não processa)."""


class RateLimitStoreError(Exception):
    """Falha no backend de rate limit (fail-closed: não processa)."""


class DeadLetterStoreError(Exception):
    """Falha ao persistir/consultar dead-letter."""


class NotReprocessable(Exception):
    """Request existe mas não está em dead-letter (já reprocessada)."""
