"""Stores de idempotência para pedidos de entrega.

Garantem que um pedido com a mesma idempotency_key não seja processado
duas vezes dentro da janela (padrão: 5 minutos).

- Redis é o backend recomendado para produção (SET NX EX)
- Fail-closed: em caso de erro de backend, o pedido NÃO é processado
- InMemoryIdempotencyStore apenas para dev/testes
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from mtn_notifications.domain.errors import IdempotencyStoreError
from mtn_notifications.domain.models import IdempotencyRecord
from mtn_notifications.domain.protocols.idempotency import IdempotencyStore
from mtn_notifications.observability.logging import get_logger
from mtn_notifications.utils.locks import KeyedLocks

if TYPE_CHECKING:
    from mtn_notifications.config.settings import Settings

logger: logging.Logger = get_logger(__name__)


def _key_preview(key: str) -> str:
    return key[:16] + "..." if len(key) > 16 else key


class InMemoryIdempotencyStore(IdempotencyStore):
    """Store em memória para desenvolvimento e testes.

    ATENÇÃO: Não usar em produção!
    - Não persiste entre restarts
    - Não funciona com múltiplas instâncias
    """

    def __init__(self) -> None:
        self._seen: dict[str, datetime] = {}
        self._locks = KeyedLocks()

    def insert_if_absent(
        self, key: str, now: datetime, window_seconds: int
    ) -> IdempotencyRecord | None:
        """Check-and-insert atômico por chave, com purga preguiçosa."""
        window = timedelta(seconds=window_seconds)
        with self._locks.hold(key):
            first_seen = self._seen.get(key)
            if first_seen is not None and now - first_seen < window:
                logger.debug(
                    "Idempotency hit (in-memory)",
                    extra={"key": _key_preview(key), "is_duplicate": True},
                )
                return IdempotencyRecord(idempotency_key=key, first_seen_at=first_seen)

            self._seen[key] = now
            logger.debug(
                "Idempotency miss (in-memory)",
                extra={"key": _key_preview(key), "is_duplicate": False},
            )
            return None

    def release(self, key: str) -> bool:
        with self._locks.hold(key):
            return self._seen.pop(key, None) is not None

    def purge_expired(self, now: datetime, window_seconds: int) -> int:
        window = timedelta(seconds=window_seconds)
        expired = [k for k, ts in list(self._seen.items()) if now - ts >= window]
        purged = 0
        for key in expired:
            with self._locks.hold(key):
                first_seen = self._seen.get(key)
                if first_seen is not None and now - first_seen >= window:
                    del self._seen[key]
                    purged += 1
        return purged

    def __len__(self) -> int:
        return len(self._seen)


class RedisIdempotencyStore(IdempotencyStore):
    """Store via Redis com TTL nativo.

    - SET NX EX garante atomicidade entre instâncias
    - O valor guarda first_seen_at (ISO 8601) para diagnóstico
    - Fail-closed: erro de conexão levanta IdempotencyStoreError
    """

    def __init__(
        self,
        redis_client: Any,
        key_prefix: str = "idempotency:",
        fail_closed: bool = True,
    ) -> None:
        self._redis = redis_client
        self._prefix = key_prefix
        self._fail_closed = fail_closed

    def _make_key(self, key: str) -> str:
        """Adiciona prefixo à chave."""
        return f"{self._prefix}{key}"

    def insert_if_absent(
        self, key: str, now: datetime, window_seconds: int
    ) -> IdempotencyRecord | None:
        redis_key = self._make_key(key)
        try:
            was_set = self._redis.set(redis_key, now.isoformat(), nx=True, ex=window_seconds)
            if was_set:
                return None

            existing = self._redis.get(redis_key)
        except Exception as e:
            logger.error(
                "Erro em operação Redis",
                extra={"operation": "insert_if_absent", "error_type": type(e).__name__},
            )
            if self._fail_closed:
                raise IdempotencyStoreError(f"Falha ao verificar idempotência: {e}") from e
            logger.warning("Redis indisponível, ignorando idempotência")
            return None

        if isinstance(existing, bytes):
            existing = existing.decode("utf-8")
        first_seen = datetime.fromisoformat(existing) if existing else now
        logger.debug(
            "Idempotency hit (Redis)",
            extra={"key": _key_preview(key), "is_duplicate": True},
        )
        return IdempotencyRecord(idempotency_key=key, first_seen_at=first_seen)

    def release(self, key: str) -> bool:
        try:
            return self._redis.delete(self._make_key(key)) > 0
        except Exception as e:
            logger.warning("Erro ao remover chave", extra={"error_type": type(e).__name__})
            if self._fail_closed:
                raise IdempotencyStoreError(f"Falha ao liberar chave: {e}") from e
            return False

    def purge_expired(self, now: datetime, window_seconds: int) -> int:
        """Redis expira chaves sozinho (EX)."""
        return 0


def create_idempotency_store(
    settings: Settings,
    redis_client: Any | None = None,
) -> IdempotencyStore:
    """Factory para o store de idempotência conforme IDEMPOTENCY_BACKEND.

    Raises:
        ValueError: Se backend não reconhecido ou Redis sem URL
    """
    backend = settings.idempotency_backend.lower()

    if backend == "memory":
        logger.info(
            "Usando InMemoryIdempotencyStore (apenas dev/testes)",
            extra={"window_seconds": settings.idempotency_window_seconds},
        )
        return InMemoryIdempotencyStore()

    if backend == "redis":
        if redis_client is None:
            if not settings.redis_url:
                raise ValueError("REDIS_URL é obrigatório quando idempotency_backend=redis")
            import redis

            redis_client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
            )
        fail_closed = settings.is_production or settings.is_staging
        logger.info("Usando RedisIdempotencyStore", extra={"fail_closed": fail_closed})
        return RedisIdempotencyStore(redis_client, fail_closed=fail_closed)

    raise ValueError(f"Backend de idempotência não reconhecido: {backend}")
