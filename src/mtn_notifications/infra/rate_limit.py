"""Stores de rate limit (janela fixa) por destinatário/canal.

- InMemoryRateLimitStore: dev/testes, lock por chave
- RedisRateLimitStore: INCR + EXPIRE em chave indexada pela janela,
  escalável para múltiplas instâncias
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from mtn_notifications.domain.errors import RateLimitStoreError
from mtn_notifications.domain.models import RateLimitBucket
from mtn_notifications.domain.protocols.rate_limit import RateLimitDecision, RateLimitStore
from mtn_notifications.observability.logging import get_logger
from mtn_notifications.utils.locks import KeyedLocks

if TYPE_CHECKING:
    from mtn_notifications.config.settings import Settings

logger: logging.Logger = get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def window_start_for(now: datetime, window_seconds: int) -> datetime:
    """Início da janela fixa que contém ``now`` (alinhada à epoch)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    elapsed = int((now - _EPOCH).total_seconds())
    return _EPOCH + timedelta(seconds=elapsed - elapsed % window_seconds)


def _retry_after(now: datetime, window_start: datetime, window_seconds: int) -> float:
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    window_end = window_start + timedelta(seconds=window_seconds)
    return max((window_end - now).total_seconds(), 0.0)


class InMemoryRateLimitStore(RateLimitStore):
    """Contadores em memória para desenvolvimento.

    ⚠️ Não usar em produção!
    """

    def __init__(self) -> None:
        self._buckets: dict[str, RateLimitBucket] = {}
        self._locks = KeyedLocks()

    def acquire(
        self,
        key: str,
        now: datetime,
        window_seconds: int,
        max_count: int,
    ) -> RateLimitDecision:
        """Check-and-increment atômico por chave."""
        window_start = window_start_for(now, window_seconds)

        with self._locks.hold(key):
            bucket = self._buckets.get(key)
            if bucket is None or bucket.window_start != window_start:
                # Virada de janela: zera o contador antes de testar
                bucket = RateLimitBucket(recipient=key, window_start=window_start, count=0)
                self._buckets[key] = bucket

            if bucket.count >= max_count:
                return RateLimitDecision(
                    allowed=False,
                    count=bucket.count,
                    max_count=max_count,
                    window_start=window_start,
                    retry_after_seconds=_retry_after(now, window_start, window_seconds),
                )

            bucket.count += 1
            return RateLimitDecision(
                allowed=True,
                count=bucket.count,
                max_count=max_count,
                window_start=window_start,
            )

    def purge_expired(self, now: datetime, window_seconds: int) -> int:
        current = window_start_for(now, window_seconds)
        purged = 0
        for key in list(self._buckets):
            with self._locks.hold(key):
                bucket = self._buckets.get(key)
                if bucket is not None and bucket.window_start < current:
                    del self._buckets[key]
                    purged += 1
        return purged

    def __len__(self) -> int:
        return len(self._buckets)

    def bucket(self, key: str) -> RateLimitBucket | None:
        """Retorna o bucket corrente (diagnóstico/testes)."""
        return self._buckets.get(key)


class RedisRateLimitStore(RateLimitStore):
    """Rate limit via Redis.

    Características:
    - Chave ``ratelimit:{key}:{window_start_epoch}`` isola cada janela
    - INCR atômico; EXPIRE na primeira ocorrência
    - Pedido negado desfaz o incremento (contador nunca passa do máximo)
    """

    def __init__(
        self,
        redis_client: Any,
        key_prefix: str = "ratelimit:",
        fail_closed: bool = True,
    ) -> None:
        self._redis = redis_client
        self._prefix = key_prefix
        self._fail_closed = fail_closed

    def acquire(
        self,
        key: str,
        now: datetime,
        window_seconds: int,
        max_count: int,
    ) -> RateLimitDecision:
        window_start = window_start_for(now, window_seconds)
        redis_key = f"{self._prefix}{key}:{int(window_start.timestamp())}"

        try:
            count = int(self._redis.incr(redis_key))
            if count == 1:
                # Primeira ocorrência: TTL cobre a janela inteira
                self._redis.expire(redis_key, window_seconds)
            if count > max_count:
                self._redis.decr(redis_key)
        except Exception as e:
            logger.error(
                "Redis rate limit error",
                extra={"operation": "acquire", "error_type": type(e).__name__},
            )
            if self._fail_closed:
                raise RateLimitStoreError(f"Falha ao consultar rate limit: {e}") from e
            # Sem fail-closed: assume permitido (não bloqueia envio)
            return RateLimitDecision(
                allowed=True, count=0, max_count=max_count, window_start=window_start
            )

        if count > max_count:
            return RateLimitDecision(
                allowed=False,
                count=max_count,
                max_count=max_count,
                window_start=window_start,
                retry_after_seconds=_retry_after(now, window_start, window_seconds),
            )
        return RateLimitDecision(
            allowed=True, count=count, max_count=max_count, window_start=window_start
        )

    def purge_expired(self, now: datetime, window_seconds: int) -> int:
        """Chaves de janela expiram sozinhas via EXPIRE."""
        return 0


def create_rate_limit_store(
    settings: Settings,
    redis_client: Any | None = None,
) -> RateLimitStore:
    """Factory para o store de rate limit conforme RATE_LIMIT_BACKEND.

    Raises:
        ValueError: Se backend inválido ou cliente Redis indisponível
    """
    backend = settings.rate_limit_backend.lower()

    if backend == "memory":
        logger.warning(
            "Using in-memory rate limit store (dev only)",
            extra={
                "max_count": settings.rate_limit_max_count,
                "window_seconds": settings.rate_limit_window_seconds,
            },
        )
        return InMemoryRateLimitStore()

    if backend == "redis":
        if redis_client is None:
            if not settings.redis_url:
                raise ValueError("REDIS_URL é obrigatório quando rate_limit_backend=redis")
            import redis

            redis_client = redis.from_url(settings.redis_url, decode_responses=True)
        fail_closed = settings.is_production or settings.is_staging
        logger.info("Using Redis rate limit store (distributed)")
        return RedisRateLimitStore(redis_client, fail_closed=fail_closed)

    raise ValueError(f"Unknown rate limit backend: {backend}")
