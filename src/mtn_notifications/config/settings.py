"""Configurações do serviço de notificações via variáveis de ambiente.

Todas as configurações são carregadas de env vars ou Secret Manager.
Nunca hardcode secrets (API keys de provedores) ou valores sensíveis.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

from mtn_notifications.infra.secrets import create_secret_provider, load_provider_secrets
from mtn_notifications.observability.logging import get_logger

# -----------------------------------------------------------------------------
# Padrões do pipeline de entrega (Notification Service do Sistema de Admisión)
# -----------------------------------------------------------------------------
DEFAULT_IDEMPOTENCY_WINDOW_SECONDS: int = 300  # janela de 5 minutos
DEFAULT_RETRY_MAX_ATTEMPTS: int = 5  # 5 níveis de backoff exponencial


class Settings(BaseSettings):
    """Configurações lidas do ambiente."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    # Aplicação
    service_name: str = "mtn_notifications"
    version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "json"  # json | text
    correlation_id_header: str = "X-Correlation-ID"

    # Idempotência (janela de deduplicação)
    idempotency_backend: str = "memory"  # memory | redis
    idempotency_window_seconds: int = DEFAULT_IDEMPOTENCY_WINDOW_SECONDS
    redis_url: str | None = None

    # Rate limiting por destinatário/canal (janela fixa)
    rate_limit_backend: str = "memory"  # memory | redis
    rate_limit_window_seconds: int = 60
    rate_limit_max_count: int = 10

    # Retry com backoff exponencial
    retry_max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS
    retry_base_seconds: float = 1.0
    retry_max_delay_seconds: float = 300.0
    retry_jitter: bool = False

    # Dead-letter
    dead_letter_backend: str = "memory"  # memory | firestore
    firestore_project_id: str | None = None
    gcp_project: str | None = None
    dead_letter_collection: str = "notification_dead_letters"

    # Canais (mock em desenvolvimento, http em produção)
    delivery_mode: str = "mock"  # mock | http
    email_api_url: str | None = None
    email_api_key: str | None = None
    email_from_address: str = "admision@mtn.cl"
    email_from_name: str = "Sistema de Admisión MTN"
    sms_api_url: str | None = None
    sms_api_key: str | None = None
    sms_sender_id: str = "MTN"
    transport_timeout_seconds: float = 15.0
    transport_circuit_breaker_enabled: bool = False
    transport_circuit_breaker_fail_max: int = 5
    transport_circuit_breaker_reset_timeout_seconds: float = 60.0
    transport_circuit_breaker_half_open_max_calls: int = 1

    # Templates
    templates_path: str | None = None  # JSON com templates adicionais

    # Workers / fila de eventos
    worker_concurrency: int = 4
    worker_idle_poll_seconds: float = 1.0
    event_consumer_batch_size: int = 10
    housekeeping_interval_seconds: float = 60.0
    ledger_retention_seconds: int = 24 * 60 * 60

    # Endpoints internos/administrativos
    internal_task_token: str | None = None
    internal_token_header: str = "X-Internal-Token"

    @property
    def is_production(self) -> bool:
        """Retorna True se ambiente é produção."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_staging(self) -> bool:
        """Retorna True se ambiente é staging."""
        return self.environment.lower() in ("staging", "stage")

    @property
    def is_development(self) -> bool:
        """Retorna True se ambiente é desenvolvimento."""
        return self.environment.lower() in ("development", "dev", "local", "test")

    def validate_idempotency_config(self) -> list[str]:
        """Valida backend e janela de idempotência."""
        errors: list[str] = []
        backend = self.idempotency_backend.lower()
        if backend not in {"memory", "redis"}:
            errors.append("IDEMPOTENCY_BACKEND inválido: use memory | redis")
        if backend == "memory" and (self.is_staging or self.is_production):
            errors.append(
                "IDEMPOTENCY_BACKEND=memory é proibido em staging/production. Configure Redis."
            )
        if backend == "redis" and not self.redis_url:
            errors.append("IDEMPOTENCY_BACKEND=redis requer REDIS_URL configurado")
        if self.idempotency_window_seconds <= 0:
            errors.append("IDEMPOTENCY_WINDOW_SECONDS deve ser > 0")
        return errors

    def validate_rate_limit_config(self) -> list[str]:
        """Valida backend e limites do rate limiter."""
        errors: list[str] = []
        backend = self.rate_limit_backend.lower()
        if backend not in {"memory", "redis"}:
            errors.append("RATE_LIMIT_BACKEND inválido: use memory | redis")
        if backend == "memory" and (self.is_staging or self.is_production):
            errors.append("RATE_LIMIT_BACKEND=memory é proibido em staging/production")
        if backend == "redis" and not self.redis_url:
            errors.append("RATE_LIMIT_BACKEND=redis requer REDIS_URL configurado")
        if self.rate_limit_window_seconds <= 0:
            errors.append("RATE_LIMIT_WINDOW_SECONDS deve ser > 0")
        if self.rate_limit_max_count < 1:
            errors.append("RATE_LIMIT_MAX_COUNT deve ser >= 1")
        return errors

    def validate_retry_config(self) -> list[str]:
        """Valida política de backoff."""
        errors: list[str] = []
        if self.retry_max_attempts < 1:
            errors.append("RETRY_MAX_ATTEMPTS deve ser >= 1")
        if self.retry_base_seconds <= 0:
            errors.append("RETRY_BASE_SECONDS deve ser > 0")
        if self.retry_max_delay_seconds < self.retry_base_seconds:
            errors.append("RETRY_MAX_DELAY_SECONDS deve ser >= RETRY_BASE_SECONDS")
        return errors

    def validate_dead_letter_config(self) -> list[str]:
        """Valida backend do dead-letter (persistência durável em prod)."""
        errors: list[str] = []
        backend = self.dead_letter_backend.lower()
        if backend not in {"memory", "firestore"}:
            errors.append("DEAD_LETTER_BACKEND inválido: use memory | firestore")
        if backend == "memory" and (self.is_staging or self.is_production):
            errors.append("DEAD_LETTER_BACKEND=memory é proibido em staging/production")
        if backend == "firestore" and not (self.firestore_project_id or self.gcp_project):
            errors.append(
                "DEAD_LETTER_BACKEND=firestore requer FIRESTORE_PROJECT_ID ou GCP_PROJECT"
            )
        return errors

    def validate_delivery_config(self) -> list[str]:
        """Valida modo de entrega e credenciais dos provedores."""
        errors: list[str] = []
        mode = self.delivery_mode.lower()
        if mode not in {"mock", "http"}:
            errors.append("DELIVERY_MODE inválido: use mock | http")
        if mode == "mock" and self.is_production:
            errors.append("DELIVERY_MODE=mock é proibido em production")
        if mode == "http":
            if not self.email_api_url:
                errors.append("DELIVERY_MODE=http requer EMAIL_API_URL")
            if not self.sms_api_url:
                errors.append("DELIVERY_MODE=http requer SMS_API_URL")
            if not self.email_api_key:
                errors.append("EMAIL_API_KEY não configurado")
            if not self.sms_api_key:
                errors.append("SMS_API_KEY não configurado")
        if self.worker_concurrency < 1:
            errors.append("WORKER_CONCURRENCY deve ser >= 1")
        if self.housekeeping_interval_seconds <= 0:
            errors.append("HOUSEKEEPING_INTERVAL_SECONDS deve ser > 0")
        if self.ledger_retention_seconds < 0:
            errors.append("LEDGER_RETENTION_SECONDS deve ser >= 0")
        return errors

    def validate_all(self) -> list[str]:
        """Agrega todas as validações (vazia = OK)."""
        errors: list[str] = []
        errors.extend(self.validate_idempotency_config())
        errors.extend(self.validate_rate_limit_config())
        errors.extend(self.validate_retry_config())
        errors.extend(self.validate_dead_letter_config())
        errors.extend(self.validate_delivery_config())
        return errors

    def model_post_init(self, __context: Any) -> None:
        """Carrega API keys do Secret Manager em staging/production.

        - Nunca logar valores de secrets
        - Fail-closed em produção se o Secret Manager não responder
        """
        logger: logging.Logger = get_logger(__name__)

        if not (self.is_staging or self.is_production):
            return

        # PYTEST_CURRENT_TEST é setado pelo pytest: evita chamada real ao GCP.
        if os.getenv("PYTEST_CURRENT_TEST"):
            logger.info(
                "Pulando Secret Manager em ambiente de teste controlado",
                extra={"environment": self.environment},
            )
            return

        project_id = os.getenv("GOOGLE_CLOUD_PROJECT") or self.gcp_project
        if not project_id:
            raise RuntimeError("GOOGLE_CLOUD_PROJECT obrigatório em staging/production")

        try:
            provider = create_secret_provider(backend="secret_manager", project_id=project_id)
            loaded = load_provider_secrets(provider)
        except Exception as e:
            logger.error(
                "Falha ao carregar secrets do Secret Manager",
                extra={"error": type(e).__name__, "environment": self.environment},
            )
            raise RuntimeError(
                f"Não foi possível carregar secrets: {type(e).__name__}"
            ) from e

        for attr_name, value in loaded.items():
            setattr(self, attr_name, value)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Retorna uma instância cacheada de Settings."""
    return Settings()
