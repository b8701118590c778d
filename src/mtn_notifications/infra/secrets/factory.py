from __future__ import annotations

import logging

from mtn_notifications.observability.logging import get_logger

from .env_provider import EnvSecretProvider
from .gcp_provider import SecretManagerProvider
from .protocol import SecretProvider

logger: logging.Logger = get_logger(__name__)

# Nome no Secret Manager → atributo em Settings
PROVIDER_SECRET_MAPPINGS: dict[str, str] = {
    "EMAIL_API_KEY": "email_api_key",
    "SMS_API_KEY": "sms_api_key",
    "INTERNAL_TASK_TOKEN": "internal_task_token",
}


def create_secret_provider(backend: str = "env", project_id: str | None = None) -> SecretProvider:
    """Factory para criar o provider de secrets apropriado."""
    if backend == "env":
        logger.info("Usando EnvSecretProvider para secrets")
        return EnvSecretProvider()

    if backend == "secret_manager":
        logger.info("Usando SecretManagerProvider para secrets", extra={"project_id": project_id})
        return SecretManagerProvider(project_id=project_id)

    raise ValueError(f"Backend de secrets não reconhecido: {backend}")


def load_provider_secrets(provider: SecretProvider) -> dict[str, str]:
    """Carrega API keys dos provedores de entrega.

    Secrets ausentes são omitidos do resultado (a validação de Settings decide
    se a ausência é fatal para o DELIVERY_MODE configurado).
    """
    loaded: dict[str, str] = {}
    for secret_name, attr_name in PROVIDER_SECRET_MAPPINGS.items():
        if not provider.secret_exists(secret_name):
            logger.warning("Secret não encontrado", extra={"secret_name": secret_name})
            continue
        loaded[attr_name] = provider.get_secret(secret_name)
        logger.info("Secret carregado", extra={"secret_name": secret_name})
    return loaded
