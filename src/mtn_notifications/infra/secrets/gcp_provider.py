from __future__ import annotations

import logging
import os

from mtn_notifications.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


class SecretManagerProvider:
    """Provider para Google Cloud Secret Manager.

    Requer Application Default Credentials com permissão secretAccessor.
    """

    def __init__(self, project_id: str | None = None) -> None:
        self._project_id = project_id or os.getenv("GOOGLE_CLOUD_PROJECT")
        self._client = None  # Lazy loading

    def _get_client(self):
        """Retorna cliente do Secret Manager (lazy loading)."""
        if self._client is None:
            from google.cloud import secretmanager

            self._client = secretmanager.SecretManagerServiceClient()
        return self._client

    def _build_secret_name(self, name: str, version: str = "latest") -> str:
        """Constrói o nome completo do secret no formato GCP."""
        if not self._project_id:
            raise RuntimeError(
                "project_id não configurado. "
                "Defina GOOGLE_CLOUD_PROJECT ou passe project_id ao construtor."
            )
        return f"projects/{self._project_id}/secrets/{name}/versions/{version}"

    def get_secret(self, name: str, version: str = "latest") -> str:
        client = self._get_client()
        secret_path = self._build_secret_name(name, version)

        try:
            response = client.access_secret_version(name=secret_path)
        except Exception as e:  # noqa: BLE001
            logger.error(
                "Falha ao acessar Secret Manager",
                extra={"secret_name": name, "version": version, "error_type": type(e).__name__},
            )
            raise RuntimeError(
                f"Não foi possível acessar secret {name}: acesso negado ou não existe"
            ) from e

        logger.info(
            "Secret lido do Secret Manager",
            extra={"secret_name": name, "version": version, "provider": "secret_manager"},
        )
        return response.payload.data.decode("utf-8")

    def secret_exists(self, name: str) -> bool:
        client = self._get_client()
        try:
            client.get_secret(name=f"projects/{self._project_id}/secrets/{name}")
        except Exception:  # noqa: BLE001
            return False
        return True
