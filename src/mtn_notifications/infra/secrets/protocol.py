from __future__ import annotations

from typing import Protocol


class SecretProvider(Protocol):
    """Porta para leitura de segredos (API keys dos provedores de e-mail/SMS).

    Implementações devem:
    - Nunca logar o valor do secret
    - Levantar RuntimeError se secret não encontrado
    """

    def get_secret(self, name: str, version: str = "latest") -> str:
        """Obtém o valor do segredo."""

    def secret_exists(self, name: str) -> bool:
        """Verifica se um secret existe sem retornar seu valor."""
