from __future__ import annotations

from .env_provider import EnvSecretProvider
from .factory import PROVIDER_SECRET_MAPPINGS, create_secret_provider, load_provider_secrets
from .gcp_provider import SecretManagerProvider
from .protocol import SecretProvider

__all__ = [
    "SecretProvider",
    "EnvSecretProvider",
    "SecretManagerProvider",
    "PROVIDER_SECRET_MAPPINGS",
    "create_secret_provider",
    "load_provider_secrets",
]
