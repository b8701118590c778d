"""Testes para providers de secrets."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from mtn_notifications.infra.secrets import (
    EnvSecretProvider,
    create_secret_provider,
    load_provider_secrets,
)


class TestEnvSecretProvider:
    def test_reads_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EMAIL_API_KEY", "sg-key")
        assert EnvSecretProvider().get_secret("EMAIL_API_KEY") == "sg-key"

    def test_missing_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("EMAIL_API_KEY", raising=False)
        with pytest.raises(RuntimeError):
            EnvSecretProvider().get_secret("EMAIL_API_KEY")


class TestFactory:
    def test_env_backend(self) -> None:
        assert isinstance(create_secret_provider("env"), EnvSecretProvider)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError):
            create_secret_provider("vault")


class TestLoadProviderSecrets:
    def test_loads_existing_and_skips_missing(self) -> None:
        provider = MagicMock()
        provider.secret_exists.side_effect = lambda name: name != "SMS_API_KEY"
        provider.get_secret.side_effect = lambda name: f"value-{name}"

        loaded = load_provider_secrets(provider)

        assert loaded == {
            "email_api_key": "value-EMAIL_API_KEY",
            "internal_task_token": "value-INTERNAL_TASK_TOKEN",
        }
