"""Tests for environment-driven settings."""

import os

import pytest
from pydantic import ValidationError

from apptokens.config import Settings, get_settings, reset_settings_cache


def test_from_env_reads_declared_env_names(monkeypatch):
    monkeypatch.setenv("SESSION_TTL_MINUTES", "15")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example, https://b.example")

    settings = Settings.from_env()

    assert settings.session_ttl_minutes == 15
    assert settings.cors_allow_origins == ["https://a.example", "https://b.example"]


def test_token_secret_is_generated_and_persisted(monkeypatch, tmp_path):
    monkeypatch.delenv("TOKEN_SECRET", raising=False)
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))

    first = Settings.from_env()
    second = Settings.from_env()

    assert len(first.token_secret) >= 32
    assert first.token_secret == second.token_secret
    secret_file = tmp_path / ".token_secret"
    assert secret_file.read_text().strip() == first.token_secret
    assert oct(os.stat(secret_file).st_mode & 0o777) == "0o600"


def test_explicit_token_secret_wins(monkeypatch):
    monkeypatch.setenv("TOKEN_SECRET", "explicit-secret-value-for-tests-only")
    assert Settings.from_env().token_secret == "explicit-secret-value-for-tests-only"


def test_non_positive_ttl_rejected():
    with pytest.raises(ValidationError):
        Settings(token_secret="x" * 40, session_ttl_minutes=0)


def test_settings_cache(monkeypatch):
    reset_settings_cache()
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("SESSION_TTL_MINUTES", "5")
    reset_settings_cache()
    assert get_settings().session_ttl_minutes == 5
