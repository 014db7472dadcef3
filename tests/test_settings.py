"""Configuration settings behaviour tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from vetro.config import Settings


def test_defaults() -> None:
    settings = Settings(_env_file=None, OPENROUTER_API_KEY="")

    assert settings.server_port == 3001
    assert settings.storage_dir == Path("./storage/films")
    assert settings.openrouter_model == "google/gemini-2.5-flash-lite"
    assert settings.enrichment_retry_limit == 3
    assert not settings.enrichment_available


def test_blank_api_key_is_treated_as_missing() -> None:
    settings = Settings(_env_file=None, OPENROUTER_API_KEY="   ")

    assert settings.openrouter_api_key is None
    assert not settings.enrichment_available


def test_environment_variables_are_read(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORAGE_DIR", "/srv/films")
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    monkeypatch.setenv("WATCH_ENABLED", "false")

    settings = Settings(_env_file=None)

    assert settings.storage_dir == Path("/srv/films")
    assert settings.enrichment_available
    assert settings.watch_enabled is False


def test_retry_limit_is_bounded() -> None:
    with pytest.raises(ValueError):
        Settings(_env_file=None, ENRICHMENT_RETRY_LIMIT=0)
    with pytest.raises(ValueError):
        Settings(_env_file=None, ENRICHMENT_RETRY_LIMIT=11)
