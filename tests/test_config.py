"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from mailroom.core.config import ApiSettings, CacheSettings, load_app_settings


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    """Ensure each test sees a fresh settings instance."""

    load_app_settings.cache_clear()


def test_defaults_loaded_without_env_file() -> None:
    """Default values should be returned when no overrides are present."""

    settings = load_app_settings(include_environment=False)
    assert settings.storage.db_path == Path("./mailroom.db")
    assert settings.cache.list_ttl_seconds == 120
    assert settings.cache.tag_ttl_seconds == 300
    assert settings.dispatch.webhook_url is None
    assert settings.api.default_page_size == 25


def test_env_file_overrides(tmp_path: Path) -> None:
    """Values defined in an env file should override defaults."""

    env_file = tmp_path / "test.env"
    env_file.write_text(
        "MAILROOM_CACHE__LIST_TTL_SECONDS=30\n"
        "MAILROOM_LOGGING__STRUCTURED=true\n"
        "MAILROOM_DISPATCH__WEBHOOK_URL=\n"
        "UNRELATED_SETTING=1\n",
        encoding="utf-8",
    )

    settings = load_app_settings(env_file=env_file, include_environment=False)
    assert settings.cache.list_ttl_seconds == 30
    assert settings.logging.structured is True
    assert settings.dispatch.webhook_url is None


def test_environment_wins_over_env_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / "test.env"
    env_file.write_text("MAILROOM_STORAGE__POOL_SIZE=3\n", encoding="utf-8")
    monkeypatch.setenv("MAILROOM_STORAGE__POOL_SIZE", "7")

    settings = load_app_settings(env_file=env_file)
    assert settings.storage.pool_size == 7


def test_missing_env_file_is_ignored(tmp_path: Path) -> None:
    settings = load_app_settings(
        env_file=tmp_path / "missing.env", include_environment=False
    )
    assert settings.storage.pool_size == 5


def test_cache_ttl_is_bounded_to_minutes() -> None:
    with pytest.raises(PydanticValidationError):
        CacheSettings(list_ttl_seconds=24 * 3600)
    with pytest.raises(PydanticValidationError):
        CacheSettings(tag_ttl_seconds=0)


def test_page_size_bounds_are_checked() -> None:
    with pytest.raises(PydanticValidationError):
        ApiSettings(default_page_size=200, max_page_size=100)
