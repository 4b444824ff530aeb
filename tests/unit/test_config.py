"""
Unit tests for AppSettings — nested environment variables and backend rules.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from dgc_verifier.config import AppSettings, DatabaseSettings, GatewaySettings, StoreBackend


@pytest.fixture()
def env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> pytest.MonkeyPatch:
    monkeypatch.setenv("GATEWAY__BASE_URL", "https://drl.example.com/v1/")
    monkeypatch.setenv("RULES__SETTINGS_FILE", str(tmp_path / "settings.json"))
    return monkeypatch


class TestAppSettings:
    def test_memory_backend_needs_no_database(self, env: pytest.MonkeyPatch) -> None:
        """
        GIVEN the gateway and rules variables and STORE=memory
        WHEN the settings are loaded
        THEN defaults fill the scheduler and sync sections.
        """
        env.setenv("STORE", "memory")

        settings = AppSettings()

        assert settings.store is StoreBackend.MEMORY
        assert settings.gateway.base_url == "https://drl.example.com/v1"
        assert settings.scheduler.interval_seconds == 60
        assert settings.sync.automatic_max_size_bytes == 5 * 1024 * 1024
        assert settings.sync.staleness_hours == 24
        assert settings.rules.home_country == "IT"

    def test_postgres_backend_requires_database(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("STORE", "postgres")

        with pytest.raises(ValidationError, match="requires DATABASE__DSN"):
            AppSettings()

    def test_nested_overrides(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("STORE", "memory")
        env.setenv("SCHEDULER__INTERVAL_SECONDS", "300")
        env.setenv("SYNC__AUTOMATIC_MAX_SIZE_BYTES", "1024")
        env.setenv("RULES__HOME_COUNTRY", "fr")

        settings = AppSettings()

        assert settings.scheduler.interval_seconds == 300
        assert settings.sync.automatic_max_size_bytes == 1024
        assert settings.rules.home_country == "FR"


class TestGatewaySettings:
    def test_rejects_non_http_url(self) -> None:
        with pytest.raises(ValidationError):
            GatewaySettings(base_url="ftp://drl.example.com")


class TestDatabaseSettings:
    def test_dsn_built_from_components(self) -> None:
        settings = DatabaseSettings(host="db", name="drl", username="app", password="secret")  # type: ignore[arg-type]

        assert settings.get_dsn() == "postgresql://app:secret@db:5432/drl"

    def test_explicit_dsn_wins(self) -> None:
        settings = DatabaseSettings(dsn="postgresql://x:y@h:1/d", host="ignored")  # type: ignore[arg-type]

        assert settings.get_dsn() == "postgresql://x:y@h:1/d"

    def test_missing_components_are_named(self) -> None:
        with pytest.raises(ValidationError, match="DATABASE__PASSWORD"):
            DatabaseSettings(host="db", name="drl", username="app")

    def test_get_dsn_without_dsn_raises(self) -> None:
        settings = DatabaseSettings.model_construct()

        with pytest.raises(ValueError, match="No PostgreSQL DSN"):
            settings.get_dsn()
