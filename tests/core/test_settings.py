"""Tests for HeraldSettings."""

import pytest
from pydantic import ValidationError

from herald.core.settings import HeraldSettings, get_settings


class TestHeraldSettings:
    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        settings = HeraldSettings()

        assert settings.queue_batch_size == 25
        assert settings.queue_autodrain is False
        assert settings.visibility_timeout_seconds == 900
        assert settings.scheduler_enabled is True
        assert settings.schedule_lease_seconds == 300
        assert settings.webhook_timeout_seconds == 10.0
        assert settings.error_max_length == 2000
        assert settings.database_path.name == "herald.db"

    def test_env_prefix(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HERALD_QUEUE_BATCH_SIZE", "50")
        monkeypatch.setenv("HERALD_SCHEDULER_ENABLED", "false")
        monkeypatch.setenv("HERALD_DATABASE_PATH", str(tmp_path / "h.db"))

        settings = HeraldSettings()

        assert settings.queue_batch_size == 50
        assert settings.scheduler_enabled is False
        assert settings.database_path == tmp_path / "h.db"

    def test_batch_size_bounds(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HERALD_QUEUE_BATCH_SIZE", "500")
        with pytest.raises(ValidationError):
            HeraldSettings()

    def test_dotenv_file(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("HERALD_POLL_INTERVAL_SECONDS=0.5\n")
        assert HeraldSettings().poll_interval_seconds == 0.5

    def test_get_settings_is_cached(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        assert get_settings() is get_settings()
