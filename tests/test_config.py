"""Tests for Settings, the system prompt and small utilities."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from cadence.agent.prompts import build_system_prompt
from cadence.config import Settings
from cadence.utils import preview_title, to_millis


class TestSettings:
    def test_defaults(self, monkeypatch):
        for var in ("CADENCE_MAX_ROUNDS", "CADENCE_MODEL", "CADENCE_DATABASE_URL"):
            monkeypatch.delenv(var, raising=False)
        settings = Settings(_env_file=None)
        assert settings.max_rounds == 10
        assert settings.db_url.startswith("postgresql+asyncpg://")

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("CADENCE_MAX_ROUNDS", "3")
        monkeypatch.setenv("CADENCE_MODEL", "claude-test")
        settings = Settings(_env_file=None)
        assert settings.max_rounds == 3
        assert settings.model == "claude-test"

    def test_unprefixed_aliases(self, monkeypatch):
        monkeypatch.setenv("DB_HOST", "db.internal")
        monkeypatch.setenv("DB_PORT", "6543")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-api03-test")
        monkeypatch.delenv("CADENCE_DATABASE_URL", raising=False)
        settings = Settings(_env_file=None)
        assert settings.db_url.endswith("@db.internal:6543/cadence")
        assert settings.anthropic_api_key == "sk-ant-api03-test"

    def test_database_url_override(self):
        settings = Settings(_env_file=None, database_url="sqlite+aiosqlite:///:memory:")
        assert settings.db_url == "sqlite+aiosqlite:///:memory:"

    def test_rounds_must_be_positive(self):
        with pytest.raises(ValidationError, match="max_rounds"):
            Settings(_env_file=None, max_rounds=0)

    def test_negative_timeout_rejected(self):
        with pytest.raises(ValidationError, match="round_timeout"):
            Settings(_env_file=None, round_timeout=-1)


class TestSystemPrompt:
    def test_identity_and_time(self):
        settings = Settings(_env_file=None, assistant_name="Cadence")
        prompt = build_system_prompt(settings, datetime(2026, 2, 19, 9, 5, 30), user_name="Sam")

        assert prompt.startswith("You are Cadence,")
        assert "You are helping Sam." in prompt
        assert "Thursday, February 19, 2026 at 9:05 AM" in prompt
        assert "2026-02-19T09:05:30" in prompt
        assert "confirmation" in prompt

    def test_default_user(self):
        prompt = build_system_prompt(Settings(_env_file=None), datetime(2026, 2, 19, 21, 0))
        assert "You are helping the user." in prompt
        assert "9:00 PM" in prompt


class TestUtils:
    def test_to_millis_aware(self):
        assert to_millis(datetime(1970, 1, 1, 0, 0, 1, tzinfo=UTC)) == 1000

    def test_to_millis_naive_is_utc(self):
        assert to_millis(datetime(1970, 1, 1, 0, 0, 2)) == 2000

    def test_preview_title_short(self):
        assert preview_title("Groceries") == "Groceries"

    def test_preview_title_boundary(self):
        assert preview_title("x" * 34) == "x" * 34
        assert preview_title("x" * 35) == "x" * 33 + "…"
