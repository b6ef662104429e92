"""Tests for environment-driven settings."""

from xoarena.config import Settings
from xoarena.sql_store import SQLRecordStore, create_session_factory
from xoarena.records import GameRecord


def test_defaults():
    settings = Settings.from_env({})

    assert settings.host == "0.0.0.0"
    assert settings.port == 8000
    assert settings.ai_delay == (0.5, 0.7)
    assert settings.log_level == "INFO"
    assert not settings.uses_memory_store


def test_environment_overrides():
    settings = Settings.from_env(
        {
            "XOARENA_PORT": "9001",
            "XOARENA_DATABASE_URL": "memory://",
            "XOARENA_AI_DELAY_MIN": "0",
            "XOARENA_AI_DELAY_MAX": "0",
            "XOARENA_LOG_LEVEL": "debug",
        }
    )

    assert settings.port == 9001
    assert settings.uses_memory_store
    assert settings.ai_delay == (0.0, 0.0)
    assert settings.log_level == "DEBUG"


def test_inverted_delay_range_is_clamped():
    assert Settings(ai_delay_min=0.9, ai_delay_max=0.2).ai_delay == (0.9, 0.9)


def test_session_factory_creates_schema():
    store = SQLRecordStore(create_session_factory("sqlite:///:memory:"))
    created = store.create(GameRecord(id="", player_x_id="a", player_x_name="A"))

    assert store.get(created.id).player_x_name == "A"
