"""Tests for settings loading and secret masking."""

from config import Settings


class TestDatabaseUrl:
    def test_plain_postgres_url_gets_async_driver(self):
        settings = Settings(database_url="postgresql://app:pw@db:5432/cogniclear")
        assert settings.database_url == "postgresql+asyncpg://app:pw@db:5432/cogniclear"

    def test_empty_url_means_memory(self):
        assert Settings(database_url="").database_url == ""


class TestSecrets:
    def test_repr_masks_password_and_key(self):
        settings = Settings(
            database_url="postgresql://app:hunter2@db/cogniclear",
            llm_api_key="nvapi-secret",
        )

        text = repr(settings)

        assert "hunter2" not in text
        assert "nvapi-secret" not in text
        assert ":***@" in text

    def test_api_key_available_on_request(self):
        assert Settings(llm_api_key="nvapi-secret").get_llm_api_key() == "nvapi-secret"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "bedrock")
    monkeypatch.setenv("SIMULATION_MAX_SESSIONS", "5")

    settings = Settings()

    assert settings.llm_provider == "bedrock"
    assert settings.simulation_max_sessions == 5
