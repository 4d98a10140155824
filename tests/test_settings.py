from __future__ import annotations

import pytest

from daily_discovery.config.settings import DEFAULT_OPENROUTER_MODEL, ConfigurationError, DiscoverySettings


ENV_NAMES = (
    "OPENROUTER_API_KEY", "OPENROUTER_MODEL", "OPENAI_API_KEY", "OPENAI_MODEL", "SERPAPI_API_KEY",
    "PRODUCTHUNT_API_TOKEN", "DISCOVERY_FETCH_RETRIES", "DISCOVERY_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_from_environment_reads_keys(monkeypatch) -> None:
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-v1-abc")
    monkeypatch.setenv("SERPAPI_API_KEY", "  serp  ")
    monkeypatch.setenv("DISCOVERY_FETCH_RETRIES", "3")
    monkeypatch.setenv("DISCOVERY_LOG_LEVEL", "debug")
    monkeypatch.setenv("PRODUCTHUNT_API_TOKEN", "")

    settings = DiscoverySettings.from_environment(load_env_file=False)

    assert settings.openrouter_api_key == "sk-or-v1-abc"
    assert settings.openrouter_model == DEFAULT_OPENROUTER_MODEL
    assert settings.serpapi_api_key == "serp"
    assert settings.producthunt_api_token is None
    assert settings.fetch_retries == 3
    assert settings.log_level == "DEBUG"
    assert settings.has_ai_config()


def test_bad_retry_count_is_a_configuration_error(monkeypatch) -> None:
    monkeypatch.setenv("DISCOVERY_FETCH_RETRIES", "many")

    with pytest.raises(ConfigurationError):
        DiscoverySettings.from_environment(load_env_file=False)


def test_validate_lists_every_problem() -> None:
    settings = DiscoverySettings(openrouter_api_key="bad", openai_api_key="also-bad", fetch_retries=-1)

    with pytest.raises(ConfigurationError) as excinfo:
        settings.validate()

    message = str(excinfo.value)
    assert "OPENROUTER_API_KEY" in message
    assert "OPENAI_API_KEY" in message
    assert "DISCOVERY_FETCH_RETRIES" in message


def test_no_keys_means_no_curation() -> None:
    settings = DiscoverySettings().validate()

    assert not settings.has_ai_config()
