"""
Unit tests for environment-driven AI configuration.
"""
import pytest
from pydantic import ValidationError

from persona_ai.core.config import (
    DEFAULT_CLAUDE_MODEL,
    DEFAULT_OPENAI_MODEL,
    AIConfig,
    ProviderSettings,
    load_config_from_env,
    load_env_file,
    validate_config,
)

ENV_VARS = [
    "ANTHROPIC_API_KEY", "ANTHROPIC_BASE_URL", "ANTHROPIC_MODEL",
    "OPENAI_API_KEY", "OPENAI_BASE_URL", "OPENAI_MODEL",
    "GOOGLE_AI_API_KEY", "GOOGLE_AI_BASE_URL", "GOOGLE_AI_MODEL",
    "AI_PROVIDER_TIMEOUT_SECONDS", "AI_CACHE_ENABLED", "AI_CACHE_TTL_SECONDS",
    "AI_CACHE_MAX_ENTRIES", "AI_CIRCUIT_FAILURE_THRESHOLD",
    "AI_CIRCUIT_RECOVERY_TIMEOUT_SECONDS", "AI_CIRCUIT_HALF_OPEN_MAX_CALLS",
    "AI_HEALTH_CHECK_INTERVAL_SECONDS", "AI_HEALTH_MONITORING_ENABLED",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        # setenv first so teardown also removes values loaded from .env files
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


def test_defaults_without_environment(clean_env):
    config = load_config_from_env()

    assert config.claude is None
    assert config.openai is None
    assert config.google is None
    assert config.cache_enabled is True
    assert config.cache_ttl_seconds == 300
    assert config.cache_max_entries == 1000
    assert config.circuit_failure_threshold == 3
    assert config.circuit_recovery_timeout_seconds == 30
    assert config.circuit_half_open_max_calls == 2
    assert config.health_monitoring_enabled is True


def test_provider_settings_from_environment(clean_env):
    clean_env.setenv("ANTHROPIC_API_KEY", "sk-ant-123")
    clean_env.setenv("OPENAI_API_KEY", "sk-456")
    clean_env.setenv("OPENAI_MODEL", "gpt-3.5-turbo")
    clean_env.setenv("AI_PROVIDER_TIMEOUT_SECONDS", "7.5")

    config = load_config_from_env()

    assert config.claude.api_key == "sk-ant-123"
    assert config.claude.model == DEFAULT_CLAUDE_MODEL
    assert config.claude.timeout_seconds == 7.5
    assert config.openai.model == "gpt-3.5-turbo"
    assert config.openai.model != DEFAULT_OPENAI_MODEL
    assert config.google is None


def test_flags_and_tunables_from_environment(clean_env):
    clean_env.setenv("AI_CACHE_ENABLED", "false")
    clean_env.setenv("AI_CACHE_TTL_SECONDS", "60")
    clean_env.setenv("AI_CIRCUIT_FAILURE_THRESHOLD", "5")
    clean_env.setenv("AI_HEALTH_MONITORING_ENABLED", "FALSE")

    config = load_config_from_env()

    assert config.cache_enabled is False
    assert config.cache_ttl_seconds == 60
    assert config.circuit_failure_threshold == 5
    assert config.health_monitoring_enabled is False


def test_invalid_values_rejected(clean_env):
    clean_env.setenv("AI_CIRCUIT_FAILURE_THRESHOLD", "0")
    with pytest.raises(ValidationError):
        load_config_from_env()


def test_validate_config_warns_without_remote_providers():
    warnings = validate_config(AIConfig())
    assert any("demo fallback" in w for w in warnings)


def test_validate_config_warns_on_key_format():
    config = AIConfig(
        claude=ProviderSettings(api_key="wrong"),
        openai=ProviderSettings(api_key="also-wrong"),
    )

    warnings = validate_config(config)

    assert len(warnings) == 2


def test_validate_config_clean():
    config = AIConfig(claude=ProviderSettings(api_key="sk-ant-ok"), openai=ProviderSettings(api_key="sk-ok"))
    assert validate_config(config) == []


def test_load_env_file(clean_env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("OPENAI_API_KEY=sk-from-file\nAI_CACHE_TTL_SECONDS=42\n")

    assert load_env_file(env_file) is True
    config = load_config_from_env()

    assert config.openai.api_key == "sk-from-file"
    assert config.cache_ttl_seconds == 42


def test_load_env_file_does_not_override_environment(clean_env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("OPENAI_API_KEY=sk-from-file\n")
    clean_env.setenv("OPENAI_API_KEY", "sk-from-env")

    load_env_file(env_file)

    assert load_config_from_env().openai.api_key == "sk-from-env"


def test_load_env_file_missing(tmp_path):
    assert load_env_file(tmp_path / "missing.env") is False
