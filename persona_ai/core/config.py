"""
Configuration for the AI orchestration layer.

Environment configuration:
- ANTHROPIC_API_KEY / ANTHROPIC_BASE_URL / ANTHROPIC_MODEL
- OPENAI_API_KEY / OPENAI_BASE_URL / OPENAI_MODEL
- GOOGLE_AI_API_KEY / GOOGLE_AI_BASE_URL / GOOGLE_AI_MODEL
- AI_PROVIDER_TIMEOUT_SECONDS: Per-call timeout for remote providers (default: 20)
- AI_CACHE_ENABLED: "false" disables the response cache (default: true)
- AI_CACHE_TTL_SECONDS: Response cache TTL (default: 300)
- AI_CACHE_MAX_ENTRIES: Response cache size bound (default: 1000)
- AI_CIRCUIT_FAILURE_THRESHOLD (default: 3)
- AI_CIRCUIT_RECOVERY_TIMEOUT_SECONDS (default: 30)
- AI_CIRCUIT_HALF_OPEN_MAX_CALLS (default: 2)
- AI_HEALTH_CHECK_INTERVAL_SECONDS (default: 30)
- AI_HEALTH_MONITORING_ENABLED: "false" disables background probing (default: true)

A missing API key simply leaves that provider unregistered. Values can also
be supplied through a .env file at the repository root (see load_env_file).
"""
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from persona_ai.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ENV_PATH = Path(__file__).parent.parent.parent / ".env"

DEFAULT_CLAUDE_MODEL = "claude-3-sonnet-20240229"
DEFAULT_OPENAI_MODEL = "gpt-4"
DEFAULT_GEMINI_MODEL = "gemini-pro"


class ProviderSettings(BaseModel):
    """Credentials and endpoint for one remote provider."""

    api_key: str
    base_url: Optional[str] = None
    model: Optional[str] = None
    timeout_seconds: float = Field(20.0, gt=0)
    max_retries: int = Field(2, ge=0)


class AIConfig(BaseModel):
    claude: Optional[ProviderSettings] = None
    openai: Optional[ProviderSettings] = None
    google: Optional[ProviderSettings] = None

    cache_enabled: bool = True
    cache_ttl_seconds: float = Field(300.0, gt=0)
    cache_max_entries: int = Field(1000, ge=1)

    circuit_failure_threshold: int = Field(3, ge=1)
    circuit_recovery_timeout_seconds: float = Field(30.0, ge=0)
    circuit_half_open_max_calls: int = Field(2, ge=1)

    health_check_interval_seconds: float = Field(30.0, gt=0)
    health_monitoring_enabled: bool = True


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() == "true"


def _provider_from_env(prefix: str, default_model: str, timeout: float) -> Optional[ProviderSettings]:
    api_key = os.getenv(f"{prefix}_API_KEY")
    if not api_key:
        return None
    return ProviderSettings(
        api_key=api_key,
        base_url=os.getenv(f"{prefix}_BASE_URL") or None,
        model=os.getenv(f"{prefix}_MODEL") or default_model,
        timeout_seconds=timeout,
    )


def load_config_from_env() -> AIConfig:
    """Build AIConfig from environment variables."""
    timeout = float(os.getenv("AI_PROVIDER_TIMEOUT_SECONDS", "20.0") or "20.0")

    return AIConfig(
        claude=_provider_from_env("ANTHROPIC", DEFAULT_CLAUDE_MODEL, timeout),
        openai=_provider_from_env("OPENAI", DEFAULT_OPENAI_MODEL, timeout),
        google=_provider_from_env("GOOGLE_AI", DEFAULT_GEMINI_MODEL, timeout),
        cache_enabled=_env_flag("AI_CACHE_ENABLED", True),
        cache_ttl_seconds=float(os.getenv("AI_CACHE_TTL_SECONDS", "300") or "300"),
        cache_max_entries=int(os.getenv("AI_CACHE_MAX_ENTRIES", "1000") or "1000"),
        circuit_failure_threshold=int(os.getenv("AI_CIRCUIT_FAILURE_THRESHOLD", "3") or "3"),
        circuit_recovery_timeout_seconds=float(
            os.getenv("AI_CIRCUIT_RECOVERY_TIMEOUT_SECONDS", "30") or "30"
        ),
        circuit_half_open_max_calls=int(os.getenv("AI_CIRCUIT_HALF_OPEN_MAX_CALLS", "2") or "2"),
        health_check_interval_seconds=float(
            os.getenv("AI_HEALTH_CHECK_INTERVAL_SECONDS", "30") or "30"
        ),
        health_monitoring_enabled=_env_flag("AI_HEALTH_MONITORING_ENABLED", True),
    )


def validate_config(config: AIConfig) -> List[str]:
    """
    Return advisory warnings for a configuration.

    None of these prevent startup: the local fallback provider is always
    available.
    """
    warnings: List[str] = []

    if not (config.claude or config.openai or config.google):
        warnings.append("No remote AI provider configured; only the demo fallback will respond")

    if config.cache_enabled and config.cache_ttl_seconds < 1:
        warnings.append("Cache TTL should be at least 1 second")

    if config.claude and not config.claude.api_key.startswith("sk-ant-"):
        warnings.append('Claude API key should start with "sk-ant-"')

    if config.openai and not config.openai.api_key.startswith("sk-"):
        warnings.append('OpenAI API key should start with "sk-"')

    return warnings


def load_env_file(env_path: Optional[Path] = None) -> bool:
    """
    Load a .env file into the process environment.

    Variables already set in the environment take precedence. Returns
    whether a file was found.
    """
    env_path = env_path or DEFAULT_ENV_PATH
    if env_path.exists():
        load_dotenv(env_path)
        logger.info("env_loaded", env_path=str(env_path))
        return True

    logger.warning("env_file_not_found", expected_path=str(env_path))
    return False
