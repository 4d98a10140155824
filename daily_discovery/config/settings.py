"""
Runtime settings for the discovery service, read from the environment.
"""

import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv


class ConfigurationError(Exception):
    """Raised when environment configuration is malformed"""
    pass


DEFAULT_OPENROUTER_MODEL = "x-ai/grok-4-fast:free"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass
class DiscoverySettings:
    """API credentials and tuning knobs for discovery"""
    openrouter_api_key: Optional[str] = None
    openrouter_model: str = DEFAULT_OPENROUTER_MODEL
    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_OPENAI_MODEL
    serpapi_api_key: Optional[str] = None
    producthunt_api_token: Optional[str] = None
    fetch_retries: int = 2
    log_level: str = "INFO"

    @classmethod
    def from_environment(cls, load_env_file: bool = True) -> "DiscoverySettings":
        """Build settings from environment variables (and a .env file if present)."""
        if load_env_file:
            load_dotenv()

        retries_raw = _env("DISCOVERY_FETCH_RETRIES")
        try:
            fetch_retries = int(retries_raw) if retries_raw is not None else 2
        except ValueError as e:
            raise ConfigurationError(f"DISCOVERY_FETCH_RETRIES must be an integer, got {retries_raw!r}") from e

        return cls(
            openrouter_api_key=_env("OPENROUTER_API_KEY"),
            openrouter_model=_env("OPENROUTER_MODEL") or DEFAULT_OPENROUTER_MODEL,
            openai_api_key=_env("OPENAI_API_KEY"),
            openai_model=_env("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
            serpapi_api_key=_env("SERPAPI_API_KEY"),
            producthunt_api_token=_env("PRODUCTHUNT_API_TOKEN"),
            fetch_retries=fetch_retries,
            log_level=(_env("DISCOVERY_LOG_LEVEL") or "INFO").upper(),
        )

    def validate(self) -> "DiscoverySettings":
        """Check credential formats; raise ConfigurationError listing every problem."""
        problems: List[str] = []
        if self.openrouter_api_key and not self.openrouter_api_key.startswith("sk-"):
            problems.append("OPENROUTER_API_KEY must start with sk-")
        if self.openai_api_key and not self.openai_api_key.startswith("sk-"):
            problems.append("OPENAI_API_KEY must start with sk-")
        if self.fetch_retries < 0:
            problems.append("DISCOVERY_FETCH_RETRIES must not be negative")
        if not self.openrouter_model:
            problems.append("OPENROUTER_MODEL is required")

        if problems:
            raise ConfigurationError("Environment validation failed: " + "; ".join(problems))
        return self

    def has_ai_config(self) -> bool:
        return bool(self.openrouter_api_key or self.openai_api_key)
