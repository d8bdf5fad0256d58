"""Application settings read from the environment.

`.env` in the working directory is loaded first (python-dotenv), so any
variable can be set there instead of in the shell. Unset variables fall back
to the defaults below.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

from dndbot.llm import HttpGenerationClient, ProviderFormat

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    # Generation backend
    provider_url: str = "https://api.anthropic.com"
    provider_format: ProviderFormat = "anthropic"
    api_key: str = ""
    model: str = "claude-3-5-sonnet-latest"
    max_tokens: int = 4096
    llm_timeout: float = 120.0
    max_attempts: int = 5

    # Pipeline
    max_continuations: int | None = 20
    generation_timeout: float = 15 * 60
    setting_file: Path = Path("SETTING.md")
    style_file: Path = Path("STYLE.md")

    # Files
    data_dir: Path = Path("data")
    output_dir: Path = Path("outputs")

    # Sessions and live channels
    ping_interval: float = 30.0
    idle_timeout: float = 60.0
    send_timeout: float = 10.0
    session_cache_ttl: float = 24 * 3600
    session_stale_after: float = 3600
    session_linger: float = 600
    reap_interval: float = 600
    persist_interval: float = 300

    # Rate limiting of POST /generate
    rate_limit: int = 3
    rate_window: float = 4 * 3600

    def default_setting(self) -> str:
        return _read_optional(self.setting_file)

    def default_style(self) -> str:
        return _read_optional(self.style_file)

    def make_client(self) -> HttpGenerationClient:
        return HttpGenerationClient(
            provider_url=self.provider_url,
            api_key=self.api_key,
            provider_format=self.provider_format,
            model=self.model,
            max_tokens=self.max_tokens,
            timeout=self.llm_timeout,
            max_attempts=self.max_attempts,
        )


def _read_optional(path: Path) -> str:
    if not path.is_file():
        return ""
    return path.read_text()


# env var → Settings field
_ENV_FIELDS: dict[str, str] = {
    "LLM_PROVIDER_URL": "provider_url",
    "LLM_PROVIDER_FORMAT": "provider_format",
    "LLM_MODEL": "model",
    "LLM_MAX_TOKENS": "max_tokens",
    "LLM_TIMEOUT": "llm_timeout",
    "LLM_MAX_ATTEMPTS": "max_attempts",
    "MAX_CONTINUATIONS": "max_continuations",
    "GENERATION_TIMEOUT": "generation_timeout",
    "SETTING_FILE": "setting_file",
    "STYLE_FILE": "style_file",
    "DATA_DIR": "data_dir",
    "OUTPUT_DIR": "output_dir",
    "PING_INTERVAL": "ping_interval",
    "IDLE_TIMEOUT": "idle_timeout",
    "SEND_TIMEOUT": "send_timeout",
    "SESSION_CACHE_TTL": "session_cache_ttl",
    "SESSION_STALE_AFTER": "session_stale_after",
    "SESSION_LINGER": "session_linger",
    "REAP_INTERVAL": "reap_interval",
    "PERSIST_INTERVAL": "persist_interval",
    "RATE_LIMIT": "rate_limit",
    "RATE_WINDOW": "rate_window",
}


def load_settings(env_file: Path | None = None, **overrides) -> Settings:
    """Build Settings from the environment, then apply keyword overrides."""
    load_dotenv(env_file or Path(".env"))

    values: dict = {}
    for env, field in _ENV_FIELDS.items():
        raw = os.getenv(env)
        if raw is None or raw == "":
            continue
        values[field] = raw
    if values.get("max_continuations") in ("0", "none", "None"):
        values["max_continuations"] = None

    api_key = os.getenv("LLM_API_KEY") or os.getenv("CLAUDE_API_KEY", "")
    if api_key:
        values["api_key"] = api_key

    values.update(overrides)
    settings = Settings.model_validate(values)
    if not settings.api_key and settings.provider_format != "koboldcpp":
        logger.warning("No LLM_API_KEY / CLAUDE_API_KEY set; generation calls will be rejected")
    return settings
