"""Application settings resolved from environment variables."""

import os
from dataclasses import dataclass, field

DEFAULT_MODEL = "claude-sonnet-4-20250514"


def _split_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass
class Settings:
    """Runtime settings for the Flynn service."""

    anthropic_api_key: str | None = None
    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    temperature: float = 0.7

    # Conversation loop bounds
    max_turns: int = 10
    model_timeout_seconds: float = 120.0
    tool_timeout_seconds: float = 30.0

    database_path: str = "data/flynn.db"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @property
    def model_configured(self) -> bool:
        """Whether a model provider can be created."""
        return bool(self.anthropic_api_key)


def load_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings(
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
        model=os.getenv("FLYNN_MODEL", DEFAULT_MODEL),
        max_tokens=int(os.getenv("FLYNN_MAX_TOKENS", "4096")),
        temperature=float(os.getenv("FLYNN_TEMPERATURE", "0.7")),
        max_turns=int(os.getenv("FLYNN_MAX_TURNS", "10")),
        model_timeout_seconds=float(os.getenv("FLYNN_MODEL_TIMEOUT_SECONDS", "120")),
        tool_timeout_seconds=float(os.getenv("FLYNN_TOOL_TIMEOUT_SECONDS", "30")),
        database_path=os.getenv("FLYNN_DATABASE_PATH", "data/flynn.db"),
        cors_origins=_split_origins(os.getenv("FLYNN_CORS_ORIGINS", "*")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
