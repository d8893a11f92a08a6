"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Taurus configuration. All values come from environment variables."""

    # Anthropic
    anthropic_api_key: str = Field(default="")
    claude_model: str = Field(default="claude-sonnet-4-20250514")
    max_output_tokens: int = Field(default=4096)

    # Chat loop
    max_tool_rounds: int = Field(default=5)
    model_timeout_seconds: float = Field(default=120.0)
    tool_timeout_seconds: float = Field(default=30.0)

    # Database
    database_path: Path = Field(default=Path("data/taurus.db"))

    # Web server
    web_host: str = Field(default="0.0.0.0")  # noqa: S104
    web_port: int = Field(default=3000)
    api_tokens: str = Field(default="")
    max_upload_bytes: int = Field(default=20 * 1024 * 1024)

    # Tool output budgets
    web_content_max_chars: int = Field(default=8000)
    api_response_max_chars: int = Field(default=10000)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_api_tokens(self) -> set[str]:
        """Parse API_TOKENS into a set of bearer tokens."""
        if not self.api_tokens.strip():
            return set()
        return {tok.strip() for tok in self.api_tokens.split(",") if tok.strip()}


settings = Settings()
