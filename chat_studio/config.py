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
    """Chat Studio configuration. All values come from environment variables."""

    # Inference server
    ollama_url: str = Field(default="http://localhost:11434")
    api_mode: str = Field(default="generate")  # generate | chat | openai
    default_model: str = Field(default="")
    connect_timeout: float = Field(default=10.0, gt=0)

    # Local state
    database_path: Path = Field(default=Path("data/chat_studio.db"))
    models_file: Path = Field(default=Path("models.json"))

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=_env_file(), env_file_encoding="utf-8", extra="ignore"
    )

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

    def base_url(self) -> str:
        """Return the inference server URL without a trailing slash."""
        return self.ollama_url.rstrip("/")


settings = Settings()
