"""Configuration management for the session workspaces."""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Workspace configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Local paths
    data_dir: Path = Field(default=Path("./.toolmaster"))
    storage_file: str = Field(default="storage.json")
    log_dir: Path = Field(default=Path("./logs"))

    # Generative AI (Gemini, OpenAI-compatible endpoint)
    gemini_api_key: str = Field(default="")
    fallback_api_key: str = Field(
        default="",
        description="Last-resort key; empty means fail closed",
    )
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai/"
    )
    chat_model: str = Field(default="gemini-2.5-flash", description="Model for the chat assistant")
    plugin_model: str = Field(default="gemini-2.5-flash", description="Model for the plugin builder")
    chat_temperature: float = Field(default=0.7)
    request_timeout: float = Field(default=60.0)

    # Workspace behaviour
    autosave_delay_seconds: float = Field(default=0.5)
    title_max_chars: int = Field(default=30)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "text", "both", "none"] = Field(default="both")

    @property
    def storage_path(self) -> Path:
        return self.data_dir / self.storage_file


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()


# Default singleton
settings = Settings()
