"""Configuration management for the Layer agent service."""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # Upstream provider
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_api_url: str = Field(
        default="https://api.anthropic.com/v1/messages", alias="ANTHROPIC_API_URL"
    )
    anthropic_version: str = Field(default="2023-06-01", alias="ANTHROPIC_VERSION")
    anthropic_model: str = Field(default="claude-opus-4-5-20251101", alias="ANTHROPIC_MODEL")
    anthropic_max_tokens: int = Field(default=4096, alias="ANTHROPIC_MAX_TOKENS")

    # Agent loop
    max_turns: int = Field(default=10, alias="AGENT_MAX_TURNS")
    upstream_timeout_seconds: Optional[float] = Field(
        default=300.0, alias="UPSTREAM_TIMEOUT_SECONDS"
    )

    # API Settings
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=3001, alias="API_PORT")
    api_allowed_origins: str = Field(default="*", alias="API_ALLOWED_ORIGINS")

    # Client
    agent_api_url: str = Field(default="http://localhost:3001/api/agent", alias="AGENT_API_URL")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def allowed_origins(self) -> List[str]:
        if isinstance(self.api_allowed_origins, str):
            return [origin.strip() for origin in self.api_allowed_origins.split(",") if origin.strip()]
        return self.api_allowed_origins

    @property
    def has_credentials(self) -> bool:
        return bool(self.anthropic_api_key and self.anthropic_api_key.strip())


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
