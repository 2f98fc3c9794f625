"""Configuration management for the CrossMind canvas engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Anthropic configuration
    ANTHROPIC_API_KEY: str = Field(default="", description="Anthropic API key")

    # Environment
    CROSSMIND_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Internal tools bypass the Bearer token check with this key
    ADMIN_API_KEY: str | None = Field(default=None, description="Admin API key for internal tools")

    # Health analysis agent
    HEALTH_ANALYSIS_MODEL: str = Field(
        default="claude-sonnet-4-20250514", description="Model for canvas health analysis"
    )
    HEALTH_ANALYSIS_MAX_TOKENS: int = Field(
        default=4096, description="Max output tokens per model turn"
    )
    HEALTH_ANALYSIS_MAX_TURNS: int = Field(
        default=12, description="Max model turns in one analysis session"
    )
    HEALTH_ANALYSIS_MAX_NUDGES: int = Field(
        default=2, description="Continuation prompts before an incomplete run is an error"
    )
    HEALTH_ANALYSIS_TIMEOUT_SECONDS: float = Field(
        default=300.0, description="Wall-clock budget for one analysis session"
    )
    HEALTH_ANALYSIS_HISTORY_LIMIT: int = Field(
        default=20, description="Prior chat messages replayed to the model"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
