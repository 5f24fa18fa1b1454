"""
Engine configuration with environment-based settings.
All configuration is explicit, validated, and logged at startup.

Clinical thresholds (ambiguity cut-off, log caps) live in the versioned
rule tables of the services, not here.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Engine settings loaded from environment variables.

    All settings have sensible defaults for development; variables use
    the ``CRE_`` prefix (e.g. ``CRE_LOG_FORMAT=json``).
    """

    model_config = SettingsConfigDict(
        env_prefix="CRE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    # Application
    app_name: str = Field(default="Clinical Resilience Engine", description="Component name")
    app_version: str = Field(default="1.0.0", description="Component version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment"
    )

    # Report versioning
    algorithm_version: str = Field(
        default="cre1.0.0",
        description="Algorithm version stamped into report version strings"
    )
    prompt_version: str = Field(
        default="v1.0.0",
        description="Prompt/template version stamped into report version strings"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached engine settings.

    Settings are loaded once and cached for the process lifetime.
    Call ``get_settings.cache_clear()`` in tests after changing the environment.
    """
    return Settings()
