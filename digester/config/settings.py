"""
Digester Settings
=================

Engine defaults and environment configuration using Pydantic Settings.
Supports development, testing, and production environments.
"""

from typing import Optional
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DigesterSettings(BaseSettings):
    """Digester settings with environment variable support."""

    # Application Configuration
    app_name: str = Field(default="xml-digester", description="Application name")
    environment: str = Field(
        default="development", description="Environment: development, testing, production"
    )

    # Engine Configuration
    namespace_aware: bool = Field(
        default=False, description="Match rules against namespace URIs and local names"
    )
    validating: bool = Field(default=False, description="Ask the XML parser for DTD validation")
    rules_validation: bool = Field(
        default=False,
        description="Strict mode: warn about unmatched elements and unknown properties",
    )
    substitute_properties: bool = Field(
        default=True, description="Expand ${name} references in attributes and body text"
    )
    resolve_entities: bool = Field(
        default=False, description="Let the XML parser resolve external entities"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(default=None, description="Optional rotating log file")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = {"development", "testing", "production"}
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("log_file")
    @classmethod
    def create_log_directory(cls, v: Optional[Path]) -> Optional[Path]:
        """Ensure the log file directory exists."""
        if v is not None:
            v.parent.mkdir(parents=True, exist_ok=True)
        return v

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, env_prefix="DIGESTER_"
    )


# Global settings instance - will be initialized when needed
settings = None


def get_settings() -> DigesterSettings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = DigesterSettings()
    return settings


def reload_settings() -> DigesterSettings:
    """Reload settings from environment."""
    global settings
    settings = DigesterSettings()
    return settings
