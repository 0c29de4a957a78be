"""
Settings for the HTTP API.

Loaded from environment variables (or a ``.env`` file) with pydantic-settings.
"""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """API settings loaded from environment variables."""

    # Engine config file; empty means config/local.yaml if present, else config/example.yaml
    POWERGUARD_CONFIG: str = ""

    # Run the enforcement ticks inside the API process
    RUN_ENGINE: bool = False

    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8000

    # CORS
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS_ORIGINS string into list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def validate_config(self) -> None:
        """Validate critical configuration values."""
        if not 0 < self.API_PORT < 65536:
            raise ValueError("API_PORT must be between 1 and 65535")


# Global settings instance
settings = Settings()

# Validate on import
settings.validate_config()
