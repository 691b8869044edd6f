"""
Centralized configuration for the portfolio chat service.

All settings are loaded from environment variables via .env file.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings."""

    app_name: str = Field(default="Portfolio Chat", env="APP_NAME")

    # Operator (the only account allowed into the inbox)
    operator_email: str = Field(default="admin@example.com", env="OPERATOR_EMAIL")
    operator_password: Optional[str] = Field(default=None, env="OPERATOR_PASSWORD")

    # Chat behaviour
    typing_timeout_seconds: float = Field(default=2.0, env="TYPING_TIMEOUT_SECONDS")

    # Database (message archive + operator accounts)
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # API
    api_host: str = Field(default="0.0.0.0", env="API_HOST")
    api_port: int = Field(default=8000, env="API_PORT")
    api_title: str = Field(default="Portfolio Chat API", env="API_TITLE")
    api_version: str = Field(default="1.0.0", env="API_VERSION")
    cors_origins: str = Field(default="*", env="CORS_ORIGINS")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    debug: bool = Field(default=False, env="DEBUG")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def operator_email_normalized(self) -> str:
        return self.operator_email.strip().lower()


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
