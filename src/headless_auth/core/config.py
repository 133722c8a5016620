"""
Auth Server Configuration

Centralized configuration management using Pydantic Settings.
All environment variables are loaded here and accessed through the global `settings` instance.
"""

import logging
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class AuthSettings(BaseSettings):
    """Auth server settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
    )

    # ==================== GitHub Provider ====================
    github_client_id: str | None = None
    github_client_secret: str | None = None
    github_device_code_url: str = "https://github.com/login/device/code"
    github_token_url: str = "https://github.com/login/oauth/access_token"
    github_user_url: str = "https://api.github.com/user"
    github_scopes: str = "read:user user:email"
    provider_timeout_seconds: float = 30.0

    # ==================== Server URLs ====================
    auth_server_external_url: str = "http://localhost:3000"

    # API Prefix for the OAuth endpoints (e.g., "/auth")
    auth_api_prefix: str = "/auth"

    # ==================== CORS Configuration ====================
    cors_origins: str = "*"  # Comma-separated list of allowed origins, or "*" for all

    # ==================== Session Token Settings ====================
    session_token_ttl_seconds: int = 3600  # 1 hour
    temp_code_ttl_seconds: int = 60
    sweep_interval_seconds: float = 60.0
    # Refresh tokens handed out with a grant are never tracked, refresh exchange is unsupported
    issue_refresh_token: bool = True

    # ==================== Client Registration ====================
    clients_file: str = ".auth/registered_clients.json"

    # ==================== Logging Settings ====================
    log_level: str = (
        "INFO"  # Default to INFO, can be overridden by LOG_LEVEL env var (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    )
    log_format: str = "%(asctime)s,p%(process)s,{%(filename)s:%(lineno)d},%(levelname)s,%(message)s"

    @property
    def scopes(self) -> list[str]:
        """Scopes requested from the provider, as a list."""
        return self.github_scopes.split()

    @property
    def clients_file_path(self) -> Path:
        """Resolved path to the registered clients JSON file."""
        return Path(self.clients_file).expanduser().resolve()

    @property
    def auth_server_url(self) -> str:
        """External URL including the API prefix."""
        base = self.auth_server_external_url.rstrip("/")
        prefix = self.auth_api_prefix.rstrip("/")
        if prefix and not base.endswith(prefix):
            return f"{base}{prefix}"
        return base

    @field_validator("session_token_ttl_seconds", "temp_code_ttl_seconds")
    @classmethod
    def validate_positive_ttl(cls, v: int) -> int:
        """TTLs must put expiry strictly in the future."""
        if v <= 0:
            raise ValueError(f"ttl must be a positive number of seconds, got {v}")
        return v

    def require_provider_credentials(self) -> None:
        """Fail fast when the GitHub credential pair is not configured."""
        required = {
            "GITHUB_CLIENT_ID": self.github_client_id,
            "GITHUB_CLIENT_SECRET": self.github_client_secret,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    def configure_logging(self) -> None:
        """Configure application-wide logging with consistent format and level.

        This should be called once at application startup to initialize logging
        for all modules. Individual modules can then use logging.getLogger(__name__)
        without needing to call basicConfig again.
        """
        numeric_level = getattr(logging, self.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=numeric_level,
            format=self.log_format,
            force=True,  # Override any existing configuration
        )


# Global settings instance
settings = AuthSettings()
