"""Factory for creating the identity provider client."""

import logging
from typing import Optional

import httpx

from ..core.config import AuthSettings, settings as default_settings
from .github import GitHubDeviceProvider

logger = logging.getLogger(__name__)


def get_auth_provider(
    settings: Optional[AuthSettings] = None,
    http_client: Optional[httpx.AsyncClient] = None
) -> GitHubDeviceProvider:
    """Create the GitHub device flow provider from settings.

    Args:
        settings: Settings to read the credential pair and endpoints from.
                  Defaults to the global settings instance.
        http_client: Optional preconfigured httpx client (used by tests).

    Returns:
        GitHubDeviceProvider configured for the single OAuth app

    Raises:
        ConfigurationError: If GITHUB_CLIENT_ID or GITHUB_CLIENT_SECRET is missing
    """
    settings = settings or default_settings
    settings.require_provider_credentials()

    logger.info(f"Initializing GitHub device provider with scopes={settings.scopes}")

    return GitHubDeviceProvider(
        client_id=settings.github_client_id,
        client_secret=settings.github_client_secret,
        device_code_url=settings.github_device_code_url,
        token_url=settings.github_token_url,
        user_url=settings.github_user_url,
        timeout=settings.provider_timeout_seconds,
        http_client=http_client
    )
