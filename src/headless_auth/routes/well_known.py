"""
OAuth 2.0 .well-known endpoints for the auth server.

Implements RFC 8414 (OAuth 2.0 Authorization Server Metadata) so MCP
clients can discover the device authorization and token endpoints.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..core.config import AuthSettings
from ..core.dependencies import get_settings
from ..models.device_flow import DEVICE_CODE_GRANT_TYPE

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_auth_server_urls(settings: AuthSettings):
    """
    Get both base URL and full URL for the auth server.

    Returns:
        tuple: (base_url, auth_server_url) where:
            - base_url: Root origin without prefix (for issuer, per RFC 8414)
            - auth_server_url: Full URL with prefix (for OAuth operational endpoints)

    Raises:
        HTTPException: If AUTH_SERVER_EXTERNAL_URL is not set
    """
    if not settings.auth_server_external_url:
        logger.error("AUTH_SERVER_EXTERNAL_URL is not configured in settings")
        raise HTTPException(
            status_code=500, detail="Server configuration error: AUTH_SERVER_EXTERNAL_URL not configured"
        )

    return settings.auth_server_external_url.rstrip("/"), settings.auth_server_url


@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server_metadata(settings: AuthSettings = Depends(get_settings)):
    """
    OAuth 2.0 Authorization Server Metadata (RFC 8414).

    Per RFC 8414, the issuer MUST be at the root origin without any prefix.
    Operational endpoints use auth_server_url which includes the prefix.
    """
    base_url, auth_server_url = _get_auth_server_urls(settings)

    return {
        "issuer": base_url,
        "token_endpoint": f"{auth_server_url}/token",
        "device_authorization_endpoint": f"{auth_server_url}/device/authorize",
        "registration_endpoint": f"{auth_server_url}/register",
        "revocation_endpoint": f"{auth_server_url}/revoke",
        "userinfo_endpoint": f"{auth_server_url}/userinfo",
        "response_types_supported": ["code"],
        "grant_types_supported": [
            "authorization_code",
            DEVICE_CODE_GRANT_TYPE,
        ],
        "token_endpoint_auth_methods_supported": ["none", "client_secret_post"],
        "scopes_supported": settings.scopes,
        "service_documentation": f"{base_url}/docs",
    }
