"""
OAuth routes around the device flow: dynamic client registration,
the token endpoint (authorization-code bridge, device code grant),
revocation and the bearer-protected userinfo call-through.
"""

import logging
import secrets
import time

from fastapi import APIRouter, Depends, Form, HTTPException
from pydantic import BaseModel, Field

from ..core.dependencies import (
    error_to_response,
    get_clients_store,
    get_engine,
    oauth_error_response,
    require_bearer,
)
from ..core.exceptions import (
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    NotSupportedError,
    ProviderUnavailableError,
)
from ..models.device_flow import DEVICE_CODE_GRANT_TYPE
from ..models.tokens import AuthInfo, TokenGrant
from ..services.engine import ServerAuthorizationEngine
from ..stores.clients import RegisteredClientStore
from .device_flow import CLIENT_ERROR_CODES

logger = logging.getLogger(__name__)

router = APIRouter()


class ClientRegistrationRequest(BaseModel):
    client_name: str | None = Field(None)
    client_uri: str | None = Field(None)
    redirect_uris: list[str] | None = Field(None)
    grant_types: list[str] | None = Field(default=["authorization_code", "device_code"])
    response_types: list[str] | None = Field(default=["code"])
    scope: str | None = Field(None)
    token_endpoint_auth_method: str | None = Field(default="none")


class ClientRegistrationResponse(BaseModel):
    client_id: str
    client_secret: str | None
    client_id_issued_at: int
    client_secret_expires_at: int = 0
    client_name: str | None = None
    client_uri: str | None = None
    redirect_uris: list[str] | None = None
    grant_types: list[str] = []
    response_types: list[str] = []
    scope: str | None = None
    token_endpoint_auth_method: str = "none"


@router.post("/register", response_model=ClientRegistrationResponse, status_code=201)
async def register_client(
    registration: ClientRegistrationRequest,
    engine: ServerAuthorizationEngine = Depends(get_engine),
    clients: RegisteredClientStore = Depends(get_clients_store),
) -> ClientRegistrationResponse:
    client_id = f"mcp-client-{secrets.token_urlsafe(16)}"
    client_secret = secrets.token_urlsafe(32)
    issued_at = int(time.time())

    client_metadata = {
        "client_id": client_id,
        "client_secret": client_secret,
        "client_id_issued_at": issued_at,
        "client_secret_expires_at": 0,
        "client_name": registration.client_name or "MCP Client",
        "client_uri": registration.client_uri,
        "redirect_uris": registration.redirect_uris or [],
        "grant_types": registration.grant_types or ["authorization_code", "device_code"],
        "response_types": registration.response_types or ["code"],
        "scope": registration.scope or " ".join(engine.scopes),
        "token_endpoint_auth_method": registration.token_endpoint_auth_method or "none",
        "registered_at": issued_at,
    }

    try:
        await clients.register_client(client_metadata)
    except (OSError, ValueError) as e:
        logger.error(f"Client registration failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Client registration failed")

    return ClientRegistrationResponse(
        client_id=client_id,
        client_secret=client_secret,
        client_id_issued_at=issued_at,
        client_secret_expires_at=0,
        client_name=client_metadata["client_name"],
        client_uri=client_metadata["client_uri"],
        redirect_uris=client_metadata["redirect_uris"],
        grant_types=client_metadata["grant_types"],
        response_types=client_metadata["response_types"],
        scope=client_metadata["scope"],
        token_endpoint_auth_method=client_metadata["token_endpoint_auth_method"],
    )


@router.post("/token", response_model=TokenGrant)
async def token(
    grant_type: str = Form(...),
    client_id: str = Form(...),
    code: str = Form(None),
    device_code: str = Form(None),
    refresh_token: str = Form(None),
    engine: ServerAuthorizationEngine = Depends(get_engine),
    clients: RegisteredClientStore = Depends(get_clients_store),
):
    logger.info(f"Token endpoint called with grant_type: {grant_type}")
    if clients.get_client(client_id) is None:
        return error_to_response(InvalidClientError("Client not found"))

    if grant_type == "authorization_code":
        if not code:
            return error_to_response(InvalidRequestError("code is required"))
        try:
            return await engine.exchange_authorization_code(client_id, code)
        except InvalidGrantError as e:
            logger.warning(f"Error exchanging authorization code for tokens: {e}")
            return error_to_response(e)

    elif grant_type == DEVICE_CODE_GRANT_TYPE:
        if not device_code:
            return error_to_response(InvalidRequestError("device_code is required"))
        try:
            result = await engine.check_device_code_status(device_code, client_id=client_id)
        except ProviderUnavailableError as e:
            return error_to_response(e, status_code=502)
        if isinstance(result, TokenGrant):
            return result
        status_code = 400 if result.error in CLIENT_ERROR_CODES else 401
        return oauth_error_response(result.error, result.error_description, status_code)

    elif grant_type == "refresh_token":
        if not refresh_token:
            return error_to_response(InvalidRequestError("refresh_token is required"))
        try:
            return await engine.exchange_refresh_token(client_id, refresh_token)
        except NotSupportedError as e:
            return error_to_response(e)

    return error_to_response(NotSupportedError(f"grant_type '{grant_type}' is not supported"))


@router.post("/revoke")
async def revoke(
    token: str = Form(...),
    client_id: str = Form(...),
    engine: ServerAuthorizationEngine = Depends(get_engine),
):
    # Revocation is unsupported, the app-level handler renders the NotSupportedError
    await engine.revoke_token(client_id, token)


@router.get("/userinfo")
async def userinfo(
    auth: AuthInfo = Depends(require_bearer),
    engine: ServerAuthorizationEngine = Depends(get_engine),
):
    """Identity of the GitHub user behind the bearer session token."""
    try:
        user = await engine.get_identity(auth.token)
    except ProviderUnavailableError as e:
        return error_to_response(e, status_code=502)
    return {
        "client_id": auth.client_id,
        "scopes": auth.scopes,
        "expires_at": auth.expires_at,
        "login": user.get("login"),
        "id": user.get("id"),
        "name": user.get("name"),
        "email": user.get("email"),
    }
