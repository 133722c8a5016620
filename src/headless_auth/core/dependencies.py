"""
FastAPI dependencies shared by the auth routes.

The settings, engine and client store are created once by `create_app`
and hung off `app.state`; routes reach them through these helpers.
"""

import logging

from fastapi import Header, HTTPException, Request
from fastapi.responses import JSONResponse

from ..models.tokens import AuthInfo
from ..services.engine import ServerAuthorizationEngine
from ..stores.clients import RegisteredClientStore
from ..utils.security_mask import mask_headers
from .config import AuthSettings
from .exceptions import HeadlessAuthError, InvalidTokenError

logger = logging.getLogger(__name__)


def oauth_error_response(error: str, error_description: str = None, status_code: int = 400) -> JSONResponse:
    content = {"error": error}
    if error_description:
        content["error_description"] = error_description
    return JSONResponse(status_code=status_code, content=content)


def error_to_response(exc: HeadlessAuthError, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def get_settings(request: Request) -> AuthSettings:
    return request.app.state.settings


def get_engine(request: Request) -> ServerAuthorizationEngine:
    return request.app.state.engine


def get_clients_store(request: Request) -> RegisteredClientStore:
    return request.app.state.clients


async def require_bearer(request: Request, authorization: str | None = Header(None)) -> AuthInfo:
    """Verify the bearer token of the current request against the session token store"""
    logger.debug(f"Bearer check headers: {mask_headers(request.headers)}")
    www_authenticate = f'Bearer realm="{get_settings(request).auth_server_url}"'

    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=401,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": www_authenticate},
        )

    token = authorization.split(" ", 1)[1].strip()
    engine = get_engine(request)
    try:
        return await engine.verify_access_token(token)
    except InvalidTokenError as e:
        raise HTTPException(
            status_code=401,
            detail=e.description,
            headers={"WWW-Authenticate": f'{www_authenticate}, error="invalid_token"'},
        )
