"""
OAuth 2.0 Device Flow routes for the headless client.

Implements the device authorization and device token polling endpoints
(RFC 8628 shapes) on top of the ServerAuthorizationEngine.
"""

import html
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, JSONResponse

from ..core.dependencies import error_to_response, get_clients_store, get_engine
from ..core.exceptions import InvalidClientError, InvalidRequestError, ProviderUnavailableError
from ..models.device_flow import DeviceAuthorizeRequest, DeviceCodeResponse, DeviceTokenRequest
from ..models.tokens import AUTHORIZATION_PENDING, SLOW_DOWN, TokenGrant
from ..services.engine import ServerAuthorizationEngine
from ..stores.clients import RegisteredClientStore

logger = logging.getLogger(__name__)

router = APIRouter()

# Polling signals and caller errors are 400, any other OAuth error is 401
CLIENT_ERROR_CODES = {AUTHORIZATION_PENDING, SLOW_DOWN, InvalidRequestError.error, InvalidClientError.error}


@router.post("/device/authorize", response_model=DeviceCodeResponse)
async def device_authorization(
    body: DeviceAuthorizeRequest,
    engine: ServerAuthorizationEngine = Depends(get_engine),
    clients: RegisteredClientStore = Depends(get_clients_store),
):
    logger.info("Device authorize request received")
    if not body.client_id:
        logger.info("Missing client_id in request")
        return error_to_response(InvalidRequestError("Missing client_id parameter"))

    if clients.get_client(body.client_id) is None:
        logger.info(f"Client not found: {body.client_id}")
        return error_to_response(InvalidClientError("Client not found"))

    try:
        return await engine.initiate_device_flow(body.client_id)
    except ProviderUnavailableError as e:
        logger.error(f"Device authorization error: {e}")
        return error_to_response(e, status_code=502)


@router.post("/device/token", response_model=TokenGrant)
async def device_token(
    body: DeviceTokenRequest,
    engine: ServerAuthorizationEngine = Depends(get_engine),
    clients: RegisteredClientStore = Depends(get_clients_store),
):
    if not body.client_id or not body.device_code:
        return error_to_response(InvalidRequestError("Missing required parameters"))

    if clients.get_client(body.client_id) is None:
        return error_to_response(InvalidClientError("Client not found"))

    try:
        result = await engine.check_device_code_status(body.device_code, client_id=body.client_id)
    except ProviderUnavailableError as e:
        logger.error(f"Device token error: {e}")
        return error_to_response(e, status_code=502)

    if isinstance(result, TokenGrant):
        return result

    status_code = 400 if result.error in CLIENT_ERROR_CODES else 401
    return JSONResponse(status_code=status_code, content=result.model_dump(exclude_none=True))


@router.get("/activate", response_class=HTMLResponse)
async def activate_page(user_code: str | None = None):
    """Minimal page telling the user where to enter the code shown on their device."""
    code = html.escape(user_code or "")
    html_content = f"""
    <!DOCTYPE html>
    <html>
    <head><title>Activate Your Device</title></head>
    <body>
        <h1>Device Activation</h1>
        <p>Enter the code displayed on your device at
        <a href="https://github.com/login/device">https://github.com/login/device</a>.</p>
        <form class="code-form" method="GET" action="https://github.com/login/device">
            <input type="text" name="user_code" value="{code}" placeholder="XXXX-XXXX" required>
            <button type="submit">Activate</button>
        </form>
    </body>
    </html>
    """
    return HTMLResponse(content=html_content)
