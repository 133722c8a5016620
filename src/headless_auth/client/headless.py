"""
Headless OAuth client for the device flow.

A client without a browser registers itself with the auth server, starts a
device authorization, shows the user code to a human and then polls the
server until the user has approved the request on another device.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urljoin

import httpx

from ..core.exceptions import (
    AuthorizationCancelledError,
    AuthorizationExpiredError,
    AuthorizationTimeoutError,
    ClientNotRegisteredError,
    DeviceAuthorizationError,
    NotSupportedError,
    PollingInProgressError,
)
from ..models.device_flow import DeviceCodeResponse
from ..models.tokens import TokenGrant, parse_token_result
from ..utils.security_mask import mask_sensitive_id
from .storage import (
    CLIENT_INFO,
    CODE_VERIFIER,
    DEFAULT_STORAGE_DIR,
    DEVICE_CODE,
    SERVER_URL,
    SESSION_TOKEN,
    ClientStateStorage,
)

logger = logging.getLogger(__name__)

ENDPOINTS = {
    "register": "/auth/register",
    "token": "/auth/token",
    "callback": "/auth/callback",
    "device_authorize": "/auth/device/authorize",
    "device_token": "/auth/device/token",
}

SLOW_DOWN_INCREMENT = 5


class PollingState(str, Enum):
    """Lifecycle of one headless authorization"""

    IDLE = "idle"
    AWAITING_DEVICE_CODE = "awaiting_device_code"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"


class ClientPollingEngine:
    """Device flow client that persists its state under a storage directory.

    Only one poll loop may run per process at a time.
    """

    _polling_in_progress = False

    def __init__(
            self,
            server_url: str,
            storage_dir: str = DEFAULT_STORAGE_DIR,
            http_client: Optional[httpx.AsyncClient] = None,
            timeout: float = 30.0,
            sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
            clock: Callable[[], float] = time.monotonic
    ):
        self.server_url = server_url
        self.storage = ClientStateStorage(storage_dir)
        self.storage.write(SERVER_URL, server_url)
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._sleep = sleep
        self._clock = clock
        self._device_code: Optional[str] = None
        self.state = PollingState.IDLE

    def _url(self, endpoint: str) -> str:
        return urljoin(self.server_url, ENDPOINTS[endpoint])

    async def close(self) -> None:
        await self._http_client.aclose()

    # ==================== Client-local state ====================

    @property
    def redirect_url(self) -> str:
        return self._url("callback")

    @property
    def client_metadata(self) -> Dict[str, Any]:
        return {
            "client_name": "MCP Headless Client",
            "redirect_uris": [self.redirect_url],
            "grant_types": ["authorization_code", "device_code"],
        }

    def client_information(self) -> Optional[Dict[str, Any]]:
        return self.storage.read(CLIENT_INFO)

    def save_client_information(self, info: Dict[str, Any]) -> None:
        self.storage.write(CLIENT_INFO, info)

    def tokens(self) -> Optional[TokenGrant]:
        data = self.storage.read(SESSION_TOKEN)
        if not data:
            return None
        try:
            return TokenGrant.model_validate(data)
        except ValueError as e:
            logger.warning(f"Ignoring malformed stored tokens: {e}")
            return None

    def save_tokens(self, tokens: TokenGrant) -> None:
        self.storage.write(SESSION_TOKEN, tokens.model_dump(exclude_none=True))

    def code_verifier(self) -> str:
        verifier = self.storage.read(CODE_VERIFIER)
        if not verifier:
            raise ValueError("No code verifier found")
        return verifier

    def save_code_verifier(self, verifier: str) -> None:
        self.storage.write(CODE_VERIFIER, verifier)

    def _save_device_code(self, device_code: str) -> None:
        self._device_code = device_code
        self.storage.write(DEVICE_CODE, device_code)

    def _get_device_code(self) -> Optional[str]:
        return self._device_code or self.storage.read(DEVICE_CODE)

    def _clear_device_code(self) -> None:
        self._device_code = None
        self.storage.delete(DEVICE_CODE)

    def _require_client_id(self) -> str:
        info = self.client_information()
        if not info or not info.get("client_id"):
            raise ClientNotRegisteredError("No client information available")
        return info["client_id"]

    # ==================== Registration and authorization ====================

    async def register(self) -> Dict[str, Any]:
        """Register this client dynamically and persist the returned client information"""
        url = self._url("register")
        logger.info(f"Registering client with {url}")
        try:
            response = await self._http_client.post(url, json=self.client_metadata)
        except httpx.HTTPError as e:
            raise DeviceAuthorizationError(f"Client registration failed: {e}")

        if not response.is_success:
            raise DeviceAuthorizationError(f"Client registration failed: {response.status_code} {response.text}")

        info = response.json()
        self.save_client_information(info)
        logger.info(f"Registered client {info.get('client_id')}")
        return info

    async def redirect_to_authorization(self, authorization_url: str = None) -> None:
        raise NotSupportedError(
            "Redirect not supported in headless mode. Use authorize_headless() instead.",
            error="unsupported_response_type"
        )

    async def authorize_headless(self) -> DeviceCodeResponse:
        """Start a device authorization and persist its device code.

        Raises:
            ClientNotRegisteredError: If no client information has been saved.
            DeviceAuthorizationError: If the server does not answer with 2xx
                or its answer is not a device code response.
        """
        client_id = self._require_client_id()
        self.state = PollingState.AWAITING_DEVICE_CODE

        url = self._url("device_authorize")
        logger.info(f"Requesting device authorization from: {url}")
        try:
            response = await self._http_client.post(
                url,
                json={"client_id": client_id},
                headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as e:
            self.state = PollingState.FAILED
            raise DeviceAuthorizationError(f"Device authorization failed: {e}")

        if not response.is_success:
            self.state = PollingState.FAILED
            raise DeviceAuthorizationError(
                f"Device authorization failed: {response.status_code} {response.reason_phrase}"
            )

        try:
            device_auth = DeviceCodeResponse.model_validate(response.json())
        except ValueError as e:
            self.state = PollingState.FAILED
            raise DeviceAuthorizationError(f"Malformed device authorization response: {e}")
        self._save_device_code(device_auth.device_code)
        return device_auth

    # ==================== Polling ====================

    async def poll_for_authorization(
            self,
            device_code: Optional[str] = None,
            interval: int = 5,
            timeout: float = 300,
            on_pending: Optional[Callable[[], None]] = None,
            on_error: Optional[Callable[[str], None]] = None,
            max_consecutive_errors: Optional[int] = None,
            cancel_event: Optional[asyncio.Event] = None
    ) -> TokenGrant:
        """Poll the device token endpoint until the device is authorized.

        `authorization_pending` keeps polling, `slow_down` permanently adds
        five seconds to the interval, `expired_token` ends the loop at once.
        Any other error answer, malformed answer or network failure is
        reported through `on_error` and retried, at most
        `max_consecutive_errors` times in a row when that bound is set.
        Waits and requests are both cut off at `timeout`.

        Raises:
            PollingInProgressError: If another poll loop is running in this process.
            ClientNotRegisteredError: If no client information has been saved.
            DeviceAuthorizationError: If no device code is available or the
                consecutive error bound is reached.
            AuthorizationExpiredError: If the device code expired.
            AuthorizationCancelledError: If `cancel_event` was set.
            AuthorizationTimeoutError: If `timeout` elapsed without a terminal answer.
        """
        if ClientPollingEngine._polling_in_progress:
            raise PollingInProgressError("Authorization polling is already in progress")

        client_id = self._require_client_id()
        device_code = device_code or self._get_device_code()
        if not device_code:
            raise DeviceAuthorizationError("No device code available")

        ClientPollingEngine._polling_in_progress = True
        try:
            return await self._poll(
                client_id,
                device_code,
                interval,
                timeout,
                on_pending,
                on_error,
                max_consecutive_errors,
                cancel_event
            )
        finally:
            ClientPollingEngine._polling_in_progress = False

    async def _poll(
            self,
            client_id: str,
            device_code: str,
            interval: int,
            timeout: float,
            on_pending: Optional[Callable[[], None]],
            on_error: Optional[Callable[[str], None]],
            max_consecutive_errors: Optional[int],
            cancel_event: Optional[asyncio.Event]
    ) -> TokenGrant:
        self.state = PollingState.POLLING
        url = self._url("device_token")
        deadline = self._clock() + timeout
        consecutive_errors = 0
        logger.info(f"Polling for authorization of device code {mask_sensitive_id(device_code)}")

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            # The last wait is cut short so the loop never outlives the timeout
            await self._sleep(min(interval, remaining))

            if cancel_event is not None and cancel_event.is_set():
                self.state = PollingState.FAILED
                raise AuthorizationCancelledError("Authorization polling was cancelled")

            # A request still in flight at the deadline counts as running out of time
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            try:
                response = await asyncio.wait_for(
                    self._http_client.post(
                        url,
                        json={"client_id": client_id, "device_code": device_code},
                        headers={"Accept": "application/json"}
                    ),
                    timeout=remaining
                )
                data = response.json()
            except asyncio.TimeoutError:
                logger.warning("Device token poll still unanswered at the polling deadline")
                break
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Error polling for authorization: {e}")
                message = f"Network error: {e}"
            else:
                try:
                    result = parse_token_result(data)
                    if not result.is_error and not response.is_success:
                        raise ValueError("token grant arrived with a non-success status")
                except ValueError as e:
                    result = None
                    message = f"Malformed token response ({response.status_code}): {e}"

                if result is not None and not result.is_error:
                    self.save_tokens(result)
                    self._clear_device_code()
                    self.state = PollingState.SUCCEEDED
                    logger.info("Device authorized, session token saved")
                    return result

                if result is not None:
                    if result.is_pending:
                        consecutive_errors = 0
                        if on_pending:
                            on_pending()
                        continue
                    if result.is_slow_down:
                        consecutive_errors = 0
                        interval += SLOW_DOWN_INCREMENT
                        logger.info(f"Server asked to slow down, polling every {interval}s")
                        continue
                    if result.is_expired:
                        self.state = PollingState.EXPIRED
                        if on_error:
                            on_error("Authorization request expired")
                        raise AuthorizationExpiredError("Authorization request expired")
                    message = result.error_description or result.error

                logger.warning(f"Device token poll failed: {message}")

            consecutive_errors += 1
            if on_error:
                on_error(message)
            if max_consecutive_errors is not None and consecutive_errors >= max_consecutive_errors:
                self.state = PollingState.FAILED
                raise DeviceAuthorizationError(f"Giving up after {consecutive_errors} consecutive errors: {message}")

        self.state = PollingState.FAILED
        raise AuthorizationTimeoutError("Authorization timed out")
