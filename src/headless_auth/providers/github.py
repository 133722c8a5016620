import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..core.exceptions import ProviderUnavailableError
from ..models.device_flow import DEVICE_CODE_GRANT_TYPE, ProviderDeviceCode

logger = logging.getLogger(__name__)


class GitHubDeviceProvider:
    """GitHub device flow HTTP client.

    Wraps the three provider calls the engine needs: requesting a device
    code, polling the token endpoint and reading the user identity. Every
    network or status failure is raised as ProviderUnavailableError; no
    call is retried here.
    """

    def __init__(
            self,
            client_id: str,
            client_secret: str,
            device_code_url: str = "https://github.com/login/device/code",
            token_url: str = "https://github.com/login/oauth/access_token",
            user_url: str = "https://api.github.com/user",
            timeout: float = 30.0,
            http_client: Optional[httpx.AsyncClient] = None
    ):
        self.client_id = client_id
        self._client_secret = client_secret
        self.device_code_url = device_code_url
        self.token_url = token_url
        self.user_url = user_url
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "Accept": "application/json",
            "Content-Type": "application/json"
        }

    async def request_device_code(self, scopes: List[str]) -> ProviderDeviceCode:
        """Request a device code on behalf of the configured OAuth app"""
        payload = {
            "client_id": self.client_id,
            "scope": " ".join(scopes)
        }

        try:
            response = await self._http_client.post(self.device_code_url, json=payload, headers=self._headers)
        except httpx.HTTPError as e:
            logger.error(f"GitHub device code request failed: {e}")
            raise ProviderUnavailableError(f"GitHub device code request failed: {e}") from e

        if not response.is_success:
            logger.error(
                f"GitHub error response: status={response.status_code}, "
                f"reason={response.reason_phrase}, body={response.text}"
            )
            raise ProviderUnavailableError(
                f"GitHub device code request failed: {response.status_code} {response.reason_phrase}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderUnavailableError("GitHub device code response was not JSON") from e

        if data.get("error"):
            raise ProviderUnavailableError(
                f"GitHub device code request failed: {data.get('error_description') or data['error']}"
            )

        try:
            return ProviderDeviceCode.model_validate(data)
        except ValidationError as e:
            raise ProviderUnavailableError(f"GitHub device code response incomplete: {e}") from e

    async def poll_token(self, provider_device_code: str) -> Dict[str, Any]:
        """
        Ask GitHub whether the user has authorized the device code.

        Returns the raw JSON body: either an access token payload or an
        OAuth error payload (`authorization_pending`, `slow_down`, ...).
        """
        payload = {
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "device_code": provider_device_code,
            "grant_type": DEVICE_CODE_GRANT_TYPE
        }

        try:
            response = await self._http_client.post(self.token_url, json=payload, headers=self._headers)
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"GitHub token poll failed: {e}")
            raise ProviderUnavailableError(f"GitHub token poll failed: {e}") from e
        except ValueError as e:
            logger.error(f"GitHub token poll returned non-JSON body: status={response.status_code}")
            raise ProviderUnavailableError("GitHub token poll returned a non-JSON response") from e

        if not isinstance(data, dict):
            raise ProviderUnavailableError("GitHub token poll returned an unexpected payload")

        # GitHub reports device flow errors with a 200 status, anything else non-2xx without an error code is an outage
        if not response.is_success and not data.get("error"):
            raise ProviderUnavailableError(f"GitHub token poll failed: {response.status_code}")

        return data

    async def get_user(self, access_token: str) -> Dict[str, Any]:
        """Fetch the GitHub identity behind a provider access token"""
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {access_token}"
        }
        try:
            response = await self._http_client.get(self.user_url, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.error(f"GitHub user lookup failed: {e}")
            raise ProviderUnavailableError(f"GitHub user lookup failed: {e}") from e
        except ValueError as e:
            logger.error(f"GitHub user lookup returned a non-JSON body: {e}")
            raise ProviderUnavailableError("GitHub user lookup returned a non-JSON body") from e

    async def close(self):
        """Close HTTP client"""
        await self._http_client.aclose()
