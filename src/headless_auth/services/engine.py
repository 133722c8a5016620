"""
Server-side device flow authorization engine.

Bridges the provider's device authorization grant onto the token contract
the protocol layer expects: device codes are issued under internal
identifiers, provider poll answers are passed through in OAuth vocabulary,
and successful authorizations are turned into internally minted session
tokens that bearer verification checks against.
"""

import asyncio
import logging
import secrets
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..core.config import AuthSettings
from ..core.exceptions import (
    InvalidClientError,
    InvalidGrantError,
    InvalidTokenError,
    NotSupportedError,
    TokenExpiredError,
)
from ..models.device_flow import DeviceCodeResponse
from ..models.tokens import (
    AUTHORIZATION_PENDING,
    EXPIRED_TOKEN,
    INVALID_GRANT,
    SERVER_ERROR,
    SLOW_DOWN,
    AuthInfo,
    DeviceTokenResult,
    OAuthErrorResult,
    TokenGrant,
)
from ..providers.github import GitHubDeviceProvider
from ..stores.clients import RegisteredClientStore
from ..stores.device_codes import DeviceAuthorizationRegistry, DeviceAuthorizationSession
from ..stores.session_tokens import SessionToken, SessionTokenStore
from ..stores.temp_codes import TemporaryCodeBridge
from ..utils.security_mask import mask_sensitive_id, mask_token

logger = logging.getLogger(__name__)


class ServerAuthorizationEngine:
    """Device flow authorization engine.

    Owns the device authorization sessions and session tokens. The
    registered client store is shared and only read here.
    """

    def __init__(
            self,
            provider: GitHubDeviceProvider,
            clients: RegisteredClientStore,
            scopes: Iterable[str] = ("read:user", "user:email"),
            session_token_ttl: int = 3600,
            temp_code_ttl: int = 60,
            sweep_interval: float = 60.0,
            issue_refresh_token: bool = True,
            session_tokens: Optional[SessionTokenStore] = None,
            device_codes: Optional[DeviceAuthorizationRegistry] = None,
            temp_codes: Optional[TemporaryCodeBridge] = None,
            clock: Callable[[], float] = time.time
    ):
        self.provider = provider
        self.clients = clients
        self.scopes: List[str] = list(scopes)
        self.session_token_ttl = session_token_ttl
        self.temp_code_ttl = temp_code_ttl
        self.sweep_interval = sweep_interval
        self.issue_refresh_token = issue_refresh_token
        self._clock = clock
        self.session_tokens = session_tokens or SessionTokenStore(clock=clock)
        self.device_codes = device_codes or DeviceAuthorizationRegistry(clock=clock)
        self.temp_codes = temp_codes or TemporaryCodeBridge(clock=clock)
        self._sweep_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
            cls,
            settings: AuthSettings,
            provider: GitHubDeviceProvider,
            clients: RegisteredClientStore
    ) -> "ServerAuthorizationEngine":
        return cls(
            provider=provider,
            clients=clients,
            scopes=settings.scopes,
            session_token_ttl=settings.session_token_ttl_seconds,
            temp_code_ttl=settings.temp_code_ttl_seconds,
            sweep_interval=settings.sweep_interval_seconds,
            issue_refresh_token=settings.issue_refresh_token
        )

    # ==================== Lifecycle ====================

    def start(self) -> asyncio.Task:
        """Schedule the periodic sweep on the running loop and return its handle"""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())
            logger.info(f"Started expiry sweep every {self.sweep_interval}s")
        return self._sweep_task

    async def stop(self) -> None:
        """Cancel the sweep task and release the provider client"""
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.provider.close()
        logger.info("Authorization engine stopped")

    async def sweep(self) -> Dict[str, int]:
        """Run one expiry sweep over every store"""
        return {
            "session_tokens": await self.session_tokens.sweep_expired(),
            "device_codes": await self.device_codes.sweep_expired(),
            "authorization_codes": await self.temp_codes.sweep_expired(),
        }

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Expiry sweep failed: {e}", exc_info=True)

    # ==================== Device flow ====================

    async def initiate_device_flow(self, client_id: str) -> DeviceCodeResponse:
        """Request a device code from the provider on behalf of a registered client.

        The provider's device code never leaves the server: the caller gets
        an internal device code that maps to it.

        Raises:
            ProviderUnavailableError: If the provider cannot be reached or
                answers with a non-success status.
        """
        logger.info(f"Initiating GitHub device flow for client with id: {client_id}")
        provider_code = await self.provider.request_device_code(self.scopes)

        internal_device_code = secrets.token_hex(32)
        session = DeviceAuthorizationSession(
            device_code=internal_device_code,
            client_id=client_id,
            provider_device_code=provider_code.device_code,
            user_code=provider_code.user_code,
            verification_uri=provider_code.verification_uri,
            expires_at=self._clock() + provider_code.expires_in,
            interval=provider_code.interval
        )
        await self.device_codes.create(session)

        return DeviceCodeResponse(
            device_code=internal_device_code,
            user_code=provider_code.user_code,
            verification_uri=provider_code.verification_uri,
            verification_uri_complete=f"{provider_code.verification_uri}?user_code={provider_code.user_code}",
            expires_in=provider_code.expires_in,
            interval=provider_code.interval
        )

    async def check_device_code_status(
            self,
            device_code: str,
            client_id: Optional[str] = None
    ) -> DeviceTokenResult:
        """Answer one poll for an internal device code.

        Returns a TokenGrant when the user has authorized, otherwise an
        OAuthErrorResult carrying the OAuth error code. A resolved token is
        handed out exactly once; later polls see `invalid_grant`.

        Raises:
            ProviderUnavailableError: If the provider poll itself fails.
        """
        session = await self.device_codes.get(device_code)
        if session is None:
            return OAuthErrorResult(error=INVALID_GRANT, error_description="Device code not found")

        if client_id is not None and session.client_id != client_id:
            return OAuthErrorResult(error=InvalidClientError.error, error_description="client_id mismatch")

        if session.is_expired(self._clock()):
            await self.device_codes.delete(device_code)
            return OAuthErrorResult(error=EXPIRED_TOKEN, error_description="Device code has expired")

        if session.is_resolved:
            return await self._deliver_resolved(device_code)

        data = await self.provider.poll_token(session.provider_device_code)

        error = data.get("error")
        if error == AUTHORIZATION_PENDING:
            return OAuthErrorResult(
                error=AUTHORIZATION_PENDING,
                error_description="The user has not yet authorized this device"
            )
        if error == SLOW_DOWN:
            return OAuthErrorResult(error=SLOW_DOWN, error_description="Polling too frequently, slow down")
        if error:
            logger.warning(f"GitHub returned {error} for device code {mask_sensitive_id(device_code)}")
            return OAuthErrorResult(
                error=error,
                error_description=data.get("error_description") or "Error from GitHub authorization"
            )

        provider_token = data.get("access_token")
        if not provider_token:
            return OAuthErrorResult(error=SERVER_ERROR, error_description="GitHub response missing access_token")

        session_token = await self.session_tokens.mint(
            provider_token,
            None,
            self.session_token_ttl,
            session.client_id,
            self.scopes
        )

        if not await self.device_codes.attach_session_token(device_code, session_token.token):
            # A concurrent poll resolved the session first, its token wins
            await self.session_tokens.remove(session_token.token)
            return await self._deliver_resolved(device_code)

        logger.info(f"Device code {mask_sensitive_id(device_code)} authorized for client {session.client_id}")
        return self._grant(session_token, self.session_token_ttl)

    async def _deliver_resolved(self, device_code: str) -> DeviceTokenResult:
        session = await self.device_codes.take_resolved(device_code)
        if session is None:
            return OAuthErrorResult(error=INVALID_GRANT, error_description="Device code not found")

        stored = await self.session_tokens.get(session.session_token)
        now = self._clock()
        if stored is None or stored.is_expired(now):
            return OAuthErrorResult(error=EXPIRED_TOKEN, error_description="Session token has expired")
        return self._grant(stored, stored.expires_in(now))

    def _grant(self, session_token: SessionToken, expires_in: int) -> TokenGrant:
        return TokenGrant(
            access_token=session_token.token,
            token_type="Bearer",
            expires_in=expires_in,
            refresh_token=secrets.token_hex(32) if self.issue_refresh_token else None,
            scope=" ".join(session_token.scopes)
        )

    # ==================== Bearer verification ====================

    async def verify_access_token(self, token: str) -> AuthInfo:
        """Verify a bearer token against the session token store.

        Raises:
            InvalidTokenError: If the token is unknown.
            TokenExpiredError: If the token has expired; it is evicted.
        """
        stored = await self.session_tokens.get(token) if token else None
        if stored is None:
            raise InvalidTokenError("Invalid or expired token")

        if stored.is_expired(self._clock()):
            await self.session_tokens.remove(token)
            logger.info(f"Evicted expired session token {mask_token(token)}")
            raise TokenExpiredError("Token has expired")

        return AuthInfo(
            token=token,
            client_id=stored.client_id,
            scopes=list(stored.scopes),
            expires_at=stored.expires_at
        )

    async def get_identity(self, token: str) -> Dict[str, Any]:
        """Return the provider identity behind a verified session token"""
        await self.verify_access_token(token)
        stored = await self.session_tokens.get(token)
        if stored is None or not stored.provider_token:
            raise InvalidTokenError("Session token has no provider credential")
        return await self.provider.get_user(stored.provider_token)

    # ==================== Authorization code bridge ====================

    async def issue_authorization_code(self, session_token: str) -> str:
        """Create a short-lived synthetic authorization code for a session token"""
        if await self.session_tokens.get(session_token) is None:
            raise InvalidTokenError("Invalid session token")
        entry = await self.temp_codes.create(session_token, self.temp_code_ttl)
        return entry.code

    async def challenge_for_authorization_code(self, client_id: str, authorization_code: str) -> str:
        """Return the code challenge recorded for the code's session token"""
        logger.info(f"Challenging for authorization code {mask_sensitive_id(authorization_code)}")
        entry = await self.temp_codes.get(authorization_code)
        if entry is None:
            raise InvalidGrantError("Invalid or expired authorization code")

        stored = await self.session_tokens.get(entry.session_token)
        if stored is None or stored.client_id != client_id:
            raise InvalidGrantError("Invalid session token")

        return stored.code_challenge or ""

    async def exchange_authorization_code(self, client_id: str, authorization_code: str) -> TokenGrant:
        """Exchange a synthetic authorization code for its session token.

        The code is consumed by the first exchange attempt whatever the outcome.
        """
        logger.info(f"Exchanging authorization code for client {client_id}")
        entry = await self.temp_codes.pop(authorization_code)
        if entry is None:
            raise InvalidGrantError("Invalid or expired authorization code")

        stored = await self.session_tokens.get(entry.session_token)
        now = self._clock()
        if stored is None or stored.is_expired(now):
            raise InvalidGrantError("Invalid session token")
        if stored.client_id != client_id:
            raise InvalidGrantError("Authorization code was not issued to this client")

        return self._grant(stored, stored.expires_in(now))

    # ==================== Unsupported operations ====================

    async def exchange_refresh_token(
            self,
            client_id: str,
            refresh_token: str,
            scopes: Optional[List[str]] = None
    ) -> TokenGrant:
        raise NotSupportedError("Refresh token exchange not implemented")

    async def revoke_token(self, client_id: str, token: str) -> None:
        raise NotSupportedError("Token revocation not implemented", error="unsupported_token_type")
