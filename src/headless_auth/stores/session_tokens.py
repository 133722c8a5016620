import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from ..core.exceptions import TokenCollisionError
from ..utils.security_mask import mask_token

logger = logging.getLogger(__name__)


@dataclass
class SessionToken:
    """Internally minted bearer credential wrapping a provider access token"""

    token: str
    provider_token: str
    client_id: str
    expires_at: float
    scopes: List[str] = field(default_factory=list)
    code_challenge: Optional[str] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at < now

    def expires_in(self, now: float) -> int:
        return max(int(self.expires_at - now), 0)


class SessionTokenStore:
    """In-memory session token registry"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._tokens: Dict[str, SessionToken] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def mint(
            self,
            provider_token: str,
            code_challenge: Optional[str],
            ttl_seconds: int,
            client_id: str,
            scopes: Iterable[str]
    ) -> SessionToken:
        """Create and store a new session token"""
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

        token = secrets.token_hex(32)
        async with self._lock:
            if token in self._tokens:
                raise TokenCollisionError("Generated session token already exists")

            session_token = SessionToken(
                token=token,
                provider_token=provider_token,
                client_id=client_id,
                expires_at=self._clock() + ttl_seconds,
                scopes=sorted(set(scopes)),
                code_challenge=code_challenge or None
            )
            self._tokens[token] = session_token

        logger.debug(f"Minted session token {mask_token(token)} for client {client_id}")
        return session_token

    async def get(self, token: str) -> Optional[SessionToken]:
        """Look up a session token, expired or not"""
        async with self._lock:
            return self._tokens.get(token)

    async def remove(self, token: str) -> bool:
        """Remove a session token"""
        async with self._lock:
            return self._tokens.pop(token, None) is not None

    async def sweep_expired(self) -> int:
        """Remove every token whose expiry has passed, returns count removed"""
        async with self._lock:
            now = self._clock()
            expired = [token for token, data in self._tokens.items() if data.is_expired(now)]
            for token in expired:
                del self._tokens[token]

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired session tokens")
        return len(expired)

    def __len__(self) -> int:
        return len(self._tokens)
