import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class TemporaryAuthorizationCode:
    """Short-lived synthetic authorization code pointing at a session token"""

    code: str
    session_token: str
    expires_at: float


class TemporaryCodeBridge:
    """Maps synthetic authorization codes to session tokens"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._codes: Dict[str, TemporaryAuthorizationCode] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def create(self, session_token: str, ttl_seconds: int) -> TemporaryAuthorizationCode:
        code = secrets.token_urlsafe(32)
        entry = TemporaryAuthorizationCode(
            code=code,
            session_token=session_token,
            expires_at=self._clock() + ttl_seconds
        )
        async with self._lock:
            self._codes[code] = entry
        return entry

    async def get(self, code: str) -> Optional[TemporaryAuthorizationCode]:
        """Look up a code; expired codes are deleted and reported as absent"""
        async with self._lock:
            entry = self._codes.get(code)
            if entry is None:
                return None
            if entry.expires_at < self._clock():
                del self._codes[code]
                return None
            return entry

    async def pop(self, code: str) -> Optional[TemporaryAuthorizationCode]:
        """Delete a code and return it if it was still valid"""
        async with self._lock:
            entry = self._codes.pop(code, None)
        if entry is None or entry.expires_at < self._clock():
            return None
        return entry

    async def sweep_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [code for code, data in self._codes.items() if data.expires_at < now]
            for code in expired:
                del self._codes[code]

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired authorization codes")
        return len(expired)

    def __contains__(self, code: str) -> bool:
        return code in self._codes
