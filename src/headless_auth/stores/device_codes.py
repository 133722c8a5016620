import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..utils.security_mask import mask_sensitive_id

logger = logging.getLogger(__name__)


@dataclass
class DeviceAuthorizationSession:
    """One in-flight device authorization, keyed by the internal device code"""

    device_code: str
    client_id: str
    provider_device_code: str
    user_code: str
    verification_uri: str
    expires_at: float
    interval: int
    session_token: Optional[str] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at < now

    @property
    def is_resolved(self) -> bool:
        return self.session_token is not None


class DeviceAuthorizationRegistry:
    """In-memory registry of device authorization sessions"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._sessions: Dict[str, DeviceAuthorizationSession] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def create(self, session: DeviceAuthorizationSession) -> None:
        async with self._lock:
            if session.device_code in self._sessions:
                raise KeyError(f"Device code {mask_sensitive_id(session.device_code)} already registered")
            self._sessions[session.device_code] = session
        logger.info(
            f"Registered device code {mask_sensitive_id(session.device_code)} "
            f"for client_id: {session.client_id}, user_code: {session.user_code}"
        )

    async def get(self, device_code: str) -> Optional[DeviceAuthorizationSession]:
        async with self._lock:
            return self._sessions.get(device_code)

    async def delete(self, device_code: str) -> bool:
        async with self._lock:
            return self._sessions.pop(device_code, None) is not None

    async def attach_session_token(self, device_code: str, session_token: str) -> bool:
        """
        Resolve a pending session. Returns False if the session is gone or
        was already resolved, in which case nothing is changed.
        """
        async with self._lock:
            session = self._sessions.get(device_code)
            if session is None or session.is_resolved:
                return False
            session.session_token = session_token
            return True

    async def take_resolved(self, device_code: str) -> Optional[DeviceAuthorizationSession]:
        """Remove and return a resolved session; only one caller ever receives it"""
        async with self._lock:
            session = self._sessions.get(device_code)
            if session is None or not session.is_resolved:
                return None
            del self._sessions[device_code]
            return session

    async def sweep_expired(self) -> int:
        """Remove expired device codes, returns count removed"""
        async with self._lock:
            now = self._clock()
            expired = [code for code, data in self._sessions.items() if data.is_expired(now)]
            for code in expired:
                del self._sessions[code]

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired device codes")
        return len(expired)

    def __contains__(self, device_code: str) -> bool:
        return device_code in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
