"""
In-memory and file-backed stores used by the authorization engine.

Each store guards its own map with an asyncio.Lock; no operation spans
more than one store.
"""

from .clients import RegisteredClientStore
from .device_codes import DeviceAuthorizationRegistry, DeviceAuthorizationSession
from .session_tokens import SessionToken, SessionTokenStore
from .temp_codes import TemporaryAuthorizationCode, TemporaryCodeBridge

__all__ = [
    "RegisteredClientStore",
    "DeviceAuthorizationRegistry",
    "DeviceAuthorizationSession",
    "SessionToken",
    "SessionTokenStore",
    "TemporaryAuthorizationCode",
    "TemporaryCodeBridge",
]
