"""
Pydantic models for the headless auth server and client.
"""

from .device_flow import (
    DEVICE_CODE_GRANT_TYPE,
    DeviceAuthorizeRequest,
    DeviceCodeResponse,
    DeviceTokenRequest,
    ProviderDeviceCode,
)
from .tokens import (
    AuthInfo,
    DeviceTokenResult,
    OAuthErrorResult,
    TokenGrant,
    parse_token_result,
)

__all__ = [
    "DEVICE_CODE_GRANT_TYPE",
    "DeviceAuthorizeRequest",
    "DeviceCodeResponse",
    "DeviceTokenRequest",
    "ProviderDeviceCode",
    "AuthInfo",
    "DeviceTokenResult",
    "OAuthErrorResult",
    "TokenGrant",
    "parse_token_result",
]
