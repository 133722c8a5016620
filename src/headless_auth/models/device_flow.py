"""
Pydantic models for OAuth 2.0 Device Flow.
"""

from pydantic import BaseModel


DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"


class DeviceAuthorizeRequest(BaseModel):
    """Request model for device code generation"""

    client_id: str | None = None


class DeviceCodeResponse(BaseModel):
    """Response model for device code generation"""

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str
    expires_in: int
    interval: int


class DeviceTokenRequest(BaseModel):
    """Request model for device token polling"""

    client_id: str | None = None
    device_code: str | None = None


class ProviderDeviceCode(BaseModel):
    """Device code bundle as issued by the identity provider"""

    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int
    interval: int = 5
