"""
Pydantic models for token responses and bearer verification.

A device-token poll resolves to exactly one of two shapes: a `TokenGrant`
or an `OAuthErrorResult`. Callers branch on the type, not on dict keys.
"""

from typing import Union

from pydantic import BaseModel, Field


AUTHORIZATION_PENDING = "authorization_pending"
SLOW_DOWN = "slow_down"
EXPIRED_TOKEN = "expired_token"
INVALID_GRANT = "invalid_grant"
SERVER_ERROR = "server_error"


class TokenGrant(BaseModel):
    """OAuth token response"""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None
    scope: str = ""

    @property
    def is_error(self) -> bool:
        return False


class OAuthErrorResult(BaseModel):
    """OAuth error response"""

    error: str
    error_description: str | None = None

    @property
    def is_error(self) -> bool:
        return True

    @property
    def is_pending(self) -> bool:
        return self.error == AUTHORIZATION_PENDING

    @property
    def is_slow_down(self) -> bool:
        return self.error == SLOW_DOWN

    @property
    def is_expired(self) -> bool:
        return self.error == EXPIRED_TOKEN


DeviceTokenResult = Union[TokenGrant, OAuthErrorResult]


class AuthInfo(BaseModel):
    """Identity assertion produced by bearer verification"""

    token: str
    client_id: str
    scopes: list[str] = Field(default_factory=list)
    expires_at: float


def parse_token_result(data: dict) -> DeviceTokenResult:
    """Turn a wire-format token or error payload into the tagged result.

    Raises:
        ValueError: If the payload is not a JSON object, or is neither an
            error nor a valid token grant (pydantic's ValidationError).
    """
    if not isinstance(data, dict):
        raise ValueError("Token response is not a JSON object")
    if data.get("error"):
        return OAuthErrorResult(error=data["error"], error_description=data.get("error_description"))
    return TokenGrant.model_validate(data)
