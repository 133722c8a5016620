"""
Headless Auth Exceptions

Error taxonomy shared by the server engine, the HTTP routes and the headless client.
Each error carries the OAuth error code it is rendered as on the wire.
"""


class HeadlessAuthError(Exception):
    """Base exception for device-flow authorization errors."""

    error = "server_error"

    def __init__(self, description: str = "", error: str | None = None):
        super().__init__(description or self.error)
        self.description = description
        if error:
            self.error = error

    def to_dict(self) -> dict:
        content = {"error": self.error}
        if self.description:
            content["error_description"] = self.description
        return content


class ConfigurationError(HeadlessAuthError):
    """Raised when required configuration is missing."""


# ==================== Server side ====================

class InvalidRequestError(HeadlessAuthError):
    """Missing or malformed parameters."""

    error = "invalid_request"


class InvalidClientError(HeadlessAuthError):
    """Unknown client identifier."""

    error = "invalid_client"


class ProviderUnavailableError(HeadlessAuthError):
    """The identity provider could not be reached or answered with a non-success status."""

    error = "server_error"


class ExpiredTokenError(HeadlessAuthError):
    """Device code or grant expired."""

    error = "expired_token"


class InvalidGrantError(HeadlessAuthError):
    """Unknown, expired or already used authorization code."""

    error = "invalid_grant"


class InvalidTokenError(HeadlessAuthError):
    """Bearer token is not known to the session token store."""

    error = "invalid_token"


class TokenExpiredError(InvalidTokenError):
    """Bearer token was known but its expiry has passed."""


class NotSupportedError(HeadlessAuthError):
    """Operation is defined by the provider contract but deliberately unimplemented."""

    error = "unsupported_grant_type"


class TokenCollisionError(RuntimeError):
    """Internal invariant violation: a freshly generated token already exists."""


# ==================== Client side ====================

class ClientNotRegisteredError(HeadlessAuthError):
    """No client information has been saved for this headless client."""

    error = "invalid_client"


class DeviceAuthorizationError(HeadlessAuthError):
    """Device authorization could not be started or continued."""


class AuthorizationExpiredError(ExpiredTokenError):
    """The device code expired before the user authorized it."""


class AuthorizationTimeoutError(HeadlessAuthError):
    """Polling ran out of time without a terminal answer."""

    error = "authorization_timeout"


class AuthorizationCancelledError(HeadlessAuthError):
    """Polling was cancelled by the caller."""

    error = "authorization_cancelled"


class PollingInProgressError(HeadlessAuthError):
    """Another poll loop is already running in this process."""

    error = "polling_in_progress"
