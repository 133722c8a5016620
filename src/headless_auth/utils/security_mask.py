"""
Log redaction helpers.

Device codes, session tokens and the GitHub tokens they wrap are bearer
secrets, so they only ever reach the logs through these functions.
"""

from typing import Mapping

MASKED = "***MASKED***"
EMPTY = "***EMPTY***"

# Headers whose whole value is a credential
CREDENTIAL_HEADERS = frozenset({"authorization", "cookie"})


def mask_sensitive_id(value: str) -> str:
    """Keep the first and last 4 characters of a device code or client id."""
    if not value or len(value) <= 8:
        return MASKED
    return f"{value[:4]}...{value[-4:]}"


def mask_token(token: str) -> str:
    """Mask a session or provider access token, keeping its last 4 characters.

    Short values are hidden completely since a 4 character suffix would give
    away too much of them.
    """
    if not token:
        return EMPTY
    if len(token) <= 20:
        return MASKED
    return f"...{token[-4:]}"


def mask_headers(headers: Mapping[str, str]) -> dict:
    """Copy of `headers` that is safe to log."""
    masked = {}
    for name, value in headers.items():
        lowered = name.lower()
        if lowered in CREDENTIAL_HEADERS:
            scheme, _, credential = str(value).partition(" ")
            if scheme.lower() == "bearer" and credential:
                masked[name] = f"Bearer {mask_token(credential)}"
            else:
                masked[name] = MASKED
        elif lowered == "x-client-id":
            masked[name] = mask_sensitive_id(value)
        else:
            masked[name] = value
    return masked
