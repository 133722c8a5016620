"""Identity provider clients for the device flow bridge."""

from .factory import get_auth_provider
from .github import GitHubDeviceProvider

__all__ = [
    "GitHubDeviceProvider",
    "get_auth_provider",
]
