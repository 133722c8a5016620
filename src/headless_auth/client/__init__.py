"""
Headless device flow client.
"""

from .headless import ClientPollingEngine, PollingState
from .storage import ClientStateStorage

__all__ = ["ClientPollingEngine", "PollingState", "ClientStateStorage"]
