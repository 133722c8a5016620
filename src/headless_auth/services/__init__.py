from .engine import ServerAuthorizationEngine

__all__ = ["ServerAuthorizationEngine"]
