"""Services layer - API-only services.

Engine services live in ``shared.services``; this package holds what only
the HTTP process needs.
"""

from .auth_service import AuthService

__all__ = ["AuthService"]
