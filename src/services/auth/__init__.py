"""Session and authentication services package."""

from src.services.auth.interface import (
    AuthCallback,
    AuthError,
    SessionProviderInterface,
    SignUpResult,
    Subscription,
)
from src.services.auth.memory import InMemorySessionProvider
from src.services.auth.service import (
    AuthOutcome,
    AuthService,
    friendly_auth_message,
)

__all__ = [
    "AuthCallback",
    "AuthError",
    "AuthOutcome",
    "AuthService",
    "InMemorySessionProvider",
    "SessionProviderInterface",
    "SignUpResult",
    "Subscription",
    "friendly_auth_message",
]
