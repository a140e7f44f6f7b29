"""
Abstract Session Provider Interface

The ledger does not authenticate anyone itself. It asks a provider who
is signed in and listens for changes. A change from "nobody" to a user
triggers a full data load.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from pydantic import BaseModel

from src.models.ledger import User

AuthCallback = Callable[[Optional[User]], None]


class AuthError(Exception):
    """Raised by a provider when sign-in, sign-up or sign-out fails."""
    pass


class SignUpResult(BaseModel):
    """
    Outcome of a registration.

    session_active is False when the provider still wants the email
    confirmed before the user may sign in.
    """

    user: User
    session_active: bool


class Subscription:
    """Handle returned by on_auth_state_change."""

    def __init__(self, unsubscribe: Callable[[], None]):
        self._unsubscribe = unsubscribe
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._unsubscribe()
            self.active = False


class SessionProviderInterface(ABC):
    """Abstract interface for the session/auth collaborator."""

    @abstractmethod
    async def get_session(self) -> Optional[User]:
        """Currently signed-in user, or None."""
        pass

    @abstractmethod
    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        """
        Subscribe to sign-in/sign-out transitions.

        The callback may fire at any time, including right after
        subscribing with the current session.
        """
        pass

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> User:
        """
        Raises:
            AuthError: On bad credentials
        """
        pass

    @abstractmethod
    async def sign_up(self, email: str, password: str) -> SignUpResult:
        """
        Raises:
            AuthError: On duplicate registration or a weak password
        """
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        pass
