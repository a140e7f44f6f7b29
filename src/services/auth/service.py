"""
Authentication Service

Wraps a session provider for the sign-in screen. Failures are logged
and turned into a short message the user can act on; they are never
raised to the caller.
"""

import re
from typing import Optional

from pydantic import BaseModel

from src.audit import AuditLogger, create_correlation_id
from src.models.ledger import User
from src.services.auth.interface import AuthError, SessionProviderInterface

CONFIRMATION_REQUIRED_MESSAGE = (
    "Signup successful, but email confirmation is still required "
    "before you can log in."
)

_WEAK_PASSWORD = re.compile(r"should be at least (\d+) characters")


def friendly_auth_message(error: Exception) -> str:
    """
    Translate a provider error into wording for the user.

    Only duplicate registration and weak passwords get their own
    message; anything else is passed through as reported.
    """
    message = str(error)
    if "User already registered" in message:
        return "This email is already in use. Try logging in instead."
    weak = _WEAK_PASSWORD.search(message)
    if weak:
        return f"Password is too weak. It must be at least {weak.group(1)} characters."
    return message


class AuthOutcome(BaseModel):
    """Result of a login/register/logout attempt."""

    user: Optional[User] = None
    error: Optional[str] = None
    info: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AuthService:
    """Login, registration and logout against a session provider."""

    def __init__(
        self,
        provider: SessionProviderInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._provider = provider
        self._audit_logger = audit_logger

    @property
    def provider(self) -> SessionProviderInterface:
        return self._provider

    async def _failed(self, action: str, error: Exception) -> AuthOutcome:
        if self._audit_logger:
            await self._audit_logger.log_auth_failed(action, str(error), create_correlation_id())
        return AuthOutcome(error=friendly_auth_message(error))

    async def login(self, email: str, password: str) -> AuthOutcome:
        try:
            user = await self._provider.sign_in(email, password)
        except AuthError as e:
            return await self._failed("login", e)

        if self._audit_logger:
            await self._audit_logger.log_session_changed(user.id, signed_in=True)
        return AuthOutcome(user=user)

    async def register(self, email: str, password: str) -> AuthOutcome:
        """
        Register and, where the provider allows it, sign straight in.

        A registration that still needs email confirmation succeeds with
        no user and an explanatory ``info`` message.
        """
        try:
            result = await self._provider.sign_up(email, password)
        except AuthError as e:
            return await self._failed("signup", e)

        if not result.session_active:
            return AuthOutcome(info=CONFIRMATION_REQUIRED_MESSAGE)

        if self._audit_logger:
            await self._audit_logger.log_session_changed(result.user.id, signed_in=True)
        return AuthOutcome(user=result.user)

    async def logout(self) -> AuthOutcome:
        user = await self._provider.get_session()
        try:
            await self._provider.sign_out()
        except AuthError as e:
            return await self._failed("logout", e)

        if self._audit_logger and user is not None:
            await self._audit_logger.log_session_changed(user.id, signed_in=False)
        return AuthOutcome()
