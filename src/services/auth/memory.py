"""
In-Memory Session Provider

Mirrors the hosted auth service closely enough for tests and local use:
same error wording, same "current session on subscribe" behaviour.
Passwords are kept as salted PBKDF2 hashes.
"""

import asyncio
import hashlib
import secrets
from typing import Optional
from uuid import uuid4

from src.models.ledger import User
from src.services.auth.interface import (
    AuthCallback,
    AuthError,
    SessionProviderInterface,
    SignUpResult,
    Subscription,
)


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode(), salt, 100_000)


class InMemorySessionProvider(SessionProviderInterface):
    """
    Args:
        min_password_length: Shorter passwords are rejected at sign-up
        require_email_confirmation: When True, sign-up succeeds without
            opening a session
    """

    def __init__(
        self,
        min_password_length: int = 6,
        require_email_confirmation: bool = False,
    ):
        self._min_password_length = min_password_length
        self._require_confirmation = require_email_confirmation
        self._users: dict[str, tuple[User, bytes, bytes]] = {}
        self._current: Optional[User] = None
        self._callbacks: list[AuthCallback] = []

    def _notify(self) -> None:
        for callback in list(self._callbacks):
            callback(self._current)

    def _deliver_initial(self, callback: AuthCallback) -> None:
        # Skipped if the subscriber already unsubscribed
        if callback in self._callbacks:
            callback(self._current)

    async def get_session(self) -> Optional[User]:
        return self._current

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        self._callbacks.append(callback)

        # Deliver the initial session on the next loop iteration
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            loop.call_soon(self._deliver_initial, callback)

        return Subscription(lambda: self._callbacks.remove(callback))

    async def sign_in(self, email: str, password: str) -> User:
        entry = self._users.get(email.lower())
        if entry is None:
            raise AuthError("Invalid login credentials")
        user, salt, digest = entry
        if not secrets.compare_digest(_hash_password(password, salt), digest):
            raise AuthError("Invalid login credentials")

        self._current = user
        self._notify()
        return user

    async def sign_up(self, email: str, password: str) -> SignUpResult:
        key = email.lower()
        if key in self._users:
            raise AuthError("User already registered")
        if len(password) < self._min_password_length:
            raise AuthError(
                f"Password should be at least {self._min_password_length} characters."
            )

        user = User(id=str(uuid4()), email=email)
        salt = secrets.token_bytes(16)
        self._users[key] = (user, salt, _hash_password(password, salt))

        if self._require_confirmation:
            return SignUpResult(user=user, session_active=False)

        self._current = user
        self._notify()
        return SignUpResult(user=user, session_active=True)

    async def sign_out(self) -> None:
        if self._current is None:
            return
        self._current = None
        self._notify()
