"""
Credential store boundary and in-memory implementation.

The store is the single source of truth for "which refresh token is
currently valid" per user. Rotation goes through
``compare_and_swap_refresh_token`` so that of two concurrent refreshes
presenting the same token, exactly one wins.
"""

import asyncio
import hmac
import uuid
from dataclasses import dataclass, replace
from typing import Dict, Optional, Protocol

import bcrypt

from shared.errors import ConflictError
from shared.logging import get_logger


@dataclass(frozen=True)
class UserRecord:
    id: str
    name: str
    email: str
    password_hash: bytes
    status: str = "active"

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def public(self) -> Dict[str, str]:
        """Identity fields safe to return to clients."""
        return {"id": self.id, "name": self.name, "email": self.email}


class CredentialStore(Protocol):
    async def find_user(self, email: str) -> Optional[UserRecord]:
        ...

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    async def create_user(self, name: str, email: str, password: str, status: str = "active") -> UserRecord:
        ...

    def verify_password(self, user: UserRecord, password: str) -> bool:
        ...

    async def save_refresh_token(self, user_id: str, token: str) -> None:
        ...

    async def get_stored_refresh_token(self, user_id: str) -> Optional[str]:
        ...

    async def compare_and_swap_refresh_token(self, user_id: str, expected: str, new: str) -> bool:
        ...

    async def clear_refresh_token(self, user_id: str) -> None:
        ...


class InMemoryCredentialStore:
    """Process-local credential store.

    Emails are matched case-insensitively. Passwords are hashed with bcrypt.
    """

    def __init__(self, bcrypt_rounds: int = 12):
        self.bcrypt_rounds = bcrypt_rounds
        self.logger = get_logger("reporting.credential_store")
        self._users: Dict[str, UserRecord] = {}
        self._ids_by_email: Dict[str, str] = {}
        self._refresh_tokens: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def find_user(self, email: str) -> Optional[UserRecord]:
        user_id = self._ids_by_email.get(email.strip().lower())
        return self._users.get(user_id) if user_id else None

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self._users.get(user_id)

    async def create_user(self, name: str, email: str, password: str, status: str = "active") -> UserRecord:
        normalized = email.strip().lower()
        password_hash = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.bcrypt_rounds))

        async with self._lock:
            if normalized in self._ids_by_email:
                raise ConflictError("Email address is already registered")
            user = UserRecord(
                id=str(uuid.uuid4()),
                name=name.strip(),
                email=normalized,
                password_hash=password_hash,
                status=status,
            )
            self._users[user.id] = user
            self._ids_by_email[normalized] = user.id

        self.logger.info("User created", user_id=user.id)
        return user

    async def set_status(self, user_id: str, status: str) -> None:
        async with self._lock:
            user = self._users.get(user_id)
            if user is not None:
                self._users[user_id] = replace(user, status=status)

    def verify_password(self, user: UserRecord, password: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), user.password_hash)
        except ValueError:
            return False

    async def save_refresh_token(self, user_id: str, token: str) -> None:
        """Overwrite the user's refresh token, revoking any previous one."""
        async with self._lock:
            self._refresh_tokens[user_id] = token

    async def get_stored_refresh_token(self, user_id: str) -> Optional[str]:
        return self._refresh_tokens.get(user_id)

    async def compare_and_swap_refresh_token(self, user_id: str, expected: str, new: str) -> bool:
        """Replace the stored token with ``new`` only if it equals ``expected``."""
        async with self._lock:
            current = self._refresh_tokens.get(user_id)
            if current is None or not hmac.compare_digest(current.encode("utf-8"), expected.encode("utf-8")):
                return False
            self._refresh_tokens[user_id] = new
            return True

    async def clear_refresh_token(self, user_id: str) -> None:
        async with self._lock:
            self._refresh_tokens.pop(user_id, None)
