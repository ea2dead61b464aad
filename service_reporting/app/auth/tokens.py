"""
Token lifecycle manager.

Issues a short-lived access token and a long-lived refresh token per
session, signed with separate secrets. A user has at most one valid refresh
token: login overwrites it, and refresh rotates it through a
compare-and-swap on the credential store, so a refresh token is accepted at
most once.

Refresh check order: signature, expiry and token kind first; only a
cryptographically valid token is compared with the stored value. Every
refresh failure produces the same error message.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import jwt

from shared.config import ReportingConfig
from shared.errors import AuthenticationError, AuthorizationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .credential_store import CredentialStore, UserRecord

ACCESS = "access"
REFRESH = "refresh"

INVALID_CREDENTIALS = "Invalid email or password"
INACTIVE_ACCOUNT = "Account is not active"
INVALID_REFRESH_TOKEN = "Invalid refresh token"
INVALID_ACCESS_TOKEN = "Invalid or expired access token"

_DECODE_OPTIONS = {
    # Expiry is checked against the injected clock
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
    "require": ["sub", "type", "iat", "exp", "jti"],
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Session:
    user_id: str
    access_token: str
    access_token_expiry: datetime
    refresh_token: str
    refresh_token_expiry: datetime


class TokenLifecycleManager:
    """Login, refresh rotation, access verification and logout."""

    def __init__(self,
                 store: CredentialStore,
                 access_secret: str,
                 refresh_secret: str,
                 access_ttl_seconds: int = 15 * 60,
                 refresh_ttl_seconds: int = 7 * 24 * 3600,
                 algorithm: str = "HS256",
                 clock: Callable[[], datetime] = utc_now,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.algorithm = algorithm
        self.metrics = metrics
        self.logger = get_logger("reporting.tokens")
        self._clock = clock
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret}
        self._ttls = {
            ACCESS: timedelta(seconds=access_ttl_seconds),
            REFRESH: timedelta(seconds=refresh_ttl_seconds),
        }

    @classmethod
    def from_config(cls,
                    config: ReportingConfig,
                    store: CredentialStore,
                    metrics: Optional[MetricsCollector] = None,
                    clock: Callable[[], datetime] = utc_now) -> "TokenLifecycleManager":
        return cls(
            store,
            access_secret=config.jwt_access_secret,
            refresh_secret=config.jwt_refresh_secret,
            access_ttl_seconds=config.access_token_ttl_seconds,
            refresh_ttl_seconds=config.refresh_token_ttl_seconds,
            algorithm=config.jwt_algorithm,
            clock=clock,
            metrics=metrics,
        )

    def _event(self, event: str):
        if self.metrics:
            self.metrics.record_token_event(event)

    def _encode(self, user_id: str, kind: str, now: datetime) -> Tuple[str, datetime]:
        expires_at = now + self._ttls[kind]
        payload = {
            "sub": user_id,
            "type": kind,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            # Unique per token, even when two are issued within the same second
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secrets[kind], algorithm=self.algorithm), expires_at

    def _issue(self, user_id: str) -> Session:
        now = self._clock()
        access_token, access_expiry = self._encode(user_id, ACCESS, now)
        refresh_token, refresh_expiry = self._encode(user_id, REFRESH, now)
        return Session(
            user_id=user_id,
            access_token=access_token,
            access_token_expiry=access_expiry,
            refresh_token=refresh_token,
            refresh_token_expiry=refresh_expiry,
        )

    def _decode(self, token: str, kind: str) -> Dict[str, Any]:
        """Verify signature, kind and expiry; raises ``jwt.InvalidTokenError``."""
        claims = jwt.decode(
            token,
            self._secrets[kind],
            algorithms=[self.algorithm],
            options=_DECODE_OPTIONS,
        )
        if claims.get("type") != kind:
            raise jwt.InvalidTokenError("wrong token type")
        if int(claims["exp"]) <= int(self._clock().timestamp()):
            raise jwt.ExpiredSignatureError("token expired")
        return claims

    async def login(self, email: str, password: str) -> Tuple[Session, UserRecord]:
        """Verify credentials and start a session, revoking any previous refresh token."""
        user = await self.store.find_user(email)
        if user is None or not self.store.verify_password(user, password):
            self.logger.warning("Login rejected", reason="bad_credentials")
            self._event("rejected")
            raise AuthenticationError(INVALID_CREDENTIALS)

        if not user.is_active:
            self.logger.warning("Login rejected", reason="inactive", user_id=user.id)
            self._event("rejected")
            raise AuthorizationError(INACTIVE_ACCOUNT)

        session = self._issue(user.id)
        await self.store.save_refresh_token(user.id, session.refresh_token)
        self.logger.info("Session started", user_id=user.id)
        self._event("issued")
        return session, user

    async def refresh(self, refresh_token: str) -> Session:
        """Rotate a refresh token into a new session.

        The presented token must verify and equal the stored token; the
        stored token is then swapped atomically for the new one.
        """
        try:
            claims = self._decode(refresh_token, REFRESH)
        except jwt.InvalidTokenError as e:
            raise self._refresh_rejected(reason=type(e).__name__) from None

        user_id = str(claims["sub"])
        user = await self.store.get_user(user_id)
        if user is None or not user.is_active:
            raise self._refresh_rejected(reason="unknown_user", user_id=user_id)

        session = self._issue(user_id)
        swapped = await self.store.compare_and_swap_refresh_token(
            user_id, refresh_token, session.refresh_token
        )
        if not swapped:
            raise self._refresh_rejected(reason="not_current", user_id=user_id)

        self.logger.info("Session refreshed", user_id=user_id)
        self._event("refreshed")
        return session

    def _refresh_rejected(self, reason: str, user_id: Optional[str] = None) -> AuthenticationError:
        self.logger.warning("Refresh rejected", reason=reason, user_id=user_id)
        self._event("rejected")
        return AuthenticationError(INVALID_REFRESH_TOKEN)

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        """Return the claims of a valid access token."""
        try:
            return self._decode(token, ACCESS)
        except jwt.InvalidTokenError as e:
            self.logger.warning("Access token rejected", reason=type(e).__name__)
            raise AuthenticationError(INVALID_ACCESS_TOKEN) from None

    async def logout(self, user_id: str) -> None:
        """Clear the stored refresh token; outstanding access tokens expire on their own."""
        await self.store.clear_refresh_token(user_id)
        self.logger.info("Session ended", user_id=user_id)
        self._event("revoked")
