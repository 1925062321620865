from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from notevault.config import Settings
from notevault.logging import get_logger
from notevault.service.errors import AuthenticationError, ConflictError, ValidationError
from notevault.service.passwords import (
    generate_placeholder_password,
    hash_password,
    verify_password,
)
from notevault.service.tokens import TokenError, TokenExpiredError, TokenSigner
from notevault.storage.errors import ConstraintViolation
from notevault.storage.models import DEFAULT_ROLES, User, normalize_email

INVALID_CREDENTIALS = "Invalid credentials"
MISSING_AUTH_HEADER = "Missing or invalid Authorization header"
INVALID_ACCESS_TOKEN = "Invalid or expired token"


class AuthStore(Protocol):
    def create_user(
        self, email: str, password_hash: str, *, roles: Optional[List[str]] = None
    ) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def add_refresh_token(
        self, user_id: str, token: str, *, keep: Optional[int] = None
    ) -> bool: ...

    def rotate_refresh_token(
        self, user_id: str, old_token: str, new_token: str, *, keep: Optional[int] = None
    ) -> bool: ...

    def remove_refresh_token(self, user_id: str, token: str) -> bool: ...


@dataclass
class AuthContext:
    user_id: str
    roles: List[str] = field(default_factory=lambda: list(DEFAULT_ROLES))

    @property
    def is_admin(self) -> bool:
        return "ADMIN" in self.roles


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None


def _require(value: Optional[str], message: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(message)
    return value


class AuthService:
    """Local credentials, token issuance and refresh-token rotation.

    Every piece of state lives in the store; the service itself is safe to
    share between requests.
    """

    def __init__(self, store: AuthStore, signer: TokenSigner, settings: Settings) -> None:
        self.store = store
        self.signer = signer
        self.settings = settings
        self.logger = get_logger(__name__)
        # Verified against when the email is unknown so both failure paths cost the same
        self._dummy_hash = hash_password(generate_placeholder_password())

    def register(self, email: Optional[str], password: Optional[str]) -> User:
        if not email or not email.strip() or not password:
            raise ValidationError("email & password required")
        normalized = normalize_email(email)
        if self.store.get_user_by_email(normalized):
            raise ConflictError("Email already registered")
        try:
            user = self.store.create_user(normalized, hash_password(password))
        except ConstraintViolation:
            raise ConflictError("Email already registered")
        self.logger.info("user_registered", user_id=user.id)
        return user

    def login(self, email: Optional[str], password: Optional[str]) -> TokenPair:
        if not email or not email.strip() or not password:
            raise ValidationError("email & password required")
        user = self.store.get_user_by_email(normalize_email(email))
        if not user:
            verify_password(password, self._dummy_hash)
            self.logger.info("login_failed", reason="unknown_user")
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not verify_password(password, user.password_hash):
            self.logger.info("login_failed", reason="bad_password", user_id=user.id)
            raise AuthenticationError(INVALID_CREDENTIALS)
        pair = self.issue_token_pair(user)
        self.logger.info("login_succeeded", user_id=user.id)
        return pair

    def issue_token_pair(self, user: User) -> TokenPair:
        access = self.signer.sign_access(user)
        refresh = self.signer.sign_refresh(user)
        if not self.store.add_refresh_token(
            user.id, refresh, keep=self.settings.max_refresh_tokens
        ):
            raise AuthenticationError(INVALID_CREDENTIALS)
        return TokenPair(
            access_token=access,
            refresh_token=refresh,
            expires_in=self.signer.access_ttl_seconds,
        )

    def refresh(self, refresh_token: Optional[str]) -> TokenPair:
        _require(refresh_token, "refresh_token required")
        try:
            claims = self.signer.verify_refresh(refresh_token)
        except TokenError as exc:
            self.logger.info("refresh_rejected", reason=str(exc))
            raise AuthenticationError("Invalid refresh token")
        user = self.store.get_user(str(claims["sub"]))
        if not user:
            raise AuthenticationError("Invalid refresh token")
        if refresh_token not in user.refresh_tokens:
            self.logger.warning("refresh_reuse_detected", user_id=user.id)
            raise AuthenticationError("Refresh token revoked")

        new_access = self.signer.sign_access(user)
        new_refresh = self.signer.sign_refresh(user)
        rotated = self.store.rotate_refresh_token(
            user.id, refresh_token, new_refresh, keep=self.settings.max_refresh_tokens
        )
        if not rotated:
            # Another request consumed this token between the read and the update
            self.logger.warning("refresh_reuse_detected", user_id=user.id, stage="rotate")
            raise AuthenticationError("Refresh token revoked")
        self.logger.info("refresh_rotated", user_id=user.id)
        return TokenPair(access_token=new_access, refresh_token=new_refresh)

    def revoke(self, refresh_token: Optional[str]) -> None:
        _require(refresh_token, "refresh_token required")
        try:
            claims = self.signer.verify_refresh(refresh_token)
        except TokenError:
            self.logger.info("revoke_ignored", reason="invalid_token")
            return
        user_id = str(claims["sub"])
        if not self.store.get_user(user_id):
            return
        removed = self.store.remove_refresh_token(user_id, refresh_token)
        self.logger.info("refresh_revoked", user_id=user_id, removed=removed)

    def authenticate(self, authorization: Optional[str]) -> AuthContext:
        """Resolve a ``Bearer <token>`` header into the caller's identity."""
        if not authorization:
            raise AuthenticationError(MISSING_AUTH_HEADER)
        parts = authorization.split(" ")
        if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
            raise AuthenticationError(MISSING_AUTH_HEADER)
        try:
            claims = self.signer.verify_access(parts[1])
        except TokenExpiredError:
            raise AuthenticationError(INVALID_ACCESS_TOKEN, detail={"reason": "expired"})
        except TokenError:
            raise AuthenticationError(INVALID_ACCESS_TOKEN)
        roles = claims.get("roles")
        return AuthContext(
            user_id=str(claims["sub"]),
            roles=list(roles) if isinstance(roles, list) else list(DEFAULT_ROLES),
        )


__all__ = [
    "AuthContext",
    "AuthService",
    "TokenPair",
    "INVALID_CREDENTIALS",
    "MISSING_AUTH_HEADER",
    "INVALID_ACCESS_TOKEN",
]
