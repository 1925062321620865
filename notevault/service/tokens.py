from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from typing import Any, Optional

from notevault.logging import get_logger
from notevault.storage.models import User

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


class TokenError(Exception):
    """Base class for token verification failures."""


class InvalidTokenError(TokenError):
    pass


class TokenExpiredError(TokenError):
    pass


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenSigner:
    """Signs and verifies HS256 access and refresh tokens.

    Access and refresh tokens use separate secrets. Verification is pure: it
    never consults the store, so revocation of access tokens is limited to
    their natural expiry.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        *,
        access_ttl: int = 15 * 60,
        refresh_ttl: int = 7 * 24 * 60 * 60,
        issuer: str = "notevault",
        audience: str = "notevault-clients",
    ) -> None:
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.issuer = issuer
        self.audience = audience

    @classmethod
    def from_settings(cls, settings) -> "TokenSigner":
        return cls(
            settings.jwt_secret,
            settings.refresh_token_secret,
            access_ttl=settings.access_token_ttl_minutes * 60,
            refresh_ttl=settings.refresh_token_ttl_minutes * 60,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )

    @property
    def access_ttl_seconds(self) -> int:
        return self.access_ttl

    def _claims(self, user: User, token_type: str, ttl: int) -> dict[str, Any]:
        now = int(time.time())
        return {
            "sub": user.id,
            "id": user.id,
            "token_type": token_type,
            "iat": now,
            "exp": now + ttl,
            "jti": uuid.uuid4().hex,
            "iss": self.issuer,
            "aud": self.audience,
        }

    def sign_access(self, user: User) -> str:
        claims = self._claims(user, ACCESS, self.access_ttl)
        claims["roles"] = list(user.roles)
        return self.encode(claims, self.access_secret)

    def sign_refresh(self, user: User) -> str:
        return self.encode(self._claims(user, REFRESH, self.refresh_ttl), self.refresh_secret)

    @staticmethod
    def encode(payload: dict[str, Any], secret: str) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = _encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        signature = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
        return f"{signing_input}.{_encode_segment(signature)}"

    def verify(
        self, token: str, secret: str, *, token_type: Optional[str] = None
    ) -> dict[str, Any]:
        if not token or not isinstance(token, str):
            raise InvalidTokenError("token missing")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise InvalidTokenError("malformed token")

        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError):
            raise InvalidTokenError("malformed header")
        # Reject "none" and anything else that is not the algorithm we sign with
        alg = header.get("alg") if isinstance(header, dict) else None
        if alg != "HS256":
            logger.warning("jwt_invalid_algorithm", alg=alg)
            raise InvalidTokenError("unsupported algorithm")

        signing_input = f"{header_b64}.{payload_b64}"
        expected_sig = _encode_segment(
            hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
        )
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            raise InvalidTokenError("bad signature")

        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError):
            raise InvalidTokenError("malformed payload")
        if not isinstance(payload, dict):
            raise InvalidTokenError("malformed payload")
        if payload.get("iss") != self.issuer:
            raise InvalidTokenError("issuer mismatch")
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            raise InvalidTokenError("audience mismatch")
        if token_type is not None and payload.get("token_type") != token_type:
            raise InvalidTokenError("wrong token type")
        if not payload.get("sub"):
            raise InvalidTokenError("subject missing")
        try:
            exp_ts = float(payload["exp"])
        except (KeyError, TypeError, ValueError):
            raise InvalidTokenError("expiry missing")
        if exp_ts <= time.time():
            raise TokenExpiredError("token expired")
        return payload

    def verify_access(self, token: str) -> dict[str, Any]:
        return self.verify(token, self.access_secret, token_type=ACCESS)

    def verify_refresh(self, token: str) -> dict[str, Any]:
        return self.verify(token, self.refresh_secret, token_type=REFRESH)


__all__ = [
    "TokenSigner",
    "TokenError",
    "InvalidTokenError",
    "TokenExpiredError",
    "ACCESS",
    "REFRESH",
]
