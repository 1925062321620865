from __future__ import annotations

import hmac
import json
import secrets
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from notevault.config import Settings
from notevault.logging import get_logger
from notevault.service.auth import AuthService, TokenPair
from notevault.service.errors import (
    BadRequestError,
    ExternalProviderError,
    ServerError,
    ValidationError,
)
from notevault.service.passwords import generate_placeholder_password, hash_password
from notevault.storage.errors import ConstraintViolation
from notevault.storage.models import User, normalize_email

AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
TOKEN_URL = "https://github.com/login/oauth/access_token"
PROFILE_URL = "https://api.github.com/user"
EMAILS_URL = "https://api.github.com/user/emails"

STATE_COOKIE = "oauth_state"

# Profile fields forwarded to the frontend after a successful sign-in
PROFILE_FIELDS = (
    "id",
    "name",
    "login",
    "email",
    "location",
    "company",
    "blog",
    "bio",
    "public_repos",
    "followers",
    "following",
    "avatar_url",
    "html_url",
    "created_at",
    "updated_at",
)


@dataclass
class OAuthStart:
    authorization_url: str
    state: str


@dataclass
class OAuthResult:
    user: User
    tokens: TokenPair
    profile: dict[str, Any] = field(default_factory=dict)


def select_email(entries: Any) -> Optional[str]:
    """Pick an address from GitHub's ``/user/emails`` listing.

    Only verified entries are considered (entries without the flag count as
    verified); the primary one wins, otherwise the first.
    """
    if not isinstance(entries, list):
        return None
    candidates = [
        e
        for e in entries
        if isinstance(e, dict) and e.get("email") and e.get("verified", True)
    ]
    primary = next((e for e in candidates if e.get("primary")), None)
    chosen = primary or (candidates[0] if candidates else None)
    return chosen["email"] if chosen else None


class GitHubOAuth:
    """Authorization-code bridge from GitHub to locally issued tokens."""

    def __init__(
        self,
        store,
        auth: AuthService,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.store = store
        self.auth = auth
        self.settings = settings
        self.transport = transport
        self.logger = get_logger(__name__)

    def start(self) -> OAuthStart:
        client_id = self.settings.github_client_id
        callback_url = self.settings.github_callback_url
        if not client_id or not callback_url:
            self.logger.error("oauth_not_configured", provider="github")
            raise ServerError("GitHub OAuth is not configured")
        state = secrets.token_hex(16)
        params = {
            "client_id": client_id,
            "redirect_uri": callback_url,
            "scope": self.settings.github_scope,
            "state": state,
        }
        return OAuthStart(authorization_url=f"{AUTHORIZE_URL}?{urlencode(params)}", state=state)

    @staticmethod
    def check_state(returned: Optional[str], stored: Optional[str]) -> None:
        if not returned or not stored:
            raise BadRequestError("Invalid state")
        if not hmac.compare_digest(returned.encode(), stored.encode()):
            raise BadRequestError("Invalid state")

    async def complete(self, code: Optional[str]) -> OAuthResult:
        if not code:
            raise ValidationError("code required")
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.oauth_http_timeout_seconds,
                follow_redirects=False,
                transport=self.transport,
            ) as client:
                provider_token = await self._exchange_code(client, code)
                headers = {
                    "Authorization": f"Bearer {provider_token}",
                    "Accept": "application/vnd.github+json",
                }
                profile = await self._fetch_json(client, PROFILE_URL, headers)
                if not isinstance(profile, dict):
                    raise ExternalProviderError("GitHub profile response was not an object")
                email = profile.get("email")
                if not email:
                    email = select_email(await self._fetch_json(client, EMAILS_URL, headers))
        except httpx.HTTPStatusError as exc:
            self.logger.error(
                "oauth_exchange_http_error",
                provider="github",
                status_code=exc.response.status_code,
            )
            raise ExternalProviderError("GitHub request failed") from exc
        except httpx.HTTPError as exc:
            self.logger.error("oauth_exchange_error", provider="github", error=str(exc))
            raise ExternalProviderError("GitHub request failed") from exc

        if not email:
            self.logger.error("oauth_identity_missing_email", provider="github")
            raise ExternalProviderError("GitHub account has no usable email")

        user = self._resolve_user(email)
        tokens = self.auth.issue_token_pair(user)
        snapshot = {name: profile.get(name) for name in PROFILE_FIELDS}
        snapshot["email"] = email
        self.logger.info("oauth_login_succeeded", provider="github", user_id=user.id)
        return OAuthResult(user=user, tokens=tokens, profile=snapshot)

    async def _exchange_code(self, client: httpx.AsyncClient, code: str) -> str:
        response = await client.post(
            TOKEN_URL,
            data={
                "client_id": self.settings.github_client_id,
                "client_secret": self.settings.github_client_secret,
                "code": code,
                "redirect_uri": self.settings.github_callback_url,
            },
            headers={"Accept": "application/json"},
        )
        response.raise_for_status()
        payload = self._parse(response)
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            # GitHub reports bad codes as 200 with an "error" field
            error = payload.get("error") if isinstance(payload, dict) else None
            self.logger.error("oauth_no_access_token", provider="github", error=error)
            raise ExternalProviderError("No GitHub access token received")
        return access_token

    async def _fetch_json(self, client: httpx.AsyncClient, url: str, headers: dict) -> Any:
        response = await client.get(url, headers=headers)
        response.raise_for_status()
        return self._parse(response)

    def _parse(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            self.logger.error("oauth_response_parse_error", url=str(response.request.url))
            raise ExternalProviderError("GitHub returned malformed JSON") from exc

    def _resolve_user(self, email: str) -> User:
        normalized = normalize_email(email)
        existing = self.store.get_user_by_email(normalized)
        if existing:
            return existing
        try:
            user = self.store.create_user(
                normalized, hash_password(generate_placeholder_password())
            )
        except ConstraintViolation:
            # Lost a race with a concurrent first login for the same email
            user = self.store.get_user_by_email(normalized)
            if not user:
                raise
        else:
            self.logger.info("oauth_user_created", provider="github", user_id=user.id)
        return user

    def success_redirect(self, result: OAuthResult) -> str:
        params = {
            "access_token": result.tokens.access_token,
            "refresh_token": result.tokens.refresh_token,
            "user_data": json.dumps(result.profile, separators=(",", ":")),
        }
        return f"{self._frontend()}/auth/success?{urlencode(params)}"

    def failure_redirect(self) -> str:
        return f"{self._frontend()}/?{urlencode({'error': 'oauth_failed'})}"

    def _frontend(self) -> str:
        return self.settings.frontend_url.rstrip("/")


__all__ = [
    "GitHubOAuth",
    "OAuthStart",
    "OAuthResult",
    "select_email",
    "STATE_COOKIE",
    "PROFILE_FIELDS",
]
