"""
OAuth Sessions
==============
Explicit token context shared by the Google Fit and Fitbit authorizers.

An OAuthSession is created when a code is exchanged, replaced when a
refresh succeeds, and dropped on logout or when a refresh fails. Sessions
live in a SessionRegistry attached to ``app.state``; nothing here is a
module-level global.

Tokens are held in memory only. One session per provider: this bridge
serves a single user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from pydantic import ValidationError

from app.models.oauth import TokenResponse

logger = logging.getLogger(__name__)

# Refresh the access token this many minutes before it actually expires
EXPIRY_BUFFER_MINUTES = 5


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ProviderAPIError(Exception):
    """Non-2xx response from a provider API or token endpoint."""

    def __init__(self, provider: str, status_code: int, body: str) -> None:
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(f"{provider} API error {status_code}: {body}")


class ProviderTokenError(Exception):
    """No session for the provider, or the session cannot be refreshed."""


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OAuthSession:
    provider: str
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

    @classmethod
    def from_token_response(
        cls,
        provider: str,
        token: TokenResponse,
        previous_refresh_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OAuthSession:
        """Build a session from a token payload.

        Google does not return a refresh token on refresh, so the previous
        one is carried over when the payload has none.
        """
        issued_at = now or datetime.now(timezone.utc)
        return cls(
            provider=provider,
            access_token=token.access_token,
            refresh_token=token.refresh_token or previous_refresh_token,
            expires_at=issued_at + timedelta(seconds=token.expires_in),
            scope=token.scope,
        )

    def is_expired(self, now: Optional[datetime] = None, buffer_minutes: int = EXPIRY_BUFFER_MINUTES) -> bool:
        current = now or datetime.now(timezone.utc)
        return current + timedelta(minutes=buffer_minutes) >= self.expires_at


class SessionRegistry:
    """In-memory map of provider name → current OAuthSession."""

    def __init__(self) -> None:
        self._sessions: dict[str, OAuthSession] = {}

    def open(self, session: OAuthSession) -> OAuthSession:
        self._sessions[session.provider] = session
        return session

    def get(self, provider: str) -> Optional[OAuthSession]:
        return self._sessions.get(provider)

    def require(self, provider: str) -> OAuthSession:
        """Return the provider's session or raise ProviderTokenError."""
        session = self._sessions.get(provider)
        if session is None:
            raise ProviderTokenError(f"No {provider} session; authorize first")
        return session

    def close(self, provider: str) -> bool:
        """Drop the provider's session. Returns whether one existed."""
        return self._sessions.pop(provider, None) is not None

    def clear(self) -> None:
        self._sessions.clear()


# ---------------------------------------------------------------------------
# Authorizer base: code exchange, refresh, token-on-demand
# ---------------------------------------------------------------------------


class BaseAuthorizer:
    """Token endpoint plumbing shared by the provider authorizers.

    Subclasses set ``provider`` and ``token_url`` and decide how client
    credentials travel (form fields or HTTP Basic).
    """

    provider: str = ""
    token_url: str = ""

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout

    def _client_fields(self) -> dict[str, str]:
        """Extra form fields sent with every token request."""
        return {}

    def _client_auth(self) -> Optional[httpx.Auth]:
        """HTTP auth for token requests, if the provider wants Basic auth."""
        return None

    def _code_fields(self, code: str) -> dict[str, str]:
        return {"grant_type": "authorization_code", "code": code}

    async def exchange_code(self, code: str) -> OAuthSession:
        """Trade an authorisation code for a fresh session."""
        token = await self._post_token(self._code_fields(code))
        return OAuthSession.from_token_response(self.provider, token)

    async def refresh(self, refresh_token: str) -> OAuthSession:
        """Use a refresh token to obtain a new session."""
        token = await self._post_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )
        return OAuthSession.from_token_response(
            self.provider, token, previous_refresh_token=refresh_token
        )

    async def get_access_token(self, registry: SessionRegistry) -> str:
        """
        Return a valid access token from the registry's session.
        Auto-refreshes if the token expires within the buffer window; a
        failed refresh closes the session and raises ProviderTokenError.
        """
        session = registry.require(self.provider)
        if not session.is_expired():
            return session.access_token

        if not session.refresh_token:
            registry.close(self.provider)
            raise ProviderTokenError(f"{self.provider} token expired and no refresh token is available")

        try:
            refreshed = await self.refresh(session.refresh_token)
        except (ProviderAPIError, httpx.HTTPError) as exc:
            registry.close(self.provider)
            logger.warning("%s token refresh failed: %s", self.provider, exc)
            raise ProviderTokenError(f"{self.provider} token refresh failed") from exc

        return registry.open(refreshed).access_token

    async def _post_token(self, data: dict[str, str]) -> TokenResponse:
        """POST a form to the token endpoint. Raises ProviderAPIError on non-2xx or an unusable body."""
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                self.token_url,
                data={**data, **self._client_fields()},
                auth=self._client_auth(),
            )
        if not response.is_success:
            raise ProviderAPIError(self.provider, response.status_code, response.text)
        try:
            return TokenResponse(**response.json())
        except (ValidationError, ValueError, TypeError) as exc:
            raise ProviderAPIError(self.provider, response.status_code, response.text) from exc
