"""
Fitbit Service
==============
OAuth2 (PKCE) and body-log access for the Fitbit Web API.

The PKCE verifier/challenge pair and the state value are provisioned
out of band and read from settings. Token requests carry the client
credentials as HTTP Basic auth, which Fitbit requires for server apps.
"""

from __future__ import annotations

from datetime import date
from typing import Any
from urllib.parse import urlencode

import httpx

from app.config import Settings
from app.services.oauth import BaseAuthorizer, ProviderAPIError

PROVIDER = "fitbit"

FITBIT_AUTH_URL = "https://www.fitbit.com/oauth2/authorize"
FITBIT_TOKEN_URL = "https://api.fitbit.com/oauth2/token"
FITBIT_API_BASE_URL = "https://api.fitbit.com/1/user/-"

FITBIT_SCOPE = "heartrate oxygen_saturation respiratory_rate sleep weight"


class FitbitAuthorizer(BaseAuthorizer):
    provider = PROVIDER
    token_url = FITBIT_TOKEN_URL

    def __init__(self, settings: Settings) -> None:
        super().__init__(timeout=settings.provider_timeout_seconds)
        self._client_id = settings.fitbit_client_id
        self._client_secret = settings.fitbit_client_secret
        self._redirect_uri = settings.fitbit_redirect_uri
        self._code_challenge = settings.fitbit_code_challenge
        self._code_verifier = settings.fitbit_code_verifier
        self.state = settings.fitbit_state

    def authorization_url(self) -> str:
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "scope": FITBIT_SCOPE,
            "code_challenge": self._code_challenge,
            "code_challenge_method": "S256",
            "state": self.state,
        }
        return f"{FITBIT_AUTH_URL}?{urlencode(params)}"

    def state_matches(self, state: str) -> bool:
        """True when no state is configured or the callback echoes it back."""
        return not self.state or state == self.state

    def _client_fields(self) -> dict[str, str]:
        return {"client_id": self._client_id}

    def _client_auth(self) -> httpx.Auth:
        return httpx.BasicAuth(self._client_id, self._client_secret)

    def _code_fields(self, code: str) -> dict[str, str]:
        return {
            **super()._code_fields(code),
            "redirect_uri": self._redirect_uri,
            "code_verifier": self._code_verifier,
        }


class FitbitClient:
    """Makes authenticated requests to the Fitbit Web API."""

    def __init__(self, access_token: str, timeout: float = 10.0) -> None:
        self._token = access_token
        self._timeout = timeout

    async def fetch_weight_log(self, day: date) -> dict[str, Any]:
        """GET body/log/weight/date/{day}.json, returned as Fitbit sends it."""
        return await self._get(f"/body/log/weight/date/{day.isoformat()}.json")

    async def _get(self, path: str) -> dict[str, Any]:
        """Shared async GET call with Bearer auth. Raises ProviderAPIError on non-2xx."""
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(
                f"{FITBIT_API_BASE_URL}{path}",
                headers={"Authorization": f"Bearer {self._token}"},
            )
        if not response.is_success:
            raise ProviderAPIError(PROVIDER, response.status_code, response.text)
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderAPIError(PROVIDER, response.status_code, response.text) from exc
