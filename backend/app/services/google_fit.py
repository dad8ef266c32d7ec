"""
Google Fit Service
==================
OAuth2 and aggregate-data access for the Google Fit REST API v1.

Responsibilities:
- GoogleFitAuthorizer.authorization_url(): consent screen redirect (offline access)
- GoogleFitAuthorizer.exchange_code() / refresh(): token endpoint calls
- GoogleFitClient.aggregate(): POST users/me/dataset:aggregate, one bucket per day
- fetch_daily_records(): aggregate + normalise for the default window

Raw buckets are returned untouched; shaping them is the normaliser's job.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from app.config import Settings
from app.models.fitness import DailyRecord
from app.services.normalizer import normalize
from app.services.oauth import BaseAuthorizer, ProviderAPIError

PROVIDER = "google_fit"

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_FITNESS_BASE_URL = "https://www.googleapis.com/fitness/v1"

GOOGLE_FIT_SCOPES = [
    "https://www.googleapis.com/auth/fitness.activity.read",
    "https://www.googleapis.com/auth/fitness.blood_glucose.read",
    "https://www.googleapis.com/auth/fitness.blood_pressure.read",
    "https://www.googleapis.com/auth/fitness.heart_rate.read",
    "https://www.googleapis.com/auth/fitness.body.read",
    "https://www.googleapis.com/auth/fitness.sleep.read",
    "https://www.googleapis.com/auth/userinfo.profile",
]

# Data types requested from dataset:aggregate, one dataset each per bucket
AGGREGATE_DATA_TYPES = [
    "com.google.step_count.delta",
    "com.google.blood_glucose",
    "com.google.blood_pressure",
    "com.google.heart_rate.bpm",
    "com.google.weight",
    "com.google.height",
    "com.google.sleep.segment",
]

DAY_MILLIS = 24 * 60 * 60 * 1000


# ---------------------------------------------------------------------------
# Authorizer
# ---------------------------------------------------------------------------


class GoogleFitAuthorizer(BaseAuthorizer):
    """Google OAuth2: client credentials go in the form body."""

    provider = PROVIDER
    token_url = GOOGLE_TOKEN_URL

    def __init__(self, settings: Settings) -> None:
        super().__init__(timeout=settings.provider_timeout_seconds)
        self._client_id = settings.google_fit_client_id
        self._client_secret = settings.google_fit_client_secret
        self._redirect_uri = settings.google_fit_redirect_uri

    def authorization_url(self, state: Optional[str] = None) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_FIT_SCOPES),
            "access_type": "offline",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def _client_fields(self) -> dict[str, str]:
        return {"client_id": self._client_id, "client_secret": self._client_secret}

    def _code_fields(self, code: str) -> dict[str, str]:
        return {**super()._code_fields(code), "redirect_uri": self._redirect_uri}


# ---------------------------------------------------------------------------
# Provider client
# ---------------------------------------------------------------------------


class GoogleFitClient:
    """Makes authenticated requests to the Google Fit REST API v1."""

    def __init__(self, access_token: str, timeout: float = 10.0) -> None:
        self._token = access_token
        self._timeout = timeout

    async def aggregate(self, start_time_millis: int, end_time_millis: int) -> Any:
        """POST users/me/dataset:aggregate bucketed by day.

        Returns the raw ``bucket`` list ([] when the key is absent), or None
        if the body is not a JSON object.
        """
        body = {
            "aggregateBy": [{"dataTypeName": name} for name in AGGREGATE_DATA_TYPES],
            "bucketByTime": {"durationMillis": DAY_MILLIS},
            "startTimeMillis": start_time_millis,
            "endTimeMillis": end_time_millis,
        }
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                f"{GOOGLE_FITNESS_BASE_URL}/users/me/dataset:aggregate",
                json=body,
                headers={"Authorization": f"Bearer {self._token}"},
            )
        if not response.is_success:
            raise ProviderAPIError(PROVIDER, response.status_code, response.text)
        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        return payload.get("bucket", [])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def default_time_range(lookback_days: int, now: Optional[datetime] = None) -> tuple[int, int]:
    """Epoch-millis window from ``lookback_days`` ago to one day ahead of now."""
    current = now or datetime.now(timezone.utc)
    start = current - timedelta(days=lookback_days)
    end = current + timedelta(days=1)
    return int(start.timestamp() * 1000), int(end.timestamp() * 1000)


async def fetch_daily_records(
    client: GoogleFitClient, lookback_days: int, now: Optional[datetime] = None
) -> list[DailyRecord]:
    """Aggregate the default window and normalise it into daily records."""
    start_ms, end_ms = default_time_range(lookback_days, now)
    buckets = await client.aggregate(start_ms, end_ms)
    return normalize(buckets)
