"""
Tests for Google Fit
====================
Covers:
- GoogleFitAuthorizer: consent URL params, code exchange and refresh request shape
- GoogleFitClient: aggregate request body, bucket extraction, auth header, errors
- default_time_range: 14 days back, one day ahead
- Router: auth redirect, callback, fitness-data (normalised, 401, 502),
  refresh-token, logout

Run: pytest tests/test_google_fit.py -v
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
import respx
from fastapi.testclient import TestClient
from httpx import Response

from app.services.google_fit import (
    AGGREGATE_DATA_TYPES,
    GOOGLE_FIT_SCOPES,
    GOOGLE_TOKEN_URL,
    GoogleFitAuthorizer,
    GoogleFitClient,
    default_time_range,
)
from app.services.normalizer import STEP_COUNT_SOURCE, WEIGHT_SOURCE
from app.services.oauth import OAuthSession, ProviderAPIError, SessionRegistry

# ---------------------------------------------------------------------------
# Fixtures / constants
# ---------------------------------------------------------------------------

_AGGREGATE_URL = "https://www.googleapis.com/fitness/v1/users/me/dataset:aggregate"
_ACCESS_TOKEN = "test-access-token"

_SETTINGS = MagicMock(
    google_fit_client_id="gfit-id",
    google_fit_client_secret="gfit-secret",
    google_fit_redirect_uri="http://localhost:3000/api/v1/google-fit/callback",
    provider_timeout_seconds=5.0,
)

_TOKEN_RESPONSE = {
    "access_token": "new-access-token",
    "refresh_token": "new-refresh-token",
    "expires_in": 3599,
    "token_type": "Bearer",
    "scope": " ".join(GOOGLE_FIT_SCOPES),
}

# 2026-02-20T00:00:00Z
_FEB20_MS = 1771545600000

_AGGREGATE_RESPONSE = {
    "bucket": [
        {
            "startTimeMillis": str(_FEB20_MS),
            "endTimeMillis": str(_FEB20_MS + 86400000),
            "dataset": [
                {
                    "dataSourceId": STEP_COUNT_SOURCE,
                    "point": [{"value": [{"intVal": 4231, "mapVal": []}]}],
                },
                {
                    "dataSourceId": WEIGHT_SOURCE,
                    "point": [{"value": [{"fpVal": 71.5}, {"fpVal": 72.0}, {"fpVal": 71.0}]}],
                },
            ],
        },
        {
            "startTimeMillis": str(_FEB20_MS + 86400000),
            "endTimeMillis": str(_FEB20_MS + 2 * 86400000),
            "dataset": [{"dataSourceId": STEP_COUNT_SOURCE, "point": []}],
        },
    ]
}


def _valid_session() -> OAuthSession:
    return OAuthSession(
        provider="google_fit",
        access_token=_ACCESS_TOKEN,
        refresh_token="refresh-token",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )


def _client_with_registry(session: OAuthSession | None = None) -> tuple[TestClient, SessionRegistry]:
    from app.main import app

    registry = SessionRegistry()
    if session:
        registry.open(session)
    app.state.sessions = registry
    return TestClient(app), registry


# ---------------------------------------------------------------------------
# TestAuthorizer
# ---------------------------------------------------------------------------

class TestAuthorizer:

    def test_authorization_url_requests_offline_access(self):
        url = GoogleFitAuthorizer(_SETTINGS).authorization_url()
        parsed = urlparse(url)
        params = parse_qs(parsed.query)

        assert parsed.netloc == "accounts.google.com"
        assert params["client_id"] == ["gfit-id"]
        assert params["access_type"] == ["offline"]
        assert params["response_type"] == ["code"]
        assert params["redirect_uri"] == [_SETTINGS.google_fit_redirect_uri]
        assert params["scope"][0].split(" ") == GOOGLE_FIT_SCOPES
        assert "state" not in params

    def test_authorization_url_includes_state_when_given(self):
        params = parse_qs(urlparse(GoogleFitAuthorizer(_SETTINGS).authorization_url(state="xyz")).query)
        assert params["state"] == ["xyz"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_exchange_code_posts_form_with_credentials(self):
        route = respx.post(GOOGLE_TOKEN_URL).mock(return_value=Response(200, json=_TOKEN_RESPONSE))

        session = await GoogleFitAuthorizer(_SETTINGS).exchange_code("auth-code")

        form = parse_qs(route.calls[0].request.content.decode())
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["auth-code"]
        assert form["client_id"] == ["gfit-id"]
        assert form["client_secret"] == ["gfit-secret"]
        assert form["redirect_uri"] == [_SETTINGS.google_fit_redirect_uri]
        assert session.provider == "google_fit"
        assert session.access_token == "new-access-token"
        assert session.refresh_token == "new-refresh-token"

    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_posts_refresh_grant(self):
        route = respx.post(GOOGLE_TOKEN_URL).mock(
            return_value=Response(200, json={"access_token": "refreshed", "expires_in": 3599, "token_type": "Bearer"})
        )

        session = await GoogleFitAuthorizer(_SETTINGS).refresh("old-refresh")

        form = parse_qs(route.calls[0].request.content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["old-refresh"]
        assert session.access_token == "refreshed"
        assert session.refresh_token == "old-refresh"

    @pytest.mark.asyncio
    @respx.mock
    async def test_token_endpoint_error_raises_ProviderAPIError(self):
        respx.post(GOOGLE_TOKEN_URL).mock(return_value=Response(400, text="invalid_grant"))
        with pytest.raises(ProviderAPIError) as exc_info:
            await GoogleFitAuthorizer(_SETTINGS).exchange_code("bad-code")

        assert exc_info.value.status_code == 400
        assert exc_info.value.provider == "google_fit"
        assert "invalid_grant" in exc_info.value.body


# ---------------------------------------------------------------------------
# TestGoogleFitClient
# ---------------------------------------------------------------------------

class TestGoogleFitClient:

    @pytest.mark.asyncio
    @respx.mock
    async def test_aggregate_request_body(self):
        route = respx.post(_AGGREGATE_URL).mock(return_value=Response(200, json={"bucket": []}))

        await GoogleFitClient(_ACCESS_TOKEN).aggregate(1000, 2000)

        body = json.loads(route.calls[0].request.content)
        assert body["startTimeMillis"] == 1000
        assert body["endTimeMillis"] == 2000
        assert body["bucketByTime"] == {"durationMillis": 86400000}
        assert [a["dataTypeName"] for a in body["aggregateBy"]] == AGGREGATE_DATA_TYPES

    @pytest.mark.asyncio
    @respx.mock
    async def test_aggregate_returns_raw_buckets(self):
        respx.post(_AGGREGATE_URL).mock(return_value=Response(200, json=_AGGREGATE_RESPONSE))
        buckets = await GoogleFitClient(_ACCESS_TOKEN).aggregate(0, 1)
        assert buckets == _AGGREGATE_RESPONSE["bucket"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_bucket_key_is_empty_list(self):
        respx.post(_AGGREGATE_URL).mock(return_value=Response(200, json={}))
        assert await GoogleFitClient(_ACCESS_TOKEN).aggregate(0, 1) == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_bearer_token_sent_in_header(self):
        route = respx.post(_AGGREGATE_URL).mock(return_value=Response(200, json={"bucket": []}))
        await GoogleFitClient(_ACCESS_TOKEN).aggregate(0, 1)
        assert route.calls[0].request.headers["Authorization"] == f"Bearer {_ACCESS_TOKEN}"

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_2xx_raises_ProviderAPIError(self):
        respx.post(_AGGREGATE_URL).mock(return_value=Response(403, text="Forbidden"))
        with pytest.raises(ProviderAPIError) as exc_info:
            await GoogleFitClient(_ACCESS_TOKEN).aggregate(0, 1)
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_json_body_is_None(self):
        respx.post(_AGGREGATE_URL).mock(return_value=Response(200, text="<html>Service Unavailable</html>"))
        assert await GoogleFitClient(_ACCESS_TOKEN).aggregate(0, 1) is None


class TestDefaultTimeRange:

    def test_fourteen_days_back_one_day_ahead(self):
        now = datetime(2026, 2, 20, 12, 0, tzinfo=timezone.utc)
        start, end = default_time_range(14, now=now)

        assert start == int((now - timedelta(days=14)).timestamp() * 1000)
        assert end == int((now + timedelta(days=1)).timestamp() * 1000)
        assert end - start == 15 * 86400000


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class TestAuthRoutes:

    def test_auth_redirects_to_google(self):
        client, _ = _client_with_registry()
        resp = client.get("/api/v1/google-fit/auth", follow_redirects=False)

        assert resp.status_code == 307
        assert resp.headers["location"].startswith("https://accounts.google.com/o/oauth2/v2/auth?")

    def test_callback_without_code_is_400(self):
        client, _ = _client_with_registry()
        resp = client.get("/api/v1/google-fit/callback")

        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "auth_code_missing"

    def test_callback_opens_session_and_redirects(self):
        client, registry = _client_with_registry()
        with patch.object(GoogleFitAuthorizer, "exchange_code", AsyncMock(return_value=_valid_session())):
            resp = client.get("/api/v1/google-fit/callback?code=abc", follow_redirects=False)

        assert resp.status_code == 303
        assert resp.headers["location"] == "/api/v1/google-fit/fitness-data"
        assert registry.require("google_fit").access_token == _ACCESS_TOKEN

    def test_callback_exchange_failure_is_500(self):
        client, registry = _client_with_registry()
        failing = AsyncMock(side_effect=ProviderAPIError("google_fit", 400, "invalid_grant"))
        with patch.object(GoogleFitAuthorizer, "exchange_code", failing):
            resp = client.get("/api/v1/google-fit/callback?code=abc", follow_redirects=False)

        assert resp.status_code == 500
        assert resp.json()["detail"]["code"] == "token_exchange_failed"
        assert registry.get("google_fit") is None

    def test_logout_closes_session(self):
        client, registry = _client_with_registry(_valid_session())
        resp = client.post("/api/v1/google-fit/logout")

        assert resp.status_code == 200
        assert resp.json() == {"provider": "google_fit", "closed": True}
        assert registry.get("google_fit") is None


class TestFitnessDataRoute:

    def test_requires_session(self):
        client, _ = _client_with_registry()
        resp = client.get("/api/v1/google-fit/fitness-data")

        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "not_authenticated"

    def test_returns_normalised_daily_records(self):
        client, _ = _client_with_registry(_valid_session())
        aggregate = AsyncMock(return_value=_AGGREGATE_RESPONSE["bucket"])
        with patch.object(GoogleFitClient, "aggregate", aggregate):
            resp = client.get("/api/v1/google-fit/fitness-data")

        assert resp.status_code == 200
        data = resp.json()
        assert len(data) == 2
        assert data[0] == {
            "date": "2026-02-20",
            "stepCount": 4231,
            "glucoseLevel": 0.0,
            "bloodPressure": [0.0, 0.0],
            "heartRate": 0.0,
            "weight": 71.5,
            "heightCm": 0.0,
            "sleepHours": 0.0,
        }
        assert data[1]["date"] == "2026-02-21"
        assert data[1]["stepCount"] == 0

    def test_provider_error_is_502(self):
        client, _ = _client_with_registry(_valid_session())
        failing = AsyncMock(side_effect=ProviderAPIError("google_fit", 500, "backend error"))
        with patch.object(GoogleFitClient, "aggregate", failing):
            resp = client.get("/api/v1/google-fit/fitness-data")

        assert resp.status_code == 502
        assert resp.json()["detail"]["code"] == "provider_fetch_failed"

    def test_rejected_token_is_401_and_closes_session(self):
        client, registry = _client_with_registry(_valid_session())
        failing = AsyncMock(side_effect=ProviderAPIError("google_fit", 401, "Unauthorized"))
        with patch.object(GoogleFitClient, "aggregate", failing):
            resp = client.get("/api/v1/google-fit/fitness-data")

        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "token_expired"
        assert registry.get("google_fit") is None

    def test_malformed_payload_is_502(self):
        client, _ = _client_with_registry(_valid_session())
        with patch.object(GoogleFitClient, "aggregate", AsyncMock(return_value=None)):
            resp = client.get("/api/v1/google-fit/fitness-data")

        assert resp.status_code == 502
        assert resp.json()["detail"]["code"] == "provider_fetch_failed"

    def test_non_json_aggregate_body_is_502(self):
        client, registry = _client_with_registry(_valid_session())
        with respx.mock:
            respx.post(_AGGREGATE_URL).mock(return_value=Response(200, text="<html>Service Unavailable</html>"))
            resp = client.get("/api/v1/google-fit/fitness-data")

        assert resp.status_code == 502
        assert resp.json()["detail"]["code"] == "provider_fetch_failed"
        assert registry.get("google_fit") is not None

    def test_unparseable_refresh_response_is_401(self):
        expired = OAuthSession(
            provider="google_fit",
            access_token="stale",
            refresh_token="refresh-token",
            expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        )
        client, registry = _client_with_registry(expired)
        with respx.mock:
            respx.post(GOOGLE_TOKEN_URL).mock(return_value=Response(200, json={"error": "server_error"}))
            resp = client.get("/api/v1/google-fit/fitness-data")

        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "not_authenticated"
        assert registry.get("google_fit") is None

    def test_expired_session_is_refreshed_first(self):
        expired = OAuthSession(
            provider="google_fit",
            access_token="stale",
            refresh_token="refresh-token",
            expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        )
        client, registry = _client_with_registry(expired)
        refreshed = _valid_session()
        with patch.object(GoogleFitAuthorizer, "refresh", AsyncMock(return_value=refreshed)) as refresh, \
             patch.object(GoogleFitClient, "aggregate", AsyncMock(return_value=[])):
            resp = client.get("/api/v1/google-fit/fitness-data")

        assert resp.status_code == 200
        assert resp.json() == []
        refresh.assert_awaited_once_with("refresh-token")
        assert registry.require("google_fit").access_token == _ACCESS_TOKEN


class TestRefreshTokenRoute:

    def test_missing_refresh_token_is_400(self):
        client, _ = _client_with_registry()
        resp = client.post("/api/v1/google-fit/refresh-token", json={})

        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "refresh_token_missing"

    def test_refresh_returns_new_session(self):
        client, registry = _client_with_registry()
        with patch.object(GoogleFitAuthorizer, "refresh", AsyncMock(return_value=_valid_session())):
            resp = client.post("/api/v1/google-fit/refresh-token", json={"refresh_token": "refresh-token"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["provider"] == "google_fit"
        assert data["access_token"] == _ACCESS_TOKEN
        assert "expires_at" in data
        assert registry.get("google_fit") is not None

    def test_accepts_camel_case_refresh_token(self):
        client, _ = _client_with_registry()
        with patch.object(GoogleFitAuthorizer, "refresh", AsyncMock(return_value=_valid_session())) as refresh:
            resp = client.post("/api/v1/google-fit/refresh-token", json={"refreshToken": "refresh-token"})

        assert resp.status_code == 200
        refresh.assert_awaited_once_with("refresh-token")

    def test_refresh_failure_is_500_and_closes_session(self):
        client, registry = _client_with_registry(_valid_session())
        failing = AsyncMock(side_effect=ProviderAPIError("google_fit", 400, "invalid_grant"))
        with patch.object(GoogleFitAuthorizer, "refresh", failing):
            resp = client.post("/api/v1/google-fit/refresh-token", json={"refresh_token": "bad"})

        assert resp.status_code == 500
        assert resp.json()["detail"]["code"] == "token_refresh_failed"
        assert registry.get("google_fit") is None


class TestHealthCheck:

    def test_health(self):
        client, _ = _client_with_registry()
        resp = client.get("/api/v1/health")
        assert resp.json() == {"status": "ok", "service": "fitbridge-api"}
