"""
Google Fit Router
=================
GET  /api/v1/google-fit/auth           — Redirect to Google's consent screen.
GET  /api/v1/google-fit/callback       — Exchange the code, open a session.
GET  /api/v1/google-fit/fitness-data   — Daily records over the lookback window.
POST /api/v1/google-fit/refresh-token  — Trade a refresh token for a new session.
POST /api/v1/google-fit/logout         — Drop the session.

Only the normalised DailyRecord list is returned from fitness-data; the
raw aggregate payload never leaves this layer.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from app.config import get_settings
from app.models.fitness import DailyRecord
from app.models.oauth import LogoutResponse, RefreshTokenRequest, SessionResponse
from app.services.google_fit import (
    PROVIDER,
    GoogleFitAuthorizer,
    GoogleFitClient,
    fetch_daily_records,
)
from app.services.normalizer import MalformedInput
from app.services.oauth import ProviderAPIError, ProviderTokenError, SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/google-fit", tags=["google-fit"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def _authorizer() -> GoogleFitAuthorizer:
    return GoogleFitAuthorizer(get_settings())


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------

@router.get("/auth", summary="Start Google Fit authorisation")
async def start_authorization() -> RedirectResponse:
    return RedirectResponse(_authorizer().authorization_url())


@router.get("/callback", summary="Google OAuth2 redirect target")
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorisation code from Google"),
) -> RedirectResponse:
    """Exchange the code for tokens, then send the browser on to fitness-data."""
    if not code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Authorization code missing", "code": "auth_code_missing"},
        )

    try:
        session = await _authorizer().exchange_code(code)
    except (ProviderAPIError, httpx.HTTPError) as exc:
        logger.error("Google Fit token exchange failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to exchange token", "code": "token_exchange_failed"},
        ) from exc

    _sessions(request).open(session)
    return RedirectResponse(f"{router.prefix}/fitness-data", status_code=status.HTTP_303_SEE_OTHER)


@router.post("/refresh-token", response_model=SessionResponse, summary="Refresh the access token")
async def refresh_token(
    request: Request,
    body: Optional[RefreshTokenRequest] = None,
) -> SessionResponse:
    refresh = body.refresh_token if body else None
    if not refresh:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Missing refresh token", "code": "refresh_token_missing"},
        )

    registry = _sessions(request)
    try:
        session = await _authorizer().refresh(refresh)
    except (ProviderAPIError, httpx.HTTPError) as exc:
        registry.close(PROVIDER)
        logger.error("Google Fit token refresh failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to refresh token", "code": "token_refresh_failed"},
        ) from exc

    registry.open(session)
    return SessionResponse(**dataclasses.asdict(session))


@router.post("/logout", response_model=LogoutResponse, summary="Forget the Google Fit session")
async def logout(request: Request) -> LogoutResponse:
    return LogoutResponse(provider=PROVIDER, closed=_sessions(request).close(PROVIDER))


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------

@router.get(
    "/fitness-data",
    response_model=list[DailyRecord],
    summary="Daily health metrics",
    description=(
        "Aggregates steps, glucose, blood pressure, heart rate, weight, height "
        "and sleep per day over the configured lookback window."
    ),
    responses={
        200: {"description": "One record per day, oldest first"},
        401: {"description": "No Google Fit session, or the token was rejected"},
        502: {"description": "Google Fit request failed or returned an unusable payload"},
    },
)
async def get_fitness_data(request: Request) -> list[DailyRecord]:
    settings = get_settings()
    registry = _sessions(request)

    try:
        access_token = await _authorizer().get_access_token(registry)
    except ProviderTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": str(exc), "code": "not_authenticated"},
        ) from exc

    client = GoogleFitClient(access_token, timeout=settings.provider_timeout_seconds)
    try:
        return await fetch_daily_records(client, settings.fitness_lookback_days)
    except ProviderAPIError as exc:
        logger.warning("Google Fit aggregate failed: %s", exc)
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            registry.close(PROVIDER)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"message": "Access token rejected. Please re-authorize.", "code": "token_expired"},
            ) from exc
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": "Failed to fetch fitness data", "code": "provider_fetch_failed"},
        ) from exc
    except (MalformedInput, httpx.HTTPError) as exc:
        logger.warning("Google Fit aggregate unusable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": "Failed to fetch fitness data", "code": "provider_fetch_failed"},
        ) from exc
