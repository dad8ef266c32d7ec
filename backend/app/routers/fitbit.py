"""
Fitbit Router
=============
GET  /api/v1/fitbit/auth      — Redirect to Fitbit's PKCE consent screen.
GET  /api/v1/fitbit/callback  — Validate state, exchange the code, open a session.
GET  /api/v1/fitbit/weight    — Raw weight log for one day.
POST /api/v1/fitbit/refresh   — Refresh using the session's refresh token.
POST /api/v1/fitbit/logout    — Drop the session.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import date, datetime, timezone
from typing import Any, Optional

import httpx
from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from app.config import get_settings
from app.models.oauth import LogoutResponse, SessionResponse
from app.services.fitbit import PROVIDER, FitbitAuthorizer, FitbitClient
from app.services.oauth import ProviderAPIError, ProviderTokenError, SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/fitbit", tags=["fitbit"])


def _sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def _authorizer() -> FitbitAuthorizer:
    return FitbitAuthorizer(get_settings())


@router.get("/auth", summary="Start Fitbit authorisation")
async def start_authorization() -> RedirectResponse:
    url = _authorizer().authorization_url()
    logger.info("Redirecting to Fitbit authorisation")
    return RedirectResponse(url)


@router.get("/callback", summary="Fitbit OAuth2 redirect target")
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
) -> dict:
    if not code or not state:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Missing code or state", "code": "auth_code_missing"},
        )

    authorizer = _authorizer()
    if not authorizer.state_matches(state):
        logger.warning("Fitbit callback state mismatch")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "State does not match the authorisation request", "code": "state_mismatch"},
        )

    try:
        session = await authorizer.exchange_code(code)
    except (ProviderAPIError, httpx.HTTPError) as exc:
        logger.error("Fitbit token exchange failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to exchange code for tokens", "code": "token_exchange_failed"},
        ) from exc

    _sessions(request).open(session)
    return {"message": "Authorization successful. You can now fetch Fitbit data."}


@router.get(
    "/weight",
    summary="Fitbit weight log",
    responses={
        401: {"description": "No Fitbit session, or the access token expired"},
        502: {"description": "Fitbit request failed"},
    },
)
async def get_weight_log(
    request: Request,
    day: Optional[date] = Query(None, description="Defaults to today (UTC)"),
) -> dict[str, Any]:
    settings = get_settings()
    try:
        access_token = await _authorizer().get_access_token(_sessions(request))
    except ProviderTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "User is not authenticated.", "code": "not_authenticated"},
        ) from exc

    client = FitbitClient(access_token, timeout=settings.provider_timeout_seconds)
    try:
        return await client.fetch_weight_log(day or datetime.now(timezone.utc).date())
    except ProviderAPIError as exc:
        logger.warning("Fitbit weight log fetch failed: %s", exc)
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"message": "Access token expired. Please refresh tokens.", "code": "token_expired"},
            ) from exc
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": "Failed to fetch weight data", "code": "provider_fetch_failed"},
        ) from exc
    except httpx.HTTPError as exc:
        logger.warning("Fitbit weight log fetch failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": "Failed to fetch weight data", "code": "provider_fetch_failed"},
        ) from exc


@router.post("/refresh", response_model=SessionResponse, summary="Refresh the Fitbit access token")
async def refresh_token(request: Request) -> SessionResponse:
    registry = _sessions(request)
    session = registry.get(PROVIDER)
    if session is None or not session.refresh_token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Refresh token not available.", "code": "refresh_token_missing"},
        )

    try:
        refreshed = await _authorizer().refresh(session.refresh_token)
    except (ProviderAPIError, httpx.HTTPError) as exc:
        # Fitbit refresh tokens are single-use; a failure leaves nothing to retry with
        registry.close(PROVIDER)
        logger.error("Fitbit token refresh failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to refresh tokens.", "code": "token_refresh_failed"},
        ) from exc

    registry.open(refreshed)
    return SessionResponse(**dataclasses.asdict(refreshed))


@router.post("/logout", response_model=LogoutResponse, summary="Forget the Fitbit session")
async def logout(request: Request) -> LogoutResponse:
    return LogoutResponse(provider=PROVIDER, closed=_sessions(request).close(PROVIDER))
