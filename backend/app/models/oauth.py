"""
OAuth Schemas
=============
Token endpoint payloads shared by the Google Fit and Fitbit authorizers,
plus the request/response bodies of the refresh routes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TokenResponse(BaseModel):
    """Response from a provider's OAuth token endpoint."""

    access_token: str
    # Google omits this on refresh; Fitbit rotates it every time
    refresh_token: Optional[str] = None
    expires_in: int = 3600  # seconds until expiry
    token_type: str = "Bearer"
    scope: Optional[str] = None


class RefreshTokenRequest(BaseModel):
    """Body of POST /api/v1/google-fit/refresh-token.

    Accepts ``refreshToken`` (what existing clients send) or ``refresh_token``.
    """

    model_config = ConfigDict(populate_by_name=True)

    # Optional so a missing token is a 400 from the router, not a 422
    refresh_token: Optional[str] = Field(None, alias="refreshToken")


class SessionResponse(BaseModel):
    """Current provider session, returned after a successful refresh."""

    provider: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: datetime
    scope: Optional[str] = None


class LogoutResponse(BaseModel):
    provider: str
    closed: bool
