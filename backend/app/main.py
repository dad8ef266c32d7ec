"""
FitBridge API
=============
FastAPI application entry point. Mount routers here.

Provider sessions live on ``app.state.sessions`` for the lifetime of the
process.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.routers import fitbit, google_fit
from app.services.oauth import SessionRegistry

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="FitBridge API",
    description="Google Fit and Fitbit OAuth bridge with daily health metrics",
    version="0.1.0",
    docs_url="/api/docs" if settings.environment != "production" else None,
    redoc_url="/api/redoc" if settings.environment != "production" else None,
)

app.state.sessions = SessionRegistry()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(google_fit.router)
app.include_router(fitbit.router)


@app.get("/api/v1/health")
async def health_check() -> dict:
    return {"status": "ok", "service": "fitbridge-api"}
