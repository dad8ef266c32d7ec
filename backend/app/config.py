"""
FitBridge Configuration
=======================
All environment variables in one place. Pydantic Settings validates
types at startup so a missing client id shows up on boot, not on the
first OAuth redirect.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Loaded from environment variables or a .env file."""

    # --- Google Fit ---
    google_fit_client_id: str = ""
    google_fit_client_secret: str = ""
    google_fit_redirect_uri: str = "http://localhost:3000/api/v1/google-fit/callback"

    # --- Fitbit ---
    fitbit_client_id: str = ""
    fitbit_client_secret: str = ""
    fitbit_redirect_uri: str = "http://localhost:3000/api/v1/fitbit/callback"
    # PKCE pair and state are issued out of band and supplied via env
    fitbit_code_challenge: str = ""
    fitbit_code_verifier: str = ""
    fitbit_state: str = ""

    # --- Provider calls ---
    # Aggregate window: this many days back, plus one day ahead
    fitness_lookback_days: int = 14
    provider_timeout_seconds: float = 10.0

    # --- App settings ---
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:8081", "http://localhost:19006"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
