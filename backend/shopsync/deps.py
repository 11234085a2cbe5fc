"""Dependency providers and settings management."""

import hmac
from functools import lru_cache
from typing import TYPE_CHECKING, Literal, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from shopsync.services.oauth_state import OAuthStateStore
    from shopsync.workers.queue import JobQueue


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    ENVIRONMENT: str = "development"

    # Redis Configuration (arq queue + OAuth state store)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Shopify app credentials
    SHOPIFY_API_KEY: str = ""
    SHOPIFY_API_SECRET: str = ""
    SHOPIFY_API_VERSION: str = "2024-07"
    SHOPIFY_SCOPES: str = "read_orders,read_products,read_customers"
    SHOPIFY_REDIRECT_URI: str = "http://localhost:8000/oauth/shopify/callback"

    # Non-production switches
    # WEBHOOK_HMAC_BYPASS: missing signature header is logged instead of rejected
    # DEV_FAKE_SHOPIFY: fake OAuth token and stub sync data, no calls to Shopify
    WEBHOOK_HMAC_BYPASS: bool = False
    DEV_FAKE_SHOPIFY: bool = False

    # Webhook processing: "inline" answers with the reconciliation outcome,
    # "queue" verifies, enqueues and answers 202
    WEBHOOK_QUEUE_MODE: Literal["inline", "queue"] = "inline"
    QUEUE_BACKEND: Literal["memory", "arq"] = "memory"
    ARQ_QUEUE_NAME: str = "arq:ingest"

    # Full sync
    SYNC_INTERVAL_MINUTES: int = 15
    SYNC_DEADLINE_SECONDS: Optional[float] = 900.0

    OAUTH_STATE_TTL_SECONDS: int = 600  # 10 minutes

    # Shared secret for internal trigger endpoints (sync, install)
    INTERNAL_API_TOKEN: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def require_internal_token(
    x_internal_token: Optional[str] = Header(default=None, alias="X-Internal-Token"),
    settings: Settings = Depends(get_settings),
) -> None:
    """Guard for operator/scheduler-only endpoints.

    Rejects every call when INTERNAL_API_TOKEN is unset so a misconfigured
    deployment fails closed.
    """
    expected = settings.INTERNAL_API_TOKEN
    if not expected or not x_internal_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if not hmac.compare_digest(expected, x_internal_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid internal token")


def get_job_queue(request: Request) -> "JobQueue":
    """Queue created at app startup (see shopsync.main.create_app)."""
    return request.app.state.job_queue


def get_oauth_state_store(request: Request) -> "OAuthStateStore":
    """Pending-install store created at app startup."""
    return request.app.state.oauth_state_store
