"""FastAPI application entrypoint.

Configures CORS, the job queue and OAuth state store, includes routers, and
exposes a healthcheck endpoint.
"""

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from shopsync.database import init_db
from shopsync.deps import get_settings
from shopsync.routers import shopify_oauth as shopify_oauth_router
from shopsync.routers import shopify_sync as shopify_sync_router
from shopsync.routers import shopify_webhooks as shopify_webhooks_router
from shopsync.services.oauth_state import InMemoryOAuthStateStore, RedisOAuthStateStore
from shopsync.telemetry import init_sentry
from shopsync.workers.jobs import handle_job
from shopsync.workers.queue import InProcessJobQueue, build_job_queue

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    init_sentry()

    app = FastAPI(
        title="shopsync API",
        description="""
        Multi-tenant Shopify ingestion service.

        - Webhook intake for customers, products and orders (HMAC verified, deduplicated)
        - On-demand and scheduled full resynchronization per tenant
        - Shopify OAuth install flow
        """,
        version="0.1.0",
    )

    # BACKEND_CORS_ORIGINS: comma-separated list
    cors_origins_str = os.getenv("BACKEND_CORS_ORIGINS", "http://localhost:3000")
    allowed_origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]
    logger.info(f"[CORS] Allowed origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.job_queue = build_job_queue(settings)
    if settings.QUEUE_BACKEND == "arq":
        app.state.redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
        app.state.oauth_state_store = RedisOAuthStateStore(
            app.state.redis, ttl_seconds=settings.OAUTH_STATE_TTL_SECONDS
        )
    else:
        app.state.redis = None
        app.state.oauth_state_store = InMemoryOAuthStateStore(ttl_seconds=settings.OAUTH_STATE_TTL_SECONDS)

    app.include_router(shopify_webhooks_router.router)  # Webhook intake
    app.include_router(shopify_sync_router.router)  # Full sync trigger
    app.include_router(shopify_oauth_router.router)  # Install flow

    @app.get("/health", tags=["Health"], summary="Health check")
    def health():
        return {"status": "ok"}

    @app.on_event("startup")
    async def startup_event():
        # No migration tooling; create missing tables
        init_db()
        queue = app.state.job_queue
        if isinstance(queue, InProcessJobQueue):
            # arq jobs are consumed by the worker process instead
            await queue.consume(handle_job)
        logger.info(
            f"[STARTUP] Webhook mode={settings.WEBHOOK_QUEUE_MODE}, queue backend={settings.QUEUE_BACKEND}"
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.job_queue.close()
        if app.state.redis is not None:
            await app.state.redis.aclose()

    return app


app = create_app()
