"""ARQ worker for ingestion jobs and scheduled full sync.

WHAT:
    - process_ingestion_job: webhook.process and sync.full jobs enqueued by
      ArqJobQueue
    - scheduled_full_sync: cron job syncing every active shop

WHY:
    - Webhook routes in queue mode answer 202 immediately and leave
      reconciliation to this worker
    - Periodic full sync repairs anything webhooks missed (uninstall windows,
      dropped deliveries)

USAGE:
    arq shopsync.workers.arq_worker.WorkerSettings

    # Or use the start script
    python -m shopsync.workers.start_arq_worker

REFERENCES:
    - https://arq-docs.helpmanual.io/
    - shopsync/workers/jobs.py
    - shopsync/services/sync_orchestrator.py
"""

from __future__ import annotations

import logging
import platform
from datetime import datetime, timezone
from typing import Any, Dict

from arq import cron
from arq.worker import func

from shopsync.database import get_sync_session
from shopsync.deps import get_settings
from shopsync.services.sync_orchestrator import sync_active_shops
from shopsync.telemetry import capture_exception, init_sentry
from shopsync.workers.jobs import handle_job
from shopsync.workers.queue import (
    ARQ_JOB_FUNCTION,
    MAX_TRIES,
    get_redis_settings,
    make_arq_job_function,
)

logger = logging.getLogger(__name__)

_settings = get_settings()


# =============================================================================
# CRON JOBS
# =============================================================================

async def scheduled_full_sync(ctx: Dict) -> Dict[str, Any]:
    """Full sync for every tenant with an active shop connection."""
    logger.info("[ARQ] Scheduled full sync starting")
    try:
        with get_sync_session() as db:
            report = await sync_active_shops(db)
    except Exception as e:
        logger.exception("[ARQ] Scheduled full sync crashed")
        capture_exception(e, extra={"job": "scheduled_full_sync"})
        raise

    return {"succeeded": len(report.succeeded), "failed": report.failed}


def _sync_minutes(interval: int) -> set:
    """Clock minutes for the cron: 15 -> {0, 15, 30, 45}."""
    interval = max(1, min(interval, 60))
    return set(range(0, 60, interval))


# =============================================================================
# LIFECYCLE
# =============================================================================

async def startup(ctx: Dict) -> None:
    """Worker startup - initialize resources and log config."""
    init_sentry()
    logger.info("=" * 60)
    logger.info("[ARQ] Ingestion worker starting up")
    logger.info("=" * 60)
    logger.info(f"[ARQ] Python: {platform.python_version()}")
    logger.info(f"[ARQ] Host: {platform.node()}")
    logger.info(f"[ARQ] Queue: {_settings.ARQ_QUEUE_NAME}")
    logger.info(f"[ARQ] Full sync every {_settings.SYNC_INTERVAL_MINUTES} min")
    logger.info("=" * 60)

    ctx["startup_time"] = datetime.now(timezone.utc)


async def shutdown(ctx: Dict) -> None:
    """Worker shutdown - log stats."""
    jobs = ctx.get("jobs_processed", 0)
    uptime = datetime.now(timezone.utc) - ctx.get("startup_time", datetime.now(timezone.utc))

    logger.info("=" * 60)
    logger.info("[ARQ] Worker shutting down")
    logger.info(f"[ARQ] Jobs processed: {jobs}")
    logger.info(f"[ARQ] Uptime: {uptime}")
    logger.info("=" * 60)


async def on_job_end(ctx: Dict) -> None:
    """Called after each job completes."""
    ctx["jobs_processed"] = ctx.get("jobs_processed", 0) + 1


# =============================================================================
# WORKER SETTINGS
# =============================================================================

class WorkerSettings:
    """ARQ worker configuration.

    - max_jobs=10: concurrent webhook/sync jobs
    - job_timeout=900: a full sync of a large shop can take minutes
    - max_tries=5: exponential backoff between attempts (see queue.py)
    """

    functions = [func(make_arq_job_function(handle_job), name=ARQ_JOB_FUNCTION)]

    cron_jobs = [
        cron(
            scheduled_full_sync,
            minute=_sync_minutes(_settings.SYNC_INTERVAL_MINUTES),
            run_at_startup=False,
            unique=True,
        ),
    ]

    # Lifecycle hooks
    on_startup = startup
    on_shutdown = shutdown
    after_job_end = on_job_end

    # Redis connection
    redis_settings = get_redis_settings(_settings.REDIS_URL)

    # Performance settings
    max_jobs = 10
    job_timeout = 900
    keep_result = 3600
    max_tries = MAX_TRIES
    health_check_interval = 30

    queue_name = _settings.ARQ_QUEUE_NAME
