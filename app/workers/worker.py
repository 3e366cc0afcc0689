"""Arq worker entry point."""

from typing import Any, Dict

import httpx
from arq import cron
from loguru import logger

from app.api.v1.features.imagery.mosaic.deps import build_orchestrator
from app.api.v1.features.imagery.mosaic.storage import MosaicCache
from app.core.config import settings
from app.core.logging import setup_logging
from app.workers.config import WorkerSettings
from app.workers.tasks import build_mosaic, cleanup_mosaics


async def startup(ctx: Dict[str, Any]) -> None:
    """Initialize worker on startup.

    One HTTP client and one orchestrator are shared by every job, so builds
    for the same mosaic inside this worker are serialized.

    Args:
        ctx: Worker context that will be passed to all tasks
    """
    setup_logging()
    logger.info("Starting Arq worker...")
    logger.info(f"Max jobs: {WorkerSettings.max_jobs}")
    logger.info(f"Storage root: {settings.storage_root}")

    ctx["http_client"] = httpx.AsyncClient()
    ctx["cache"] = MosaicCache(settings.storage_root)
    ctx["orchestrator"] = build_orchestrator(ctx["http_client"], ctx["cache"])


async def shutdown(ctx: Dict[str, Any]) -> None:
    """Clean up on worker shutdown.

    Args:
        ctx: Worker context
    """
    logger.info("Shutting down Arq worker...")
    client = ctx.get("http_client")
    if client is not None:
        await client.aclose()


class WorkerConfig:
    """Arq worker configuration."""

    # Functions to make available to the worker
    functions = [build_mosaic, cleanup_mosaics]

    # Cron jobs for scheduled tasks
    cron_jobs = [
        cron(
            cleanup_mosaics,
            hour=settings.cleanup_hour,
            minute=0,
            run_at_startup=False,
        ),
    ]

    # Worker settings
    redis_settings = WorkerSettings.redis_settings
    max_jobs = WorkerSettings.max_jobs
    job_timeout = WorkerSettings.job_timeout
    keep_result = WorkerSettings.keep_result
    keep_result_forever = WorkerSettings.keep_result_forever
    max_tries = WorkerSettings.max_tries
    health_check_interval = WorkerSettings.health_check_interval

    # Lifecycle hooks
    on_startup = startup
    on_shutdown = shutdown
