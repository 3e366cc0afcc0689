"""Background tasks for building and evicting cached mosaics."""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from arq import ArqRedis
from loguru import logger

from app.api.v1.features.imagery.mosaic.errors import NoDataError
from app.api.v1.features.imagery.mosaic.keys import MosaicKey, tile_url
from app.api.v1.features.imagery.mosaic.pipeline import PipelineOrchestrator
from app.api.v1.features.imagery.mosaic.schemas import PipelineStage
from app.api.v1.features.imagery.mosaic.storage import MosaicCache
from app.core.config import settings

JOB_STATUS_TTL = 86400  # 24 hours


async def build_mosaic(
    ctx: Dict[str, Any],
    job_id: str,
    year: int,
    bbox: List[float],
    max_zoom: Optional[int] = None,
) -> Dict[str, Any]:
    """Build (or reuse) the mosaic for one year.

    Args:
        ctx: Arq context with Redis connection and the shared orchestrator
        job_id: Unique job identifier
        year: Acquisition year
        bbox: [west, south, east, north]
        max_zoom: Deepest zoom level to render; settings default if omitted

    Returns:
        Dict with the mosaic hash and tile count
    """
    redis: ArqRedis = ctx["redis"]
    orchestrator: PipelineOrchestrator = ctx["orchestrator"]
    key = MosaicKey(year=year, bbox=bbox)

    current = await get_job_status(redis, job_id)
    if current.get("status") == "cancelled":
        logger.info(f"Skipping cancelled job {job_id}")
        return {"job_id": job_id, "status": "cancelled"}

    await update_job_status(
        redis,
        job_id,
        "processing",
        {"year": year, "hash": key.hash, "stage": "searching", "progress": 0},
    )

    run = orchestrator.start(key, max_zoom=max_zoom)
    last_mirrored = None
    cancelled = False

    async for event in run.events():
        # Tile events arrive far faster than Redis needs them.
        snapshot = (event.stage, event.percent)
        if snapshot == last_mirrored or event.stage in (
            PipelineStage.COMPLETE,
            PipelineStage.FAILED,
        ):
            continue
        last_mirrored = snapshot

        status = await get_job_status(redis, job_id)
        if status.get("status") == "cancelled":
            cancelled = True
            run.cancel()
            break

        await update_job_status(
            redis,
            job_id,
            "processing",
            {
                "stage": event.stage.value,
                "progress": event.percent,
                "message": event.message,
            },
        )

    if cancelled:
        await asyncio.wait([run.task])
        logger.info(f"Job {job_id} cancelled during {last_mirrored[0].value}")
        return {"job_id": job_id, "status": "cancelled"}

    try:
        record = await run.result()
    except NoDataError as e:
        await update_job_status(
            redis,
            job_id,
            "failed",
            {"stage": "failed", "error": str(e), "message": str(e)},
        )
        logger.warning(f"Job {job_id}: {e}")
        return {"job_id": job_id, "status": "failed", "error": str(e)}
    except Exception as e:
        await update_job_status(
            redis,
            job_id,
            "failed",
            {"stage": "failed", "error": str(e), "message": "Mosaic build failed"},
        )
        logger.error(f"Job {job_id} failed: {e}")
        raise

    url = tile_url(
        record.hash,
        "{z}",
        "{x}",
        "{y}",
        settings.tile_format,
        settings.api_v1_prefix,
    )
    await update_job_status(
        redis,
        job_id,
        "completed",
        {
            "stage": "complete",
            "progress": 100,
            "message": f"Mosaic ready with {record.tile_count} tiles",
            "tile_url": url,
        },
    )
    logger.info(f"Job {job_id} completed: {record.hash} ({record.tile_count} tiles)")
    return {
        "job_id": job_id,
        "status": "completed",
        "hash": record.hash,
        "tile_count": record.tile_count,
        "tile_url": url,
    }


async def cleanup_mosaics(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Periodic task to evict mosaics older than the configured age.

    Args:
        ctx: Arq context

    Returns:
        Dict with cleanup statistics
    """
    cache: MosaicCache = ctx["cache"]
    deleted = await cache.cleanup(settings.cleanup_max_age_days)
    logger.info(
        f"Evicted {deleted} mosaics older than {settings.cleanup_max_age_days} days"
    )
    return {
        "deleted_mosaics": deleted,
        "max_age_days": settings.cleanup_max_age_days,
        "cleanup_time": datetime.now(timezone.utc).isoformat(),
    }


# Helper functions
async def update_job_status(
    redis: ArqRedis, job_id: str, status: str, data: Dict[str, Any]
) -> None:
    """Merge ``data`` into the job status stored in Redis."""
    key = f"job:status:{job_id}"
    existing = await redis.get(key)
    value = json.loads(existing) if existing else {}
    value.update(data)
    value["status"] = status
    value["updated_at"] = datetime.now(timezone.utc).isoformat()
    value.setdefault("created_at", value["updated_at"])
    await redis.set(key, json.dumps(value), ex=JOB_STATUS_TTL)


async def get_job_status(redis: ArqRedis, job_id: str) -> Dict[str, Any]:
    """Get job status from Redis."""
    key = f"job:status:{job_id}"
    value = await redis.get(key)
    if value:
        return json.loads(value)
    return {"status": "not_found"}
