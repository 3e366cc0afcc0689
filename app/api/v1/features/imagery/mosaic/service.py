"""Service layer for queued mosaic builds."""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

import redis.asyncio as redis
from arq.connections import ArqRedis

from app.api.v1.features.imagery.mosaic.keys import MosaicKey, tile_url
from app.api.v1.features.imagery.mosaic.schemas import (
    DownloadRequest,
    MosaicJob,
    MosaicJobStatus,
)
from app.api.v1.features.imagery.mosaic.storage import MosaicCache
from app.core.config import settings
from app.core.logging import logger
from app.workers.config import get_redis_pool
from app.workers.tasks import get_job_status, update_job_status

ACTIVE_STATUSES = ("pending", "processing")


class MosaicService:
    """Queue mosaic builds on the arq worker and report their status."""

    def __init__(self, redis_url: Optional[str] = None) -> None:
        self.redis_url = redis_url or settings.redis_url

    async def enqueue_downloads(
        self, request: DownloadRequest, cache: MosaicCache
    ) -> List[MosaicJob]:
        """Queue one build per requested year.

        Years that are already cached come back as completed jobs without
        touching the queue.

        Args:
            request: Years, bbox and optional zoom depth
            cache: Cache used to skip years already built

        Returns:
            One MosaicJob per year, in year order
        """
        jobs = []
        pool: Optional[ArqRedis] = None
        try:
            for year in request.years:
                key = MosaicKey(year=year, bbox=request.bbox)
                now = datetime.now(timezone.utc)
                url = self._tile_url(key.hash)

                if await cache.has_mosaic(key):
                    jobs.append(
                        MosaicJob(
                            job_id=f"cached_{key.hash[:16]}",
                            status=MosaicJobStatus.COMPLETED,
                            created_at=now,
                            updated_at=now,
                            year=year,
                            hash=key.hash,
                            progress=100,
                            stage="complete",
                            message="Mosaic already exists locally",
                            tile_url=url,
                        )
                    )
                    continue

                if pool is None:
                    pool = await get_redis_pool(self.redis_url)

                job_id = f"mosaic_{uuid4().hex}"
                message = f"Mosaic build for {year} queued"
                await update_job_status(
                    pool,
                    job_id,
                    "pending",
                    {
                        "created_at": now.isoformat(),
                        "year": year,
                        "hash": key.hash,
                        "progress": 0,
                        "message": message,
                    },
                )
                await pool.enqueue_job(
                    "build_mosaic",
                    job_id=job_id,
                    year=year,
                    bbox=list(key.bbox),
                    max_zoom=request.max_zoom,
                    _job_id=job_id,
                )
                jobs.append(
                    MosaicJob(
                        job_id=job_id,
                        status=MosaicJobStatus.PENDING,
                        created_at=now,
                        updated_at=now,
                        year=year,
                        hash=key.hash,
                        progress=0,
                        message=message,
                    )
                )
                logger.info(f"Queued mosaic job {job_id} for {year} ({key.hash})")
        finally:
            if pool is not None:
                await pool.aclose()

        return jobs

    async def get_job_status(self, job_id: str) -> Optional[MosaicJob]:
        """Get the status of a mosaic job.

        Args:
            job_id: Job identifier

        Returns:
            MosaicJob with current status or None if not found
        """
        redis_client = redis.from_url(self.redis_url)
        try:
            status_data = await get_job_status(redis_client, job_id)
        finally:
            await redis_client.aclose()

        if status_data.get("status") == "not_found":
            return None
        return self._to_job(job_id, status_data)

    async def cancel_job(self, job_id: str) -> bool:
        """Mark a pending or running job as cancelled.

        The worker checks the flag before starting and between progress
        updates, so a running build stops at its next checkpoint.

        Returns:
            True if the job was active and is now cancelled
        """
        redis_client = redis.from_url(self.redis_url)
        try:
            current = await get_job_status(redis_client, job_id)
            if current.get("status") not in ACTIVE_STATUSES:
                return False
            await update_job_status(
                redis_client,
                job_id,
                "cancelled",
                {"message": "Job cancelled by user"},
            )
        finally:
            await redis_client.aclose()

        logger.info(f"Cancelled mosaic job {job_id}")
        return True

    @staticmethod
    def _tile_url(mosaic_hash: str) -> str:
        return tile_url(
            mosaic_hash,
            "{z}",
            "{x}",
            "{y}",
            settings.tile_format,
            settings.api_v1_prefix,
        )

    @staticmethod
    def _to_job(job_id: str, data: dict) -> MosaicJob:
        now = datetime.now(timezone.utc).isoformat()
        return MosaicJob(
            job_id=job_id,
            status=MosaicJobStatus(data.get("status", "pending")),
            created_at=datetime.fromisoformat(data.get("created_at", now)),
            updated_at=datetime.fromisoformat(data.get("updated_at", now)),
            year=data.get("year"),
            hash=data.get("hash"),
            progress=data.get("progress"),
            stage=data.get("stage"),
            message=data.get("message"),
            tile_url=data.get("tile_url"),
            error=data.get("error"),
        )
