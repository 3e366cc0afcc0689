"""Router for mosaic cache management endpoints."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.v1.features.imagery.mosaic.deps import (
    get_mosaic_cache,
    get_mosaic_service,
)
from app.api.v1.features.imagery.mosaic.keys import MosaicKey, is_valid_hash, tile_url
from app.api.v1.features.imagery.mosaic.schemas import (
    CleanupRequest,
    CleanupResponse,
    DownloadRequest,
    MosaicJob,
    MosaicKeyRequest,
    MosaicLookup,
    MosaicRecord,
    StorageStats,
)
from app.api.v1.features.imagery.mosaic.service import MosaicService
from app.api.v1.features.imagery.mosaic.storage import MosaicCache
from app.core.config import settings
from app.core.logging import logger

router = APIRouter(prefix="/mosaics", tags=["mosaics"])


@router.get("", response_model=List[MosaicRecord])
async def list_mosaics(
    cache: MosaicCache = Depends(get_mosaic_cache),
) -> List[MosaicRecord]:
    """List every cached mosaic."""
    return await cache.list_all()


@router.get("/stats", response_model=StorageStats)
async def storage_stats(
    cache: MosaicCache = Depends(get_mosaic_cache),
) -> StorageStats:
    """Get totals across the cache."""
    return await cache.stats()


@router.post("/lookup", response_model=MosaicLookup)
async def lookup_mosaic(
    request: MosaicKeyRequest,
    cache: MosaicCache = Depends(get_mosaic_cache),
) -> MosaicLookup:
    """Check whether a (year, bbox) pair is cached and where its tiles live."""
    key = MosaicKey(year=request.year, bbox=request.bbox)
    info = await cache.get_info(key)
    return MosaicLookup(
        hash=key.hash,
        exists=info is not None,
        tile_url=tile_url(
            key.hash,
            "{z}",
            "{x}",
            "{y}",
            settings.tile_format,
            settings.api_v1_prefix,
        ),
        info=info,
    )


@router.post("/download", response_model=List[MosaicJob])
async def download_mosaics(
    request: DownloadRequest,
    cache: MosaicCache = Depends(get_mosaic_cache),
    service: MosaicService = Depends(get_mosaic_service),
) -> List[MosaicJob]:
    """Queue mosaic builds for one or more years.

    Each year is built by a background worker. Use the job ids to follow
    progress; years already cached are reported as completed right away.
    """
    try:
        return await service.enqueue_downloads(request, cache)
    except Exception as e:
        logger.error(f"Failed to queue mosaic download: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to queue mosaic download",
        )


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_mosaics(
    request: CleanupRequest,
    cache: MosaicCache = Depends(get_mosaic_cache),
) -> CleanupResponse:
    """Delete mosaics downloaded more than ``max_age_days`` ago."""
    deleted = await cache.cleanup(request.max_age_days)
    return CleanupResponse(deleted=deleted, max_age_days=request.max_age_days)


@router.get("/jobs/{job_id}", response_model=MosaicJob)
async def get_job_status(
    job_id: str,
    service: MosaicService = Depends(get_mosaic_service),
) -> MosaicJob:
    """Get the status of a mosaic build job."""
    job = await service.get_job_status(job_id)

    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Job {job_id} not found"
        )

    return job


@router.delete("/jobs/{job_id}")
async def cancel_job(
    job_id: str,
    service: MosaicService = Depends(get_mosaic_service),
) -> dict:
    """Cancel a pending or running mosaic job."""
    cancelled = await service.cancel_job(job_id)

    if not cancelled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Failed to cancel job"
        )

    return {"message": f"Job {job_id} cancelled"}


@router.get("/{mosaic_hash}", response_model=MosaicRecord)
async def get_mosaic(
    mosaic_hash: str,
    cache: MosaicCache = Depends(get_mosaic_cache),
) -> MosaicRecord:
    """Get the metadata of one cached mosaic."""
    info = await cache.get_info(mosaic_hash) if is_valid_hash(mosaic_hash) else None
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Mosaic not found"
        )
    return info


@router.delete("/{mosaic_hash}")
async def delete_mosaic(
    mosaic_hash: str,
    cache: MosaicCache = Depends(get_mosaic_cache),
) -> dict:
    """Delete one mosaic and all of its tiles."""
    if not is_valid_hash(mosaic_hash) or not await cache.delete(mosaic_hash):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Mosaic not found"
        )
    return {"message": f"Mosaic {mosaic_hash} deleted"}
