from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response, status

from app.api.v1.features.imagery.mosaic.deps import get_mosaic_cache
from app.api.v1.features.imagery.mosaic.storage import MosaicCache

router = APIRouter()


@router.get("/live")
async def liveness_check() -> Dict[str, Any]:
    """Liveness probe for container orchestration."""
    return {"status": "alive", "timestamp": datetime.now(timezone.utc)}


@router.get("/ready")
async def readiness_check(
    response: Response,
    cache: MosaicCache = Depends(get_mosaic_cache),
) -> Dict[str, Any]:
    """Readiness probe: the tile store must accept writes."""
    writable = await cache.is_writable()
    if not writable:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "ready" if writable else "unavailable",
        "timestamp": datetime.now(timezone.utc),
        "services": {"storage": "healthy" if writable else "unwritable"},
    }
