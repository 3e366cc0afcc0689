"""Construction of mosaic services from settings."""

from typing import Optional

from httpx import AsyncClient

from app.api.v1.features.imagery.mosaic.pipeline import PipelineOrchestrator
from app.api.v1.features.imagery.mosaic.processor import SceneProcessor
from app.api.v1.features.imagery.mosaic.schemas import TileFormat
from app.api.v1.features.imagery.mosaic.selector import SceneSelector
from app.api.v1.features.imagery.mosaic.service import MosaicService
from app.api.v1.features.imagery.mosaic.storage import MosaicCache
from app.api.v1.features.imagery.mosaic.synthesizer import GridTileSynthesizer
from app.api.v1.features.imagery.stac.client import STACClient
from app.api.v1.features.imagery.tiles.service import TileServer
from app.core.config import Settings, settings


def get_mosaic_cache() -> MosaicCache:
    """Dependency to get the on-disk mosaic cache."""
    return MosaicCache(settings.storage_root)


def get_tile_server() -> TileServer:
    """Dependency to get the tile read path."""
    return TileServer(get_mosaic_cache())


def get_mosaic_service() -> MosaicService:
    """Dependency to get the job queue front-end."""
    return MosaicService()


def build_orchestrator(
    client: AsyncClient,
    cache: Optional[MosaicCache] = None,
    config: Settings = settings,
) -> PipelineOrchestrator:
    """Wire a pipeline around one shared HTTP client.

    The caller owns ``client`` and closes it when done.
    """
    catalog = STACClient(
        config.catalog_url,
        client=client,
        timeout=config.catalog_timeout,
        retries=config.fetch_retries,
        backoff=config.fetch_backoff,
    )
    processor = SceneProcessor(
        client,
        max_dimension=config.scene_max_dimension,
        jpeg_quality=config.scene_jpeg_quality,
        timeout=config.asset_timeout,
        retries=config.fetch_retries,
        backoff=config.fetch_backoff,
    )
    synthesizer = GridTileSynthesizer(
        tile_size=config.tile_size, format=TileFormat(config.tile_format)
    )
    return PipelineOrchestrator(
        cache or MosaicCache(config.storage_root),
        catalog,
        SceneSelector(config.max_scenes),
        processor,
        synthesizer,
        collections=config.catalog_collections,
        cloud_cover_max=config.cloud_cover_max,
        catalog_limit=config.catalog_limit,
        max_zoom=config.max_zoom,
        tile_workers=config.tile_workers,
    )
