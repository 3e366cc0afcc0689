from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Mosaic Tile Cache"
    version: str = "1.0.0"
    description: str = (
        "Descarga, teselado y cache local de mosaicos satelitales por año y área"
    )

    # Redis (background jobs)
    redis_url: str = "redis://localhost:6379"

    # API
    api_v1_prefix: str = "/api/v1"

    # Storage
    storage_root: Path = Path("data/mosaics")

    # Catalog
    catalog_url: str = "https://earth-search.aws.element84.com/v1"
    # Unset searches Landsat and/or Sentinel-2 depending on the year
    catalog_collections: Optional[List[str]] = None
    catalog_limit: int = 50
    cloud_cover_max: float = 20.0

    # Pipeline
    max_scenes: int = 5
    max_zoom: int = 10
    tile_size: int = 256
    tile_format: str = "png"
    tile_workers: int = 8
    scene_max_dimension: int = 2048
    scene_jpeg_quality: int = 85

    # Outbound HTTP
    catalog_timeout: float = 30.0
    asset_timeout: float = 120.0
    fetch_retries: int = 2
    fetch_backoff: float = 1.0

    # Eviction
    cleanup_max_age_days: int = 30
    cleanup_hour: int = 2

    # Environment
    environment: str = "development"
    debug: bool = True

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
