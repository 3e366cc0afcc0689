"""Mosaic module: cache, build pipeline and management of tile pyramids."""

from app.api.v1.features.imagery.mosaic.keys import MosaicKey, mosaic_hash
from app.api.v1.features.imagery.mosaic.schemas import (
    MosaicJob,
    MosaicJobStatus,
    MosaicRecord,
    PipelineStage,
    ProgressEvent,
    StorageStats,
    TileFormat,
)
from app.api.v1.features.imagery.mosaic.storage import MosaicCache

__all__ = [
    "MosaicCache",
    "MosaicJob",
    "MosaicJobStatus",
    "MosaicKey",
    "MosaicRecord",
    "PipelineStage",
    "ProgressEvent",
    "StorageStats",
    "TileFormat",
    "mosaic_hash",
]
