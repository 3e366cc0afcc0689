"""Schemas for mosaic operations."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator


class TileFormat(str, Enum):
    """Encodings accepted for cached tiles."""

    PNG = "png"
    JPG = "jpg"
    WEBP = "webp"

    @property
    def media_type(self) -> str:
        return "image/jpeg" if self is TileFormat.JPG else f"image/{self.value}"

    @property
    def pil_format(self) -> str:
        return "JPEG" if self is TileFormat.JPG else self.value.upper()


class Scene(BaseModel):
    """Catalog scene descriptor used for ranking and fetching."""

    id: str
    cloud_cover: Optional[float] = None
    sun_elevation: Optional[float] = None
    asset_ref: Optional[str] = None
    # Red, green, blue band assets for collections without an RGB composite.
    band_refs: List[str] = Field(default_factory=list)
    acquired_at: Optional[datetime] = None


class ProcessedScene(BaseModel):
    """A scene cut to the mosaic bbox and normalized into an in-memory JPEG."""

    id: str
    data: bytes
    width: int
    height: int
    cloud_cover: Optional[float] = None


class PipelineStage(str, Enum):
    """Stages of a mosaic pipeline run."""

    SEARCHING = "searching"
    PROCESSING = "processing"
    TILING = "tiling"
    COMPLETE = "complete"
    FAILED = "failed"


class TileCoord(BaseModel):
    z: int
    x: int
    y: int


class ProgressEvent(BaseModel):
    """Snapshot of a pipeline run."""

    stage: PipelineStage
    percent: int = Field(..., ge=0, le=100)
    message: str
    tile: Optional[TileCoord] = None
    total_tiles: Optional[int] = None


class MosaicRecord(BaseModel):
    """Metadata persisted as ``metadata.json`` next to a mosaic's tiles."""

    model_config = ConfigDict(populate_by_name=True)

    hash: str
    year: int
    bbox: List[float] = Field(..., min_length=4, max_length=4)
    download_date: datetime = Field(..., alias="downloadDate")
    tile_count: int = Field(0, alias="tileCount", ge=0)
    total_size: int = Field(0, alias="totalSize", ge=0)
    scene_ids: List[str] = Field(default_factory=list, alias="scenes")

    @field_validator("download_date")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_metadata(self) -> Dict[str, Any]:
        """Serialize using the on-disk field names."""
        data = self.model_dump(by_alias=True, mode="json")
        data["downloadDate"] = self.download_date.astimezone(timezone.utc).isoformat()
        return data


class StorageStats(BaseModel):
    """Aggregate statistics over every cached mosaic."""

    total_mosaics: int
    total_size: int
    total_tiles: int
    mosaics: List[MosaicRecord] = Field(default_factory=list)


def check_bbox(value: List[float]) -> List[float]:
    """Reject bboxes outside WGS84 bounds or with inverted corners."""
    west, south, east, north = value
    if not (-180 <= west <= 180 and -180 <= east <= 180):
        raise ValueError("longitude must be within [-180, 180]")
    if not (-90 <= south <= 90 and -90 <= north <= 90):
        raise ValueError("latitude must be within [-90, 90]")
    if west >= east or south >= north:
        raise ValueError("bbox must be [west, south, east, north]")
    return value


class MosaicKeyRequest(BaseModel):
    """Identify a mosaic by year and bounding box."""

    year: int = Field(..., ge=1972, le=2100)
    bbox: Annotated[
        List[float],
        Field(min_length=4, max_length=4, description="[west, south, east, north]"),
        AfterValidator(check_bbox),
    ]


class DownloadRequest(BaseModel):
    """Request to build mosaics for one or more years."""

    years: List[int] = Field(..., min_length=1, max_length=50)
    bbox: Annotated[
        List[float],
        Field(min_length=4, max_length=4, description="[west, south, east, north]"),
        AfterValidator(check_bbox),
    ]
    max_zoom: Optional[int] = Field(None, ge=0, le=18)

    @field_validator("years")
    @classmethod
    def _check_years(cls, value: List[int]) -> List[int]:
        for year in value:
            if not 1972 <= year <= 2100:
                raise ValueError(f"year {year} out of range")
        return sorted(set(value))


class CleanupRequest(BaseModel):
    max_age_days: int = Field(30, ge=0)


class CleanupResponse(BaseModel):
    deleted: int
    max_age_days: int


class MosaicJobStatus(str, Enum):
    """Status of a mosaic build job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class MosaicJob(BaseModel):
    """Mosaic build job information."""

    job_id: str
    status: MosaicJobStatus
    created_at: datetime
    updated_at: datetime
    year: Optional[int] = None
    hash: Optional[str] = None
    progress: Optional[float] = Field(None, ge=0, le=100)
    stage: Optional[str] = None
    message: Optional[str] = None
    tile_url: Optional[str] = None
    error: Optional[str] = None


class MosaicLookup(BaseModel):
    """Cache status of a (year, bbox) pair."""

    hash: str
    exists: bool
    tile_url: str
    info: Optional[MosaicRecord] = None
