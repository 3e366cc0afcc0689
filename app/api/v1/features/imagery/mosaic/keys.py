"""Cache key derivation.

Every path that addresses the cache (pipeline writes, management lookups,
tile URL generation) goes through :func:`mosaic_hash`, so the rounding rules
can never drift apart between writers and readers.
"""

import hashlib
import json
import re
from typing import Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, field_validator

BBOX_PRECISION = 3

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")

BBox = Tuple[float, float, float, float]


def round_bbox(bbox: Sequence[float], precision: int = BBOX_PRECISION) -> BBox:
    """Round bbox coordinates, folding -0.0 into 0.0."""
    if len(bbox) != 4:
        raise ValueError("bbox must have exactly 4 coordinates")
    west, south, east, north = (round(float(c), precision) + 0.0 for c in bbox)
    return (west, south, east, north)


def mosaic_hash(year: int, bbox: Sequence[float]) -> str:
    """Derive the content address for a (year, bbox) pair."""
    canonical = json.dumps(
        {"year": int(year), "bbox": list(round_bbox(bbox))},
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def is_valid_hash(value: str) -> bool:
    return bool(_HASH_RE.match(value))


def tile_url(
    mosaic_hash_value: str,
    z: Union[int, str],
    x: Union[int, str],
    y: Union[int, str],
    format: str = "png",
    prefix: str = "/api/v1",
) -> str:
    """Build the public URL of a cached tile.

    Pass ``"{z}"``, ``"{x}"`` and ``"{y}"`` to get an XYZ template for map clients.
    """
    return f"{prefix}/tiles/{mosaic_hash_value}/{z}/{x}/{y}.{format}"


class MosaicKey(BaseModel):
    """Logical identity of a mosaic: a year and a bounding box."""

    model_config = ConfigDict(frozen=True)

    year: int
    bbox: BBox

    @field_validator("bbox", mode="before")
    @classmethod
    def _round(cls, value: Sequence[float]) -> BBox:
        return round_bbox(value)

    @property
    def hash(self) -> str:
        return mosaic_hash(self.year, self.bbox)

    @property
    def datetime_range(self) -> str:
        """STAC datetime interval covering the whole year."""
        return f"{self.year}-01-01T00:00:00Z/{self.year}-12-31T23:59:59Z"
