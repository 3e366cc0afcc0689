"""Read path for cached mosaic tiles."""

import hashlib
from dataclasses import dataclass, field
from typing import Dict, Tuple

from app.api.v1.features.imagery.mosaic.errors import (
    InvalidRequestError,
    NotFoundError,
)
from app.api.v1.features.imagery.mosaic.keys import is_valid_hash
from app.api.v1.features.imagery.mosaic.schemas import TileFormat
from app.api.v1.features.imagery.mosaic.storage import MosaicCache

MAX_ZOOM = 24
CACHE_CONTROL = "public, max-age=31536000, immutable"


@dataclass
class TileResponse:
    content: bytes
    media_type: str
    etag: str
    headers: Dict[str, str] = field(default_factory=dict)


class TileServer:
    """Serve tiles straight from the cache; never builds anything."""

    def __init__(self, cache: MosaicCache):
        self.cache = cache

    @staticmethod
    def parse_format(value: str) -> TileFormat:
        try:
            return TileFormat(value.lower())
        except ValueError:
            raise InvalidRequestError("Unsupported format")

    @staticmethod
    def parse_coords(zoom: str, x: str, y: str) -> Tuple[int, int, int]:
        """Validate raw path segments as a tile address in the pyramid."""
        # Plain ASCII digits only; int() would also take "+1", " 5" or "1_0".
        if not all(
            isinstance(v, str) and v.isascii() and v.isdigit() for v in (zoom, x, y)
        ):
            raise InvalidRequestError("Invalid tile coordinates")
        z_val, x_val, y_val = int(zoom), int(x), int(y)

        if not 0 <= z_val <= MAX_ZOOM:
            raise InvalidRequestError("Invalid tile coordinates")
        cells = 2**z_val
        if not (0 <= x_val < cells and 0 <= y_val < cells):
            raise InvalidRequestError("Invalid tile coordinates")
        return z_val, x_val, y_val

    async def get_tile(
        self, mosaic_hash: str, zoom: str, x: str, y: str, format: str
    ) -> TileResponse:
        """Look up one tile.

        Raises:
            InvalidRequestError: Bad format or coordinates
            NotFoundError: Unknown mosaic or missing tile
        """
        tile_format = self.parse_format(format)
        z, x_val, y_val = self.parse_coords(zoom, x, y)

        if not is_valid_hash(mosaic_hash) or not await self.cache.has_mosaic(
            mosaic_hash
        ):
            raise NotFoundError("Mosaic not found")

        data = await self.cache.get_tile(mosaic_hash, z, x_val, y_val, tile_format)
        if data is None:
            raise NotFoundError("Tile not found")

        etag = hashlib.md5(data, usedforsecurity=False).hexdigest()
        return TileResponse(
            content=data,
            media_type=tile_format.media_type,
            etag=etag,
            headers={"Cache-Control": CACHE_CONTROL, "ETag": f'"{etag}"'},
        )
