"""Scene asset download and normalization to the mosaic bbox."""

import asyncio
from io import BytesIO
from typing import List, Optional, Sequence, Tuple

import httpx
import numpy as np
from PIL import Image
from rasterio.errors import RasterioError
from rasterio.io import MemoryFile
from rio_tiler.constants import WGS84_CRS
from rio_tiler.errors import RioTilerError
from rio_tiler.io import Reader

from app.api.v1.features.imagery.mosaic.errors import FetchError
from app.api.v1.features.imagery.mosaic.schemas import ProcessedScene, Scene
from app.core.http import fetch_with_retry
from app.core.logging import logger


class SceneProcessor:
    """Fetch a scene's RGB asset and cut the mosaic bbox out of it."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        max_dimension: int = 2048,
        jpeg_quality: int = 85,
        timeout: float = 120.0,
        retries: int = 2,
        backoff: float = 1.0,
    ):
        self.client = client
        self.max_dimension = max_dimension
        self.jpeg_quality = jpeg_quality
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff

    async def process(self, scene: Scene, bbox: Sequence[float]) -> ProcessedScene:
        """Download one scene and crop it to ``bbox``.

        The crop is resampled onto a lon/lat grid spanning exactly ``bbox``,
        so tile cells can be cut from it by position. Pixels the scene does
        not cover are black.

        Raises:
            FetchError: The asset is missing, unreachable, not georeferenced,
                or does not overlap ``bbox``
        """
        refs = [scene.asset_ref] if scene.asset_ref else list(scene.band_refs)
        if not refs:
            raise FetchError(scene.id, "no visual asset")

        raws = [await self._download(scene.id, ref) for ref in refs]

        try:
            data, width, height = await asyncio.to_thread(
                self._normalize, raws, tuple(bbox)
            )
        except (RasterioError, RioTilerError, OSError, ValueError) as e:
            raise FetchError(scene.id, f"cannot read asset: {e}") from e

        return ProcessedScene(
            id=scene.id,
            data=data,
            width=width,
            height=height,
            cloud_cover=scene.cloud_cover,
        )

    async def _download(self, scene_id: str, url: str) -> bytes:
        try:
            response = await fetch_with_retry(
                self.client,
                "GET",
                url,
                retries=self.retries,
                backoff=self.backoff,
                timeout=self.timeout,
                follow_redirects=True,
            )
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(scene_id, str(e)) from e

        logger.debug(f"Downloaded {len(response.content)} bytes for scene {scene_id}")
        return response.content

    def _normalize(
        self, raws: List[bytes], bbox: Tuple[float, ...]
    ) -> Tuple[bytes, int, int]:
        # One composite asset carries all three bands; otherwise one band each.
        indexes = (1, 2, 3) if len(raws) == 1 else (1,)
        bands = []
        mask: Optional[np.ndarray] = None
        for raw in raws:
            size = None if mask is None else mask.shape
            data, band_mask = self._read_part(raw, bbox, indexes, size)
            bands.append(data)
            mask = band_mask if mask is None else np.minimum(mask, band_mask)

        rgb = _to_uint8(np.concatenate(bands, axis=0), mask)
        rgb[:, mask == 0] = 0

        image = Image.fromarray(np.ascontiguousarray(np.moveaxis(rgb, 0, -1)))
        buf = BytesIO()
        image.save(buf, format="JPEG", quality=self.jpeg_quality)
        return buf.getvalue(), image.width, image.height

    def _read_part(
        self,
        raw: bytes,
        bbox: Tuple[float, ...],
        indexes: Tuple[int, ...],
        size: Optional[Tuple[int, int]],
    ) -> Tuple[np.ndarray, np.ndarray]:
        with MemoryFile(raw) as memfile:
            with memfile.open() as src:
                if src.crs is None:
                    raise ValueError("asset is not georeferenced")
                with Reader(memfile.name, dataset=src) as cog:
                    west, south, east, north = cog.geographic_bounds
                    if (
                        bbox[0] >= east
                        or bbox[2] <= west
                        or bbox[1] >= north
                        or bbox[3] <= south
                    ):
                        raise ValueError("scene does not overlap the mosaic bbox")

                    if size is None:
                        img = cog.part(
                            bbox,
                            dst_crs=WGS84_CRS,
                            indexes=indexes,
                            max_size=self.max_dimension,
                        )
                    else:
                        img = cog.part(
                            bbox,
                            dst_crs=WGS84_CRS,
                            indexes=indexes,
                            height=size[0],
                            width=size[1],
                        )
        return img.data, img.mask


def _to_uint8(data: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Stretch reflectance bands to bytes; byte composites pass through."""
    if data.dtype == np.uint8:
        return data.copy()

    valid = data[:, mask > 0]
    if valid.size == 0:
        return np.zeros(data.shape, dtype=np.uint8)
    low, high = np.percentile(valid, (2, 98))
    if high <= low:
        high = low + 1
    scaled = (data.astype(np.float32) - low) / (high - low) * 255
    return np.clip(scaled, 0, 255).astype(np.uint8)
