from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from rasterio.io import MemoryFile
from rasterio.transform import from_bounds

from app.api.v1.features.imagery.mosaic.deps import get_mosaic_cache, get_tile_server
from app.api.v1.features.imagery.mosaic.keys import MosaicKey
from app.api.v1.features.imagery.mosaic.schemas import MosaicRecord
from app.api.v1.features.imagery.mosaic.storage import MosaicCache
from app.api.v1.features.imagery.tiles.service import TileServer
from app.main import app

NYC_BBOX = [-74.2, 40.5, -73.8, 40.9]


class FakeRedis:
    """In-memory stand-in for the few Redis/ArqRedis calls the app makes."""

    def __init__(self) -> None:
        self.store: Dict[str, Any] = {}
        self.enqueued: List[Tuple[str, Dict[str, Any]]] = []

    async def get(self, key: str) -> Optional[Any]:
        return self.store.get(key)

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> None:
        self.store[key] = value

    async def enqueue_job(self, function: str, *args: Any, **kwargs: Any) -> None:
        self.enqueued.append((function, kwargs))

    async def aclose(self) -> None:
        pass


@pytest.fixture
def nyc_bbox() -> List[float]:
    return list(NYC_BBOX)


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    return tmp_path / "mosaics"


@pytest.fixture
def cache(storage_root: Path) -> MosaicCache:
    return MosaicCache(storage_root)


@pytest.fixture
def client(cache: MosaicCache) -> Generator[TestClient, None, None]:
    """Create a test client whose routes read from a temporary cache."""
    app.dependency_overrides[get_mosaic_cache] = lambda: cache
    app.dependency_overrides[get_tile_server] = lambda: TileServer(cache)

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def make_image() -> Callable[..., bytes]:
    """Encode a solid-colour image."""

    def _make_image(
        color: Tuple[int, int, int] = (40, 120, 200),
        size: Tuple[int, int] = (64, 64),
        format: str = "JPEG",
    ) -> bytes:
        buf = BytesIO()
        Image.new("RGB", size, color).save(buf, format=format)
        return buf.getvalue()

    return _make_image


@pytest.fixture
def make_geotiff() -> Callable[..., bytes]:
    """Encode a georeferenced EPSG:4326 GeoTIFF, by default covering NYC."""

    def _make_geotiff(
        color: Tuple[int, ...] = (40, 120, 200),
        size: int = 64,
        bounds: Optional[List[float]] = None,
        pixels: Optional[np.ndarray] = None,
        dtype: str = "uint8",
    ) -> bytes:
        if pixels is None:
            pixels = np.empty((len(color), size, size), dtype=dtype)
            for band, value in enumerate(color):
                pixels[band] = value
        count, height, width = pixels.shape

        with MemoryFile() as memfile:
            with memfile.open(
                driver="GTiff",
                width=width,
                height=height,
                count=count,
                dtype=pixels.dtype.name,
                crs="EPSG:4326",
                transform=from_bounds(*(bounds or NYC_BBOX), width, height),
            ) as dst:
                dst.write(pixels)
            return memfile.read()

    return _make_geotiff


@pytest.fixture
def make_record() -> Callable[..., MosaicRecord]:
    """Build a metadata record for a (year, bbox) pair."""

    def _make_record(
        year: int = 2020,
        bbox: Optional[List[float]] = None,
        download_date: Optional[datetime] = None,
        tile_count: int = 0,
        total_size: int = 0,
        scene_ids: Optional[List[str]] = None,
    ) -> MosaicRecord:
        key = MosaicKey(year=year, bbox=bbox or NYC_BBOX)
        return MosaicRecord(
            hash=key.hash,
            year=year,
            bbox=list(key.bbox),
            download_date=download_date or datetime.now(timezone.utc),
            tile_count=tile_count,
            total_size=total_size,
            scene_ids=scene_ids or [],
        )

    return _make_record


@pytest.fixture
def stac_feature() -> Callable[..., Dict[str, Any]]:
    """Build a GeoJSON feature as returned by a STAC search."""

    def _stac_feature(
        scene_id: str,
        cloud_cover: Optional[float] = 10.0,
        sun_elevation: Optional[float] = 45.0,
        href: Optional[str] = None,
        band_hrefs: Optional[Dict[str, str]] = None,
        collection: str = "sentinel-2-l2a",
    ) -> Dict[str, Any]:
        properties: Dict[str, Any] = {"datetime": "2020-06-15T15:42:10Z"}
        if cloud_cover is not None:
            properties["eo:cloud_cover"] = cloud_cover
        if sun_elevation is not None:
            properties["view:sun_elevation"] = sun_elevation

        assets = {}
        if href is not None:
            assets["visual"] = {"href": href, "type": "image/tiff"}
        for name, band_href in (band_hrefs or {}).items():
            assets[name] = {"href": band_href, "type": "image/tiff"}

        return {
            "type": "Feature",
            "stac_version": "1.0.0",
            "id": scene_id,
            "collection": collection,
            "bbox": list(NYC_BBOX),
            "properties": properties,
            "assets": assets,
            "links": [],
        }

    return _stac_feature
