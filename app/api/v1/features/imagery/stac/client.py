"""STAC client for AWS Earth Search."""

import json
from typing import Any, Dict, List, Optional, Sequence

import httpx
from httpx import AsyncClient

from app.api.v1.features.imagery.mosaic.errors import CatalogError
from app.api.v1.features.imagery.mosaic.schemas import Scene
from app.api.v1.features.imagery.stac.models import STACItem, STACItemCollection
from app.core.http import fetch_with_retry
from app.core.logging import logger

SENTINEL_2 = "sentinel-2-l2a"
LANDSAT = "landsat-c2-l2"


def collections_for_year(year: int) -> List[str]:
    """Pick the catalog collections that hold imagery for a calendar year.

    Landsat alone covers the years before Sentinel-2 L2A archives are
    complete; both are searched through 2021 and Sentinel-2 alone after.
    """
    if year <= 2017:
        return [LANDSAT]
    if year <= 2021:
        return [SENTINEL_2, LANDSAT]
    return [SENTINEL_2]


class STACClient:
    """Client for interacting with STAC APIs."""

    def __init__(
        self,
        api_url: str = "https://earth-search.aws.element84.com/v1",
        client: Optional[AsyncClient] = None,
        timeout: float = 30.0,
        retries: int = 2,
        backoff: float = 1.0,
    ):
        """Initialize STAC client.

        Args:
            api_url: Base URL for STAC API (defaults to AWS Earth Search)
            client: Shared HTTP client; one is created (and owned) if omitted
            timeout: Per-request timeout in seconds
            retries: Retries for network errors and 5xx responses
            backoff: Base delay for exponential backoff between retries
        """
        self.api_url = api_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or AsyncClient(timeout=timeout)
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def search(
        self,
        bbox: Sequence[float],
        datetime: str,
        collections: Optional[List[str]] = None,
        limit: int = 50,
        cloud_cover_max: Optional[float] = None,
    ) -> STACItemCollection:
        """Search for items intersecting a bounding box.

        Args:
            bbox: Bounding box [west, south, east, north]
            datetime: Date range (e.g., "2024-01-01T00:00:00Z/2024-12-31T23:59:59Z")
            collections: List of collection IDs to search
            limit: Maximum number of results
            cloud_cover_max: Maximum cloud cover percentage (inclusive)

        Raises:
            CatalogError: The catalog was unreachable or answered with an error
        """
        params: Dict[str, Any] = {
            "bbox": ",".join(str(c) for c in bbox),
            "datetime": datetime,
            "limit": str(limit),
        }
        if collections:
            params["collections"] = ",".join(collections)
        if cloud_cover_max is not None:
            params["filter"] = json.dumps(
                {"eo:cloud_cover": {"lte": cloud_cover_max}}, separators=(",", ":")
            )

        try:
            response = await fetch_with_retry(
                self.client,
                "GET",
                f"{self.api_url}/search",
                retries=self.retries,
                backoff=self.backoff,
                timeout=self.timeout,
                params=params,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Search failed: {e}")
            raise CatalogError(f"STAC search failed: {e}") from e

        items = []
        for feature in data.get("features", []):
            try:
                items.append(STACItem(**feature))
            except ValueError as e:
                logger.warning(f"Skipping malformed STAC item: {e}")

        return STACItemCollection(
            type=data.get("type", "FeatureCollection"),
            features=items,
            links=data.get("links", []),
            context=data.get("context"),
        )

    async def search_scenes(
        self,
        bbox: Sequence[float],
        datetime: str,
        collections: Optional[List[str]] = None,
        limit: int = 50,
        cloud_cover_max: Optional[float] = None,
    ) -> List[Scene]:
        """Search and reduce the results to scene descriptors."""
        results = await self.search(
            bbox=bbox,
            datetime=datetime,
            collections=collections,
            limit=limit,
            cloud_cover_max=cloud_cover_max,
        )
        scenes = [item.to_scene() for item in results.features]
        logger.info(f"Found {len(scenes)} scene(s) for {datetime}")
        return scenes
