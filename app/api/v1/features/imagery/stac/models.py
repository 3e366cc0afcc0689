"""STAC data models for imagery feature."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.api.v1.features.imagery.mosaic.schemas import Scene

# Georeferenced RGB composite assets, tried in order.
VISUAL_ASSET_KEYS = ("visual",)

# Per-band assets used when a collection ships no composite (Landsat).
RGB_BAND_KEYS = (("red", "green", "blue"), ("B04", "B03", "B02"))


class STACLink(BaseModel):
    """STAC Link object."""

    href: str
    rel: str
    type: Optional[str] = None
    title: Optional[str] = None


class STACAsset(BaseModel):
    """STAC Asset object."""

    href: str
    title: Optional[str] = None
    type: Optional[str] = None
    roles: List[str] = Field(default_factory=list)


class STACItem(BaseModel):
    """STAC Item (Scene) object."""

    id: str
    collection: Optional[str] = None
    geometry: Optional[Dict[str, Any]] = None
    bbox: List[float] = Field(default_factory=list)
    properties: Dict[str, Any] = Field(default_factory=dict)
    assets: Dict[str, STACAsset] = Field(default_factory=dict)
    links: List[STACLink] = Field(default_factory=list)

    @property
    def datetime(self) -> Optional[datetime]:
        """Get datetime from properties."""
        dt_str = self.properties.get("datetime")
        if dt_str:
            return datetime.fromisoformat(dt_str.replace("Z", "+00:00"))
        return None

    @property
    def cloud_cover(self) -> Optional[float]:
        """Get cloud cover percentage."""
        return self.properties.get("eo:cloud_cover")

    @property
    def sun_elevation(self) -> Optional[float]:
        """Get sun elevation in degrees."""
        value = self.properties.get("view:sun_elevation")
        if value is None:
            value = self.properties.get("eo:sun_elevation")
        return value

    @property
    def visual_url(self) -> Optional[str]:
        """Get the RGB composite asset URL if available."""
        for key in VISUAL_ASSET_KEYS:
            if key in self.assets:
                return self.assets[key].href
        return None

    @property
    def rgb_band_urls(self) -> List[str]:
        """Get red, green and blue band URLs, or an empty list."""
        for keys in RGB_BAND_KEYS:
            if all(key in self.assets for key in keys):
                return [self.assets[key].href for key in keys]
        return []

    def to_scene(self) -> Scene:
        return Scene(
            id=self.id,
            cloud_cover=self.cloud_cover,
            sun_elevation=self.sun_elevation,
            asset_ref=self.visual_url,
            band_refs=[] if self.visual_url else self.rgb_band_urls,
            acquired_at=self.datetime,
        )


class STACItemCollection(BaseModel):
    """STAC Item Collection (search results)."""

    type: str = "FeatureCollection"
    features: List[STACItem] = Field(default_factory=list)
    links: List[STACLink] = Field(default_factory=list)
    context: Optional[Dict[str, Any]] = None

    @property
    def next_link(self) -> Optional[str]:
        """Get next page link if available."""
        for link in self.links:
            if link.rel == "next":
                return link.href
        return None
