"""Tile rendering from normalized scenes."""

from io import BytesIO
from typing import Optional, Protocol

import numpy as np
from PIL import Image

from app.api.v1.features.imagery.mosaic.schemas import ProcessedScene, TileFormat


class TileSynthesizer(Protocol):
    """Render one tile of the pyramid from a normalized scene.

    Implementations return encoded image bytes, or None when the scene has
    nothing to contribute to the cell. They run on worker threads and must not
    mutate the scene.
    """

    format: TileFormat

    def render(self, scene: ProcessedScene, z: int, x: int, y: int) -> Optional[bytes]:
        ...


class GridTileSynthesizer:
    """Cut the ``2^z`` grid cell out of a scene cropped to the mosaic bbox.

    Near-black pixels (scene borders, no-data) become transparent for formats
    with an alpha channel.
    """

    def __init__(
        self,
        tile_size: int = 256,
        format: TileFormat = TileFormat.PNG,
        nodata_threshold: int = 10,
    ):
        self.tile_size = tile_size
        self.format = TileFormat(format)
        self.nodata_threshold = nodata_threshold

    def render(self, scene: ProcessedScene, z: int, x: int, y: int) -> Optional[bytes]:
        cells = 2**z
        with Image.open(BytesIO(scene.data)) as img:
            img = img.convert("RGB")
            box = (
                x * img.width / cells,
                y * img.height / cells,
                (x + 1) * img.width / cells,
                (y + 1) * img.height / cells,
            )
            tile = img.resize(
                (self.tile_size, self.tile_size), Image.LANCZOS, box=box
            )

        data = np.asarray(tile, dtype=np.uint8)
        if self.format is not TileFormat.JPG:
            alpha = np.where(
                data.sum(axis=2) <= self.nodata_threshold, 0, 255
            ).astype(np.uint8)
            if not alpha.any():
                return None
            rgba = np.zeros((data.shape[0], data.shape[1], 4), dtype=np.uint8)
            rgba[:, :, :3] = data
            rgba[:, :, 3] = alpha
            tile = Image.fromarray(rgba, mode="RGBA")

        buf = BytesIO()
        tile.save(buf, format=self.format.pil_format)
        return buf.getvalue()
