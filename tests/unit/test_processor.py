from io import BytesIO

import httpx
import numpy as np
import pytest
from PIL import Image

from app.api.v1.features.imagery.mosaic.errors import FetchError
from app.api.v1.features.imagery.mosaic.processor import SceneProcessor
from app.api.v1.features.imagery.mosaic.schemas import Scene

ASSET = "https://assets.test/visual.tif"
WEST = [-74.2, 40.5, -74.0, 40.9]
EAST = [-74.0, 40.5, -73.8, 40.9]


def processor_for(handler, **kwargs) -> SceneProcessor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SceneProcessor(client, retries=0, **kwargs)


def serve(content: bytes):
    return lambda request: httpx.Response(200, content=content)


def center_pixel(data: bytes):
    with Image.open(BytesIO(data)) as img:
        assert img.format == "JPEG"
        return img.convert("RGB").getpixel((img.width // 2, img.height // 2))


@pytest.fixture
def split_scene(make_geotiff, nyc_bbox):
    """Left half red, right half blue, over the NYC bbox."""
    pixels = np.zeros((3, 64, 64), dtype=np.uint8)
    pixels[0, :, :32] = 200
    pixels[2, :, 32:] = 200
    return make_geotiff(pixels=pixels)


@pytest.mark.asyncio
class TestSceneProcessor:
    """Test cases for scene download and normalization."""

    async def test_crops_to_bbox(self, split_scene):
        processor = processor_for(serve(split_scene), max_dimension=128)
        scene = Scene(id="S2A_1", cloud_cover=3.0, asset_ref=ASSET)

        west = await processor.process(scene, WEST)
        east = await processor.process(scene, EAST)
        await processor.client.aclose()

        assert west.id == "S2A_1"
        assert west.cloud_cover == 3.0
        assert west.data != east.data

        red, _, blue = center_pixel(west.data)
        assert red > 150 and blue < 80
        red, _, blue = center_pixel(east.data)
        assert blue > 150 and red < 80

    async def test_bounded_by_max_dimension(self, make_geotiff, nyc_bbox):
        processor = processor_for(serve(make_geotiff(size=300)), max_dimension=100)

        result = await processor.process(Scene(id="s", asset_ref=ASSET), nyc_bbox)
        await processor.client.aclose()

        assert max(result.width, result.height) <= 100
        with Image.open(BytesIO(result.data)) as img:
            assert img.size == (result.width, result.height)

    async def test_stacks_band_assets(self, make_geotiff, nyc_bbox):
        bands = {
            "/red.tif": make_geotiff(color=(12000,), dtype="uint16"),
            "/green.tif": make_geotiff(color=(9000,), dtype="uint16"),
            "/blue.tif": make_geotiff(color=(8000,), dtype="uint16"),
        }
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.path)
            return httpx.Response(200, content=bands[request.url.path])

        processor = processor_for(handler, max_dimension=64)
        scene = Scene(
            id="LC08_1",
            band_refs=[f"https://assets.test{path}" for path in bands],
        )

        result = await processor.process(scene, nyc_bbox)
        await processor.client.aclose()

        assert requested == list(bands)
        red, green, blue = center_pixel(result.data)
        assert red > green > blue

    async def test_follows_redirects(self, make_geotiff, nyc_bbox):
        raw = make_geotiff()

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/visual.tif":
                return httpx.Response(
                    302, headers={"Location": "https://assets.test/real.tif"}
                )
            return httpx.Response(200, content=raw)

        processor = processor_for(handler, max_dimension=64)
        result = await processor.process(Scene(id="s", asset_ref=ASSET), nyc_bbox)
        await processor.client.aclose()

        assert result.width > 0

    async def test_missing_asset(self, nyc_bbox):
        processor = processor_for(lambda request: httpx.Response(200))

        with pytest.raises(FetchError) as exc_info:
            await processor.process(Scene(id="no-asset"), nyc_bbox)
        await processor.client.aclose()

        assert exc_info.value.scene_id == "no-asset"

    async def test_http_error(self, nyc_bbox):
        processor = processor_for(lambda request: httpx.Response(404))

        with pytest.raises(FetchError):
            await processor.process(Scene(id="gone", asset_ref=ASSET), nyc_bbox)
        await processor.client.aclose()

    async def test_malformed_url(self, nyc_bbox):
        processor = processor_for(lambda request: httpx.Response(200))

        with pytest.raises(FetchError) as exc_info:
            await processor.process(
                Scene(id="bad-href", asset_ref="http://[::1"), nyc_bbox
            )
        await processor.client.aclose()

        assert exc_info.value.scene_id == "bad-href"

    async def test_undecodable_asset(self, nyc_bbox):
        processor = processor_for(serve(b"definitely not an image"))

        with pytest.raises(FetchError) as exc_info:
            await processor.process(Scene(id="junk", asset_ref=ASSET), nyc_bbox)
        await processor.client.aclose()

        assert "cannot read asset" in exc_info.value.reason

    async def test_plain_image_is_rejected(self, make_image, nyc_bbox):
        processor = processor_for(serve(make_image(format="PNG")))

        with pytest.raises(FetchError) as exc_info:
            await processor.process(Scene(id="flat", asset_ref=ASSET), nyc_bbox)
        await processor.client.aclose()

        assert "georeferenced" in exc_info.value.reason

    async def test_scene_outside_bbox(self, make_geotiff):
        raw = make_geotiff(bounds=[2.2, 48.8, 2.5, 49.0])
        processor = processor_for(serve(raw))

        with pytest.raises(FetchError) as exc_info:
            await processor.process(
                Scene(id="paris", asset_ref=ASSET), [-74.2, 40.5, -73.8, 40.9]
            )
        await processor.client.aclose()

        assert "overlap" in exc_info.value.reason
