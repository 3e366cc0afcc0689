import argparse
import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.api.v1.features.imagery.mosaic.storage import MosaicCache
from app.cli import (
    DEFAULT_BBOX,
    build_parser,
    download_mosaics,
    main,
    parse_bbox,
    parse_year_range,
)


def _seed(cache, *records) -> None:
    async def _write() -> None:
        for record in records:
            await cache.save_info(record)

    asyncio.run(_write())


class TestArgumentParsing:
    """Test cases for CLI argument handling."""

    def test_year_range(self):
        assert parse_year_range("2017-2020") == [2017, 2018, 2019, 2020]
        assert parse_year_range("2020-2020") == [2020]

    @pytest.mark.parametrize("value", ["2020", "2021-2019", "a-b"])
    def test_bad_year_range(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_year_range(value)

    def test_bbox(self):
        assert parse_bbox("-74.2,40.5,-73.8,40.9") == DEFAULT_BBOX

    @pytest.mark.parametrize("value", ["1,2,3", "a,b,c,d", "10,0,5,1"])
    def test_bad_bbox(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_bbox(value)

    def test_download_defaults_to_nyc(self):
        args = build_parser().parse_args(["download", "--year", "2020"])

        assert args.bbox == DEFAULT_BBOX
        assert args.max_zoom is None

    def test_download_requires_year(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["download"])

    def test_year_options_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(
                ["download", "--year", "2020", "--years", "2019-2020"]
            )


class TestCommands:
    """Test cases for CLI subcommands against a temporary cache."""

    def test_list_empty(self, storage_root, capsys):
        assert main(["--storage-root", str(storage_root), "list"]) == 0
        assert "No mosaics found." in capsys.readouterr().out

    def test_list_and_stats(self, storage_root, make_record, capsys):
        cache = MosaicCache(storage_root)
        record = make_record(year=2020, tile_count=21, total_size=2 * 1024 * 1024)
        _seed(cache, record)

        assert main(["--storage-root", str(storage_root), "list"]) == 0
        out = capsys.readouterr().out
        assert "2020" in out
        assert "21 tiles" in out
        assert "2.00 MB" in out
        assert record.hash in out

        assert main(["--storage-root", str(storage_root), "stats"]) == 0
        out = capsys.readouterr().out
        assert "Total mosaics: 1" in out
        assert "Total tiles: 21" in out
        assert "2020: 1 mosaic(s)" in out

    def test_cleanup(self, storage_root, make_record, capsys):
        cache = MosaicCache(storage_root)
        old = datetime.now(timezone.utc) - timedelta(days=10)
        _seed(cache, make_record(year=2018, download_date=old), make_record(year=2019))

        code = main(["--storage-root", str(storage_root), "cleanup", "--days", "7"])

        assert code == 0
        assert "Deleted 1 old mosaics" in capsys.readouterr().out

    def test_delete(self, storage_root, make_record):
        cache = MosaicCache(storage_root)
        record = make_record()
        _seed(cache, record)

        assert main(["--storage-root", str(storage_root), "delete", record.hash]) == 0
        assert main(["--storage-root", str(storage_root), "delete", record.hash]) == 1


@pytest.mark.asyncio
class TestDownloadCommand:
    async def test_download_years(self, cache, stac_feature, make_geotiff, capsys):
        features = [stac_feature("S2_1", href="https://assets.test/1.tif")]

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/search"):
                if "2019" in request.url.params["datetime"]:
                    return httpx.Response(200, json={"features": []})
                return httpx.Response(200, json={"features": features})
            return httpx.Response(200, content=make_geotiff())

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            code = await download_mosaics(
                cache, [2019, 2020], DEFAULT_BBOX, max_zoom=1, client=http
            )

        out = capsys.readouterr()
        assert code == 1
        assert "2020: 5 tiles" in out.out
        assert "Failed years: 2019" in out.err
        assert [r.year for r in await cache.list_all()] == [2020]
