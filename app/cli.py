"""Command line management of the local mosaic cache.

Examples:
    mosaic-cache download --year 2020 --bbox -74.2,40.5,-73.8,40.9
    mosaic-cache download --years 2017-2023 --bbox -74.2,40.5,-73.8,40.9
    mosaic-cache list
    mosaic-cache stats
    mosaic-cache cleanup --days 7
"""

import argparse
import asyncio
import sys
from collections import Counter
from typing import List, Optional, Sequence

import httpx

from app.api.v1.features.imagery.mosaic.deps import build_orchestrator
from app.api.v1.features.imagery.mosaic.errors import MosaicError
from app.api.v1.features.imagery.mosaic.keys import MosaicKey
from app.api.v1.features.imagery.mosaic.schemas import (
    MosaicRecord,
    ProgressEvent,
    check_bbox,
)
from app.api.v1.features.imagery.mosaic.storage import MosaicCache
from app.core.config import settings
from app.core.logging import logger, setup_logging

DEFAULT_BBOX = [-74.2, 40.5, -73.8, 40.9]
BAR_WIDTH = 20


def parse_bbox(value: str) -> List[float]:
    try:
        bbox = [float(part) for part in value.split(",")]
        if len(bbox) != 4:
            raise ValueError("expected west,south,east,north")
        return check_bbox(bbox)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid bbox {value!r}: {e}")


def parse_year_range(value: str) -> List[int]:
    try:
        start, end = (int(part) for part in value.split("-"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid year range {value!r}")
    if start > end:
        raise argparse.ArgumentTypeError(f"invalid year range {value!r}")
    return list(range(start, end + 1))


def format_size(size: int) -> str:
    return f"{size / 1024 / 1024:.2f} MB"


def progress_bar(label: str, event: ProgressEvent) -> str:
    filled = event.percent * BAR_WIDTH // 100
    bar = "█" * filled + "░" * (BAR_WIDTH - filled)
    return f"\r{label}: [{bar}] {event.percent}% - {event.message}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mosaic-cache",
        description="Download, tile and manage cached satellite mosaics",
    )
    parser.add_argument(
        "--storage-root",
        default=None,
        help=f"Cache directory (default: {settings.storage_root})",
    )
    parser.add_argument("--log-level", default=None, help="Log level override")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("list", help="List cached mosaics")
    commands.add_parser("stats", help="Show storage statistics")

    cleanup = commands.add_parser("cleanup", help="Delete old mosaics")
    cleanup.add_argument(
        "--days",
        type=int,
        default=settings.cleanup_max_age_days,
        help="Delete mosaics downloaded more than this many days ago",
    )

    delete = commands.add_parser("delete", help="Delete one mosaic by hash")
    delete.add_argument("hash")

    download = commands.add_parser("download", help="Build mosaics for years")
    years = download.add_mutually_exclusive_group(required=True)
    years.add_argument("--year", type=int)
    years.add_argument("--years", type=parse_year_range, help="Range, e.g. 2017-2023")
    download.add_argument(
        "--bbox",
        type=parse_bbox,
        default=DEFAULT_BBOX,
        help="west,south,east,north (default: New York City)",
    )
    download.add_argument("--max-zoom", type=int, default=None)

    return parser


async def list_mosaics(cache: MosaicCache) -> int:
    mosaics = await cache.list_all()
    print("Available mosaics:")
    if not mosaics:
        print("  No mosaics found.")
        return 0

    for mosaic in mosaics:
        bbox = ", ".join(str(c) for c in mosaic.bbox)
        print(
            f"  {mosaic.year} | {bbox} | {mosaic.tile_count} tiles | "
            f"{format_size(mosaic.total_size)} | {mosaic.download_date:%Y-%m-%d} | "
            f"{mosaic.hash}"
        )
    return 0


async def show_stats(cache: MosaicCache) -> int:
    stats = await cache.stats()
    print("Storage statistics:")
    print(f"  Total mosaics: {stats.total_mosaics}")
    print(f"  Total tiles: {stats.total_tiles:,}")
    print(
        f"  Total size: {format_size(stats.total_size)} "
        f"({stats.total_size / 1024**3:.2f} GB)"
    )

    if stats.mosaics:
        print("\nMosaics by year:")
        for year, count in sorted(Counter(m.year for m in stats.mosaics).items()):
            print(f"  {year}: {count} mosaic(s)")
    return 0


async def cleanup_mosaics(cache: MosaicCache, days: int) -> int:
    print(f"Cleaning up mosaics older than {days} days...")
    deleted = await cache.cleanup(days)
    print(f"Deleted {deleted} old mosaics")
    return 0


async def delete_mosaic(cache: MosaicCache, mosaic_hash: str) -> int:
    if await cache.delete(mosaic_hash):
        print(f"Deleted mosaic {mosaic_hash}")
        return 0
    print(f"Mosaic {mosaic_hash} not found", file=sys.stderr)
    return 1


async def download_mosaics(
    cache: MosaicCache,
    years: Sequence[int],
    bbox: List[float],
    max_zoom: Optional[int] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> int:
    """Build each year in turn. A failed year does not stop the others."""
    print(f"Downloading mosaics for years: {', '.join(str(y) for y in years)}")
    print(f"Bounding box: [{', '.join(str(c) for c in bbox)}]")

    owns_client = client is None
    client = client or httpx.AsyncClient()
    results: List[MosaicRecord] = []
    failed: List[int] = []
    try:
        orchestrator = build_orchestrator(client, cache)
        for year in years:
            run = orchestrator.start(MosaicKey(year=year, bbox=bbox), max_zoom=max_zoom)
            async for event in run.events():
                sys.stdout.write(progress_bar(str(year), event))
                sys.stdout.flush()
            print()
            try:
                results.append(await run.result())
            except MosaicError as e:
                logger.error(f"Mosaic for {year} failed: {e}")
                failed.append(year)
    finally:
        if owns_client:
            await client.aclose()

    print(f"Downloaded {len(results)} mosaics:")
    for record in results:
        print(
            f"  {record.year}: {record.tile_count} tiles, "
            f"{format_size(record.total_size)}"
        )
    if failed:
        print(f"Failed years: {', '.join(str(y) for y in failed)}", file=sys.stderr)
        return 1
    return 0


async def run_command(args: argparse.Namespace) -> int:
    cache = MosaicCache(args.storage_root or settings.storage_root)

    if args.command == "list":
        return await list_mosaics(cache)
    if args.command == "stats":
        return await show_stats(cache)
    if args.command == "cleanup":
        return await cleanup_mosaics(cache, args.days)
    if args.command == "delete":
        return await delete_mosaic(cache, args.hash)
    years = args.years or [args.year]
    return await download_mosaics(cache, years, args.bbox, args.max_zoom)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    return asyncio.run(run_command(args))


if __name__ == "__main__":
    sys.exit(main())
