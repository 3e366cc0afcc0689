"""Mosaic build pipeline: search, process, tile, complete."""

import asyncio
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Iterator, List, Optional, Sequence, Tuple

from app.api.v1.features.imagery.mosaic.errors import FetchError, NoDataError
from app.api.v1.features.imagery.mosaic.keys import MosaicKey
from app.api.v1.features.imagery.mosaic.processor import SceneProcessor
from app.api.v1.features.imagery.mosaic.progress import ProgressStream
from app.api.v1.features.imagery.mosaic.schemas import (
    MosaicRecord,
    PipelineStage,
    ProcessedScene,
    ProgressEvent,
    TileCoord,
)
from app.api.v1.features.imagery.mosaic.selector import SceneSelector
from app.api.v1.features.imagery.mosaic.storage import MosaicCache
from app.api.v1.features.imagery.mosaic.synthesizer import TileSynthesizer
from app.api.v1.features.imagery.stac.client import STACClient, collections_for_year
from app.core.logging import logger


class PipelineRun:
    """Handle on a pipeline running in the background."""

    def __init__(self, key: MosaicKey, progress: ProgressStream, task: asyncio.Task):
        self.key = key
        self.progress = progress
        self.task = task

    @property
    def hash(self) -> str:
        return self.key.hash

    @property
    def done(self) -> bool:
        return self.task.done()

    def events(self) -> AsyncIterator[ProgressEvent]:
        return self.progress.subscribe()

    async def result(self) -> MosaicRecord:
        return await self.task

    def cancel(self) -> None:
        """Abandon the run. Tiles already written are kept."""
        self.task.cancel()


class PipelineOrchestrator:
    """Build and cache the tile pyramid for one (year, bbox) key."""

    def __init__(
        self,
        cache: MosaicCache,
        catalog: STACClient,
        selector: SceneSelector,
        processor: SceneProcessor,
        synthesizer: TileSynthesizer,
        collections: Optional[List[str]] = None,
        cloud_cover_max: float = 20.0,
        catalog_limit: int = 50,
        max_zoom: int = 10,
        tile_workers: int = 8,
    ):
        self.cache = cache
        self.catalog = catalog
        self.selector = selector
        self.processor = processor
        self.synthesizer = synthesizer
        self.collections = collections
        self.cloud_cover_max = cloud_cover_max
        self.catalog_limit = catalog_limit
        self.max_zoom = max_zoom
        self.tile_workers = max(1, tile_workers)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def start(self, key: MosaicKey, max_zoom: Optional[int] = None) -> PipelineRun:
        """Launch a run as a task and return its handle."""
        progress = ProgressStream()
        task = asyncio.create_task(self.run(key, progress, max_zoom=max_zoom))
        # A task cancelled before its first step never reaches run()'s finally.
        task.add_done_callback(lambda _: progress.close())
        return PipelineRun(key, progress, task)

    async def run(
        self,
        key: MosaicKey,
        progress: Optional[ProgressStream] = None,
        max_zoom: Optional[int] = None,
    ) -> MosaicRecord:
        """Build the mosaic for ``key`` unless it is already cached.

        Runs for the same key inside this process are serialized; the second
        one finds the finished mosaic and returns it.

        Raises:
            NoDataError: The catalog returned no scenes
            CatalogError: The catalog could not be queried
        """
        progress = progress or ProgressStream()
        max_zoom = self.max_zoom if max_zoom is None else max_zoom

        try:
            async with self._key_lock(key.hash):
                return await self._run(key, progress, max_zoom)
        except asyncio.CancelledError:
            logger.warning(f"Pipeline for {key.hash} cancelled")
            raise
        except Exception as e:
            percent = progress.latest.percent if progress.latest else 0
            self._emit(progress, PipelineStage.FAILED, percent, str(e))
            logger.error(f"Pipeline for {key.hash} failed: {e}")
            raise
        finally:
            progress.close()

    async def _run(
        self, key: MosaicKey, progress: ProgressStream, max_zoom: int
    ) -> MosaicRecord:
        self._emit(progress, PipelineStage.SEARCHING, 0, "Searching for scenes...")

        existing = await self.cache.get_info(key)
        if existing is not None:
            logger.info(f"Mosaic {key.hash} already cached")
            self._emit(
                progress, PipelineStage.COMPLETE, 100, "Mosaic already exists locally"
            )
            return existing

        scenes = await self.catalog.search_scenes(
            bbox=key.bbox,
            datetime=key.datetime_range,
            collections=self.collections or collections_for_year(key.year),
            limit=self.catalog_limit,
            cloud_cover_max=self.cloud_cover_max,
        )
        if not scenes:
            raise NoDataError(f"No scenes found for {key.year}", progress.latest)

        selected = self.selector.select(scenes)
        self._emit(
            progress,
            PipelineStage.PROCESSING,
            20,
            f"Found {len(scenes)} scenes, processing {len(selected)}",
        )
        processed = await self._process(key, selected, progress)

        self._emit(progress, PipelineStage.TILING, 60, "Generating tiles...")
        tile_count, used = await self._tile(key, processed, max_zoom, progress)

        record = MosaicRecord(
            hash=key.hash,
            year=key.year,
            bbox=list(key.bbox),
            download_date=datetime.now(timezone.utc),
            tile_count=tile_count,
            total_size=await self.cache.mosaic_size(key),
            scene_ids=used,
        )
        await self.cache.save_info(record)

        self._emit(
            progress,
            PipelineStage.COMPLETE,
            100,
            f"Mosaic complete with {tile_count} tiles",
        )
        return record

    async def _process(
        self, key: MosaicKey, scenes: Sequence, progress: ProgressStream
    ) -> List[ProcessedScene]:
        processed = []
        for i, scene in enumerate(scenes):
            self._emit(
                progress,
                PipelineStage.PROCESSING,
                20 + i / len(scenes) * 40,
                f"Processing scene {i + 1}/{len(scenes)}",
            )
            try:
                processed.append(await self.processor.process(scene, key.bbox))
            except FetchError as e:
                logger.warning(f"Dropping scene: {e}")

        if not processed:
            logger.warning("No scene could be processed; mosaic will be empty")
        return processed

    async def _tile(
        self,
        key: MosaicKey,
        scenes: List[ProcessedScene],
        max_zoom: int,
        progress: ProgressStream,
    ) -> Tuple[int, List[str]]:
        if not scenes:
            return 0, []

        total = sum(4**z for z in range(max_zoom + 1))
        coords = _pyramid(max_zoom)
        done = 0
        written = 0
        used: Dict[str, None] = {}

        async def worker() -> None:
            nonlocal done, written
            # Workers share one iterator; next() never interleaves with an await.
            for z, x, y in coords:
                data, scene_id = await asyncio.to_thread(
                    self._render_cell, scenes, z, x, y
                )
                if data is not None:
                    try:
                        await self.cache.save_tile(
                            key, z, x, y, data, self.synthesizer.format
                        )
                        written += 1
                        used[scene_id] = None
                    except OSError as e:
                        logger.warning(f"Failed to write tile {z}/{x}/{y}: {e}")
                done += 1
                self._emit(
                    progress,
                    PipelineStage.TILING,
                    60 + done / total * 35,
                    f"Tile {x},{y} at zoom {z}",
                    tile=TileCoord(z=z, x=x, y=y),
                    total_tiles=total,
                )

        workers = [
            asyncio.create_task(worker()) for _ in range(min(self.tile_workers, total))
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for task in workers:
                task.cancel()

        # Preserve the processing order of contributing scenes.
        scene_ids = [s.id for s in scenes if s.id in used]
        return written, scene_ids

    def _render_cell(
        self, scenes: List[ProcessedScene], z: int, x: int, y: int
    ) -> Tuple[Optional[bytes], Optional[str]]:
        for scene in scenes:
            try:
                data = self.synthesizer.render(scene, z, x, y)
            except Exception as e:
                logger.warning(f"Scene {scene.id} failed to render {z}/{x}/{y}: {e}")
                continue
            if data:
                return data, scene.id
        return None, None

    def _key_lock(self, mosaic_hash: str) -> "_KeyLock":
        return _KeyLock(self, mosaic_hash)

    @staticmethod
    def _emit(
        progress: ProgressStream,
        stage: PipelineStage,
        percent: float,
        message: str,
        tile: Optional[TileCoord] = None,
        total_tiles: Optional[int] = None,
    ) -> None:
        progress.publish(
            ProgressEvent(
                stage=stage,
                percent=min(100, max(0, round(percent))),
                message=message,
                tile=tile,
                total_tiles=total_tiles,
            )
        )


class _KeyLock:
    """Per-hash lock that is dropped once nobody holds or waits for it."""

    def __init__(self, orchestrator: PipelineOrchestrator, mosaic_hash: str):
        self.orchestrator = orchestrator
        self.mosaic_hash = mosaic_hash

    async def __aenter__(self) -> None:
        locks = self.orchestrator._locks
        users = self.orchestrator._lock_users
        lock = locks.setdefault(self.mosaic_hash, asyncio.Lock())
        users[self.mosaic_hash] = users.get(self.mosaic_hash, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._release_user()
            raise

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.orchestrator._locks[self.mosaic_hash].release()
        self._release_user()

    def _release_user(self) -> None:
        users = self.orchestrator._lock_users
        users[self.mosaic_hash] -= 1
        if users[self.mosaic_hash] == 0:
            del users[self.mosaic_hash]
            del self.orchestrator._locks[self.mosaic_hash]


def _pyramid(max_zoom: int) -> Iterator[Tuple[int, int, int]]:
    for z in range(max_zoom + 1):
        cells = 2**z
        for x in range(cells):
            for y in range(cells):
                yield z, x, y
