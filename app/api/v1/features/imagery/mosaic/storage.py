"""Content-addressed on-disk store for mosaic tiles and metadata.

Layout::

    {root}/tiles/{hash}/metadata.json
    {root}/tiles/{hash}/{z}/{x}/{y}.{format}

A mosaic exists only once its ``metadata.json`` is readable. Directories that
hold tiles without metadata are leftovers of an interrupted run and are
ignored by every read operation.
"""

import asyncio
import json
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Union
from uuid import uuid4

import aiofiles
import aiofiles.os

from app.api.v1.features.imagery.mosaic.errors import CacheCorruptionError
from app.api.v1.features.imagery.mosaic.keys import MosaicKey, is_valid_hash
from app.api.v1.features.imagery.mosaic.schemas import (
    MosaicRecord,
    StorageStats,
    TileFormat,
)
from app.core.logging import logger

METADATA_FILE = "metadata.json"

MosaicRef = Union[MosaicKey, str]


class MosaicCache:
    """Durable tile pyramid cache addressed by mosaic hash."""

    def __init__(self, storage_root: Union[str, Path]):
        """Initialize the cache.

        Args:
            storage_root: Directory holding the ``tiles`` tree. Created lazily.
        """
        self.storage_root = Path(storage_root)
        self.tiles_dir = self.storage_root / "tiles"

    @staticmethod
    def resolve_hash(ref: MosaicRef) -> str:
        """Accept a key or an already-derived hash."""
        if isinstance(ref, MosaicKey):
            return ref.hash
        return ref

    def mosaic_dir(self, ref: MosaicRef) -> Optional[Path]:
        """Directory for a mosaic, or None if the hash is malformed."""
        mosaic_hash = self.resolve_hash(ref)
        if not is_valid_hash(mosaic_hash):
            return None
        return self.tiles_dir / mosaic_hash

    def tile_path(
        self, ref: MosaicRef, z: int, x: int, y: int, format: TileFormat
    ) -> Optional[Path]:
        mosaic_dir = self.mosaic_dir(ref)
        if mosaic_dir is None:
            return None
        return mosaic_dir / str(z) / str(x) / f"{y}.{TileFormat(format).value}"

    async def has_mosaic(self, ref: MosaicRef) -> bool:
        """True iff readable metadata exists for the mosaic."""
        return await self.get_info(ref) is not None

    async def get_info(self, ref: MosaicRef) -> Optional[MosaicRecord]:
        """Load a mosaic's metadata.

        Returns None when the mosaic is missing or its metadata is corrupted.
        """
        mosaic_dir = self.mosaic_dir(ref)
        if mosaic_dir is None:
            return None
        try:
            return await self._read_record(mosaic_dir / METADATA_FILE)
        except FileNotFoundError:
            return None
        except CacheCorruptionError as e:
            logger.warning(str(e))
            return None

    async def save_info(self, record: MosaicRecord) -> None:
        """Persist metadata, replacing any existing record.

        Must be called after every tile of the mosaic has been written: the
        metadata file is what marks the mosaic as complete.
        """
        mosaic_dir = self.mosaic_dir(record.hash)
        if mosaic_dir is None:
            raise ValueError(f"Invalid mosaic hash: {record.hash}")

        await aiofiles.os.makedirs(mosaic_dir, exist_ok=True)
        payload = json.dumps(record.to_metadata(), indent=2).encode("utf-8")
        await self._atomic_write(mosaic_dir / METADATA_FILE, payload)
        logger.info(
            f"Saved mosaic {record.hash} ({record.year}, {record.tile_count} tiles)"
        )

    async def save_tile(
        self,
        ref: MosaicRef,
        z: int,
        x: int,
        y: int,
        data: bytes,
        format: TileFormat = TileFormat.PNG,
    ) -> int:
        """Write one tile, overwriting any previous payload.

        Returns:
            Number of bytes written

        Raises:
            OSError: The write failed; retry policy belongs to the caller.
        """
        path = self.tile_path(ref, z, x, y, format)
        if path is None:
            raise ValueError(f"Invalid mosaic hash: {self.resolve_hash(ref)}")

        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        await self._atomic_write(path, data)
        return len(data)

    async def get_tile(
        self,
        ref: MosaicRef,
        z: int,
        x: int,
        y: int,
        format: TileFormat = TileFormat.PNG,
    ) -> Optional[bytes]:
        """Read one tile. None means the tile is not cached."""
        path = self.tile_path(ref, z, x, y, format)
        if path is None:
            return None
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except (FileNotFoundError, NotADirectoryError):
            return None

    async def list_all(self) -> List[MosaicRecord]:
        """Return every complete mosaic, skipping unreadable entries."""
        records = []
        for mosaic_dir in await asyncio.to_thread(self._mosaic_dirs):
            try:
                records.append(await self._read_record(mosaic_dir / METADATA_FILE))
            except FileNotFoundError:
                continue
            except CacheCorruptionError as e:
                logger.warning(f"Skipping mosaic {mosaic_dir.name}: {e}")
        return records

    async def delete(self, ref: MosaicRef) -> bool:
        """Remove a mosaic's metadata and tiles.

        Best-effort and not transactional. Metadata goes first so a partially
        deleted mosaic is never reported as present.

        Returns:
            True if a mosaic directory existed
        """
        mosaic_dir = self.mosaic_dir(ref)
        if mosaic_dir is None or not await aiofiles.os.path.isdir(mosaic_dir):
            return False

        try:
            await aiofiles.os.remove(mosaic_dir / METADATA_FILE)
        except FileNotFoundError:
            pass
        await asyncio.to_thread(shutil.rmtree, mosaic_dir, True)
        logger.info(f"Deleted mosaic {mosaic_dir.name}")
        return True

    async def cleanup(
        self, max_age_days: int, now: Optional[datetime] = None
    ) -> int:
        """Delete mosaics downloaded more than ``max_age_days`` ago.

        Returns:
            Number of mosaics deleted
        """
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        cutoff = now - timedelta(days=max_age_days)

        deleted = 0
        for record in await self.list_all():
            if record.download_date < cutoff:
                if await self.delete(record.hash):
                    deleted += 1

        logger.info(
            f"Cleanup removed {deleted} mosaic(s) older than {max_age_days} days"
        )
        return deleted

    async def stats(self) -> StorageStats:
        """Aggregate size and tile counts over every cached mosaic."""
        mosaics = await self.list_all()
        return StorageStats(
            total_mosaics=len(mosaics),
            total_size=sum(m.total_size for m in mosaics),
            total_tiles=sum(m.tile_count for m in mosaics),
            mosaics=mosaics,
        )

    async def mosaic_size(self, ref: MosaicRef) -> int:
        """Total bytes on disk under a mosaic directory."""
        mosaic_dir = self.mosaic_dir(ref)
        if mosaic_dir is None:
            return 0
        return await asyncio.to_thread(_directory_size, mosaic_dir)

    async def is_writable(self) -> bool:
        """Probe the storage root with a throwaway file."""
        probe = self.storage_root / f".probe.{uuid4().hex}"
        try:
            await aiofiles.os.makedirs(self.storage_root, exist_ok=True)
            async with aiofiles.open(probe, "wb") as f:
                await f.write(b"ok")
            await aiofiles.os.remove(probe)
        except OSError as e:
            logger.warning(f"Storage root {self.storage_root} is not writable: {e}")
            return False
        return True

    def _mosaic_dirs(self) -> List[Path]:
        if not self.tiles_dir.is_dir():
            return []
        return sorted(
            p for p in self.tiles_dir.iterdir() if p.is_dir() and is_valid_hash(p.name)
        )

    async def _read_record(self, path: Path) -> MosaicRecord:
        try:
            async with aiofiles.open(path, "rb") as f:
                raw = await f.read()
        except FileNotFoundError:
            raise
        except OSError as e:
            raise CacheCorruptionError(f"Unreadable metadata at {path}: {e}") from e
        try:
            record = MosaicRecord.model_validate(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, ValueError, TypeError) as e:
            raise CacheCorruptionError(f"Corrupted metadata at {path}: {e}") from e
        if record.hash != path.parent.name:
            raise CacheCorruptionError(
                f"Metadata at {path} belongs to mosaic {record.hash}"
            )
        return record

    @staticmethod
    async def _atomic_write(path: Path, data: bytes) -> None:
        tmp = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
        try:
            async with aiofiles.open(tmp, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(tmp, path)
        except OSError:
            try:
                await aiofiles.os.remove(tmp)
            except FileNotFoundError:
                pass
            raise


def _directory_size(path: Path) -> int:
    if not path.is_dir():
        return 0
    return sum(f.stat().st_size for f in path.rglob("*") if f.is_file())
