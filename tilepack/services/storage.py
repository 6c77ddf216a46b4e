"""On-disk stores for tiles, chunks and job metadata.

Everything is namespaced by job id, so concurrent jobs never touch the same
files. Job records are updated with a per-job lock held across the whole
read-modify-write, and written atomically via a temporary file.
"""

import logging
import os
import re
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Callable, Iterator, Optional, Protocol

from pydantic import ValidationError

from ..errors import JobNotFound, MissingChunk
from ..models.job import Job, utcnow
from ..models.region import TileCoordinate

logger = logging.getLogger(__name__)

CHUNK_FILENAME_RE = re.compile(r"^chunk_(\d+)\.bin$")


def chunk_filename(index: int) -> str:
    """Chunk file name for a zero-based index, e.g. ``chunk_007.bin``."""
    return f"chunk_{index:03d}.bin"


def parse_chunk_index(filename: str) -> Optional[int]:
    """Numeric index of a chunk file name, or None if it is not a chunk file."""
    match = CHUNK_FILENAME_RE.match(filename)
    return int(match.group(1)) if match else None


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _dir_size(directory: Path) -> int:
    return sum(p.stat().st_size for p in directory.rglob("*") if p.is_file())


class TileStore:
    """Raw tile bytes stored as ``<root>/<key>/<z>/<x>-<y>.png``."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def tile_dir(self, key: str) -> Path:
        return self.root / key

    def path(self, key: str, tile: TileCoordinate) -> Path:
        return self.root / key / str(tile.zoom) / f"{tile.x}-{tile.y}.png"

    def exists(self, key: str, tile: TileCoordinate) -> bool:
        return self.path(key, tile).is_file()

    def write(self, key: str, tile: TileCoordinate, data: bytes) -> Path:
        path = self.path(key, tile)
        _atomic_write(path, data)
        return path

    def read(self, key: str, tile: TileCoordinate) -> bytes:
        return self.path(key, tile).read_bytes()

    def iter_files(self, key: str) -> Iterator[tuple[TileCoordinate, Path]]:
        """Yield stored tiles for a key in zoom, x, y order."""
        tile_dir = self.tile_dir(key)
        if not tile_dir.exists():
            return

        found = []
        for path in tile_dir.glob("*/*.png"):
            try:
                zoom = int(path.parent.name)
                x_str, y_str = path.stem.split("-", 1)
                tile = TileCoordinate(x=int(x_str), y=int(y_str), zoom=zoom)
            except ValueError:
                logger.debug("Ignoring unexpected file in tile store: %s", path)
                continue
            found.append((tile, path))

        found.sort(key=lambda item: (item[0].zoom, item[0].x, item[0].y))
        yield from found

    def total_size(self, key: str) -> int:
        tile_dir = self.tile_dir(key)
        return _dir_size(tile_dir) if tile_dir.exists() else 0

    def remove(self, key: str) -> None:
        shutil.rmtree(self.tile_dir(key), ignore_errors=True)


class ChunkStore:
    """Chunk bytes stored as ``<root>/<job_id>/chunk_NNN.bin``."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def chunk_dir(self, job_id: str) -> Path:
        return self.root / job_id

    def path(self, job_id: str, filename: str) -> Path:
        return self.root / job_id / filename

    def write(self, job_id: str, filename: str, data: bytes) -> Path:
        path = self.path(job_id, filename)
        _atomic_write(path, data)
        return path

    def read(self, job_id: str, filename: str) -> bytes:
        """Read one chunk.

        Raises:
            MissingChunk: If the chunk file does not exist or cannot be read
        """
        path = self.path(job_id, filename)
        try:
            return path.read_bytes()
        except OSError as e:
            raise MissingChunk(f"Chunk {filename} of '{job_id}' is unavailable: {e}") from e

    def exists(self, job_id: str, filename: str) -> bool:
        return self.path(job_id, filename).is_file()

    def list_filenames(self, job_id: str) -> list[str]:
        """Chunk file names for a job, sorted by numeric index.

        Raises:
            MissingChunk: If the chunk directory does not exist or cannot be read
        """
        chunk_dir = self.chunk_dir(job_id)
        try:
            names = [p.name for p in chunk_dir.iterdir() if p.is_file()]
        except OSError as e:
            raise MissingChunk(f"Chunk directory for '{job_id}' is unavailable: {e}") from e

        indexed = [(parse_chunk_index(name), name) for name in names]
        return [name for index, name in sorted(i for i in indexed if i[0] is not None)]

    def job_ids(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())

    def total_size(self, job_id: str) -> int:
        chunk_dir = self.chunk_dir(job_id)
        return _dir_size(chunk_dir) if chunk_dir.exists() else 0

    def remove(self, job_id: str) -> None:
        shutil.rmtree(self.chunk_dir(job_id), ignore_errors=True)


class JobRepository(Protocol):
    """Storage for job records, keyed by job id."""

    def get(self, job_id: str) -> Optional[Job]: ...

    def put(self, job: Job) -> None: ...

    def update(self, job_id: str, mutate: Callable[[Job], Job]) -> Job: ...

    def list(self) -> list[Job]: ...

    def delete(self, job_id: str) -> bool: ...


class _JobLocks:
    """One lock per job id, created on demand."""

    def __init__(self):
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def __call__(self, job_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = self._locks[job_id] = threading.RLock()
            return lock

    def discard(self, job_id: str) -> None:
        with self._guard:
            self._locks.pop(job_id, None)


class InMemoryJobRepository:
    """Job records held in a dict. Used by tests and short-lived tools."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._lock = _JobLocks()

    def get(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    def put(self, job: Job) -> None:
        with self._lock(job.id):
            self._jobs[job.id] = job.model_copy(deep=True)

    def update(self, job_id: str, mutate: Callable[[Job], Job]) -> Job:
        with self._lock(job_id):
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFound(job_id)
            updated = mutate(current.model_copy(deep=True))
            updated.updated_at = utcnow()
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    def list(self) -> list[Job]:
        return [job.model_copy(deep=True) for job in self._jobs.values()]

    def delete(self, job_id: str) -> bool:
        with self._lock(job_id):
            removed = self._jobs.pop(job_id, None) is not None
        self._lock.discard(job_id)
        return removed


class FileJobRepository:
    """Job records stored as ``<root>/<job_id>.json``."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self._lock = _JobLocks()

    def _path(self, job_id: str) -> Path:
        return self.root / f"{job_id}.json"

    def _read(self, path: Path) -> Optional[Job]:
        try:
            return Job.model_validate_json(path.read_text())
        except FileNotFoundError:
            return None

    def _write(self, job: Job) -> None:
        _atomic_write(self._path(job.id), job.model_dump_json(indent=2).encode())

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock(job_id):
            return self._read(self._path(job_id))

    def put(self, job: Job) -> None:
        with self._lock(job.id):
            self._write(job)

    def update(self, job_id: str, mutate: Callable[[Job], Job]) -> Job:
        with self._lock(job_id):
            current = self._read(self._path(job_id))
            if current is None:
                raise JobNotFound(job_id)
            updated = mutate(current)
            updated.updated_at = utcnow()
            self._write(updated)
            return updated

    def list(self) -> list[Job]:
        if not self.root.exists():
            return []

        jobs = []
        for path in sorted(self.root.glob("*.json")):
            try:
                job = self._read(path)
            except (ValidationError, OSError) as e:
                logger.warning("Error reading metadata file %s: %s", path.name, e)
                continue
            if job is not None:
                jobs.append(job)
        return jobs

    def delete(self, job_id: str) -> bool:
        with self._lock(job_id):
            path = self._path(job_id)
            existed = path.exists()
            path.unlink(missing_ok=True)
        self._lock.discard(job_id)
        return existed
