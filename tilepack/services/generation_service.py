"""Offline map generation orchestration.

This service coordinates the full pipeline for one region:
1. Resolve a download id and create the job record
2. Compute the tile set for the bounding box and zoom range
3. Download the tiles in parallel batches
4. Pack the tiles into a ZIP archive
5. Split the archive into checksummed chunks and record the manifest
"""

import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx

from ..config import AppConfig, get_config
from ..errors import ConfigurationError, InvalidTransition, JobNotFound, MissingChunk
from ..models.job import Job, JobStatus
from ..models.region import GenerationRequest
from ..utils.tile_math import estimate_size_bytes, iter_tiles, tile_counts_by_zoom
from .archive_service import ArchiveAssembler
from .chunk_service import ChunkCodec, IntegrityReport
from .fetch_service import CancellationToken, FetchProgress, TileFetcher
from .identity_service import IdentityResolver
from .job_service import JobStateMachine
from .storage import ChunkStore, FileJobRepository, JobRepository, TileStore

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class Estimate:
    """Tile count and size estimate for a request."""

    total_tiles: int
    tiles_by_zoom: dict[int, int]
    estimated_bytes: int


@dataclass
class ReconstructResult:
    """Result of rebuilding an archive from its chunks."""

    output_path: Path
    size_bytes: int
    chunks_used: int


@dataclass
class ChunkSetSummary:
    """A chunk directory on disk."""

    job_id: str
    chunk_count: int
    total_size: int
    modified_at: datetime
    status: Optional[JobStatus] = None


@dataclass
class CleanupResult:
    removed: list[str] = field(default_factory=list)
    remaining: int = 0


class GenerationPipeline:
    """Runs one job from tile download to chunk manifest.

    Fetch progress is passed through a queue to a single consumer thread, so
    the job record has exactly one writer while tiles are downloading.
    """

    def __init__(
        self,
        jobs: JobStateMachine,
        fetcher: TileFetcher,
        assembler: ArchiveAssembler,
        codec: ChunkCodec,
        tile_store: TileStore,
        keep_tiles: bool = False,
    ):
        self.jobs = jobs
        self.fetcher = fetcher
        self.assembler = assembler
        self.codec = codec
        self.tile_store = tile_store
        self.keep_tiles = keep_tiles

    def _consume_progress(self, job_id: str, events: "queue.Queue") -> None:
        while True:
            event = events.get()
            if event is _STOP:
                return
            try:
                self.jobs.record_progress(job_id, event)
            except JobNotFound:
                logger.warning("Job %s disappeared while downloading", job_id)

    def _download(self, job: Job, token: CancellationToken):
        tiles = list(iter_tiles(job.bounds, job.min_zoom, job.max_zoom))

        if job.status == JobStatus.INITIALIZING:
            job = self.jobs.transition(job.id, JobStatus.DOWNLOADING, total_tiles=len(tiles))
        logger.info("Downloading %d tiles for %s (zoom %d-%d)", len(tiles), job.id, job.min_zoom, job.max_zoom)

        events: queue.Queue[FetchProgress] = queue.Queue()
        consumer = threading.Thread(
            target=self._consume_progress,
            args=(job.id, events),
            name=f"progress-{job.id[:8]}",
            daemon=True,
        )
        consumer.start()
        try:
            return self.fetcher.fetch(tiles, job.provider, job.id, token=token, on_progress=events.put)
        finally:
            events.put(_STOP)
            consumer.join()

    def run(self, job_id: str, token: Optional[CancellationToken] = None) -> Job:
        """
        Run or resume a job until it completes, pauses or is cancelled.

        Raises:
            JobNotFound: If the job does not exist
            Exception: Anything unrecoverable; the caller marks the job ERROR
        """
        token = token or CancellationToken()
        job = self.jobs.get(job_id)
        if job.status not in (JobStatus.INITIALIZING, JobStatus.DOWNLOADING):
            raise InvalidTransition(job_id, job.status.value, JobStatus.DOWNLOADING.value)

        result = self._download(job, token)

        job = self.jobs.get(job_id)
        if result.cancelled or job.status != JobStatus.DOWNLOADING:
            logger.info("Job %s stopped while downloading (%s)", job_id, job.status.value)
            if job.status == JobStatus.CANCELLED:
                self.tile_store.remove(job_id)
            return job

        try:
            job = self.jobs.transition(
                job_id,
                JobStatus.CHUNKING,
                downloaded_tiles=result.downloaded_tiles,
                failed_tiles=result.failed_tiles,
                total_size_bytes=self.tile_store.total_size(job_id),
            )
        except InvalidTransition:
            # Paused right after the last batch
            return self.jobs.get(job_id)
        if job.status != JobStatus.CHUNKING:
            # Cancelled right after the last batch
            self.tile_store.remove(job_id)
            return job

        archive = self.assembler.assemble(job)
        chunks = self.codec.split(archive, job.chunk_size_bytes, job_id)
        job = self.jobs.transition(
            job_id,
            JobStatus.COMPLETED,
            chunks=chunks,
            archive_size_bytes=len(archive),
        )

        if not self.keep_tiles:
            self.tile_store.remove(job_id)

        logger.info(
            "Job %s completed: %d tiles, %d failed, %d chunks",
            job_id, job.downloaded_tiles, job.failed_tiles, len(chunks),
        )
        return job


class MapPackService:
    """Entry point used by the API and CLI.

    Jobs run on a small thread pool; each job owns its cancellation token
    until its pipeline returns.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        repository: Optional[JobRepository] = None,
        resolver: Optional[IdentityResolver] = None,
        client: Optional[httpx.Client] = None,
        max_jobs: int = 4,
        keep_tiles: bool = False,
    ):
        """
        Initialize the service.

        Args:
            config: Application config (global config if omitted)
            repository: Job record storage (JSON files under the data dir if omitted)
            resolver: Region id resolver (loaded from the configured registry if omitted)
            client: Optional pre-configured HTTP client for tile requests
            max_jobs: Number of jobs that may run at the same time
            keep_tiles: Keep raw tiles after a job completes
        """
        self.config = config or get_config()
        self.config.ensure_directories()

        self.tile_store = TileStore(self.config.tiles_dir)
        self.chunk_store = ChunkStore(self.config.chunks_dir)
        self.jobs = JobStateMachine(repository or FileJobRepository(self.config.metadata_dir))
        self.codec = ChunkCodec(self.chunk_store)
        self.assembler = ArchiveAssembler(self.tile_store)
        self.resolver = resolver or IdentityResolver.from_file(self.config.regions_file)
        self.fetcher = TileFetcher(
            self.tile_store,
            client=client,
            concurrency=self.config.concurrency,
            timeout=self.config.tile_timeout,
            batch_delay=self.config.batch_delay,
            user_agent=self.config.user_agent,
            api_key=self.config.thunderforest_api_key,
        )
        self.pipeline = GenerationPipeline(
            self.jobs, self.fetcher, self.assembler, self.codec, self.tile_store, keep_tiles=keep_tiles
        )

        self._executor = ThreadPoolExecutor(max_workers=max_jobs, thread_name_prefix="generation")
        self._tokens: dict[str, CancellationToken] = {}
        self._futures: dict[str, Future] = {}
        self._lock = threading.Lock()
        self._admission_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def estimate(self, request: GenerationRequest) -> Estimate:
        """
        Count the tiles a request would download.

        Raises:
            ConfigurationError: If the bounding box is invalid
        """
        by_zoom = tile_counts_by_zoom(request.bounds, request.min_zoom, request.max_zoom)
        total = sum(by_zoom.values())
        return Estimate(total_tiles=total, tiles_by_zoom=by_zoom, estimated_bytes=estimate_size_bytes(total))

    def prepare(self, request: GenerationRequest) -> Job:
        """
        Validate a request and create its job record.

        A finished job with the same stable id is replaced; a running one is not.

        Raises:
            ConfigurationError: If the box, provider or chunk size is invalid
            InvalidTransition: If a job with the same id is still active
        """
        total_tiles = self.estimate(request).total_tiles
        request.provider.build_url(0, 0, 0, self.config.thunderforest_api_key)
        chunk_size = request.chunk_size or self.config.chunk_size
        if chunk_size <= 0:
            raise ConfigurationError(f"Chunk size must be positive, got {chunk_size}")

        job_id = self.resolver.resolve(request.region_name)
        with self._admission_lock:
            self._claim(job_id)
            return self.jobs.create(job_id, chunk_size, request=request, total_tiles=total_tiles)

    def _claim(self, job_id: str) -> None:
        """Clear a finished job with this id; callers hold ``_admission_lock``."""
        existing = self.jobs.find(job_id)
        if existing is not None:
            if not existing.is_terminal:
                raise InvalidTransition(job_id, existing.status.value, JobStatus.INITIALIZING.value)
            logger.info("Replacing previous %s job %s", existing.status.value, job_id)
            self._purge(job_id)

    def _execute(self, job_id: str, token: CancellationToken) -> Job:
        try:
            return self.pipeline.run(job_id, token)
        except Exception as e:
            logger.exception("Error generating offline map %s", job_id)
            try:
                return self.jobs.fail(job_id, str(e))
            except JobNotFound:
                raise e from None
        finally:
            with self._lock:
                if self._tokens.get(job_id) is token:
                    del self._tokens[job_id]

    def _submit(self, job_id: str) -> Future:
        token = CancellationToken()
        with self._lock:
            self._tokens[job_id] = token
            future = self._executor.submit(self._execute, job_id, token)
            self._futures[job_id] = future
        return future

    def start_generation(self, request: GenerationRequest) -> str:
        """Create a job and run it in the background. Returns the job id."""
        job = self.prepare(request)
        self._submit(job.id)
        return job.id

    def generate(self, request: GenerationRequest) -> Job:
        """Create a job and run it to completion in the calling thread."""
        job = self.prepare(request)
        token = CancellationToken()
        with self._lock:
            self._tokens[job.id] = token
        return self._execute(job.id, token)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Job:
        """Block until a background job's current run returns."""
        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.jobs.get(job_id)

    def pause(self, job_id: str) -> Job:
        """
        Pause a downloading job; in-flight tiles of the current batch still finish.

        Raises:
            JobNotFound: If the job does not exist
            InvalidTransition: If the job is not downloading
        """
        job = self.jobs.transition(job_id, JobStatus.PAUSED)
        self._signal(job_id, "paused")
        return job

    def resume(self, job_id: str) -> Job:
        """
        Resume a paused job; stored tiles are not downloaded again.

        Raises:
            JobNotFound: If the job does not exist
            InvalidTransition: If the job is not paused
        """
        job = self.jobs.get(job_id)
        if job.status != JobStatus.PAUSED:
            raise InvalidTransition(job_id, job.status.value, JobStatus.DOWNLOADING.value)

        # The previous run must have stopped before a new one starts
        with self._lock:
            previous = self._futures.get(job_id)
        if previous is not None:
            previous.result()

        job = self.jobs.transition(job_id, JobStatus.DOWNLOADING)
        self._submit(job_id)
        return job

    def cancel(self, job_id: str) -> Job:
        """
        Cancel a job that has not started chunking.

        Raises:
            JobNotFound: If the job does not exist
            InvalidTransition: If the job is chunking
        """
        previous = self.jobs.get(job_id).status
        job = self.jobs.transition(job_id, JobStatus.CANCELLED)
        self._signal(job_id, "cancelled")
        if previous == JobStatus.PAUSED:
            self.tile_store.remove(job_id)
        return job

    def _signal(self, job_id: str, reason: str) -> None:
        with self._lock:
            token = self._tokens.get(job_id)
        if token is not None:
            token.cancel(reason)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_progress(self, job_id: str) -> Job:
        """Current job snapshot. Raises JobNotFound for unknown ids."""
        return self.jobs.get(job_id)

    def list_jobs(self) -> list[Job]:
        return self.jobs.list()

    def get_chunk(self, job_id: str, index: int) -> bytes:
        """
        Bytes of one chunk.

        Raises:
            JobNotFound: If the job does not exist
            MissingChunk: If the chunk does not exist
        """
        self.jobs.get(job_id)
        return self.codec.read_chunk(job_id, index)

    def describe_chunks(self, job_id: str):
        """Chunk files for a job with current sizes and checksums."""
        if not self.chunk_store.chunk_dir(job_id).exists():
            return []
        return self.codec.describe(job_id)

    def reconstruct(self, job_id: str, output_path: Path) -> ReconstructResult:
        """
        Rebuild a job's archive from its chunks and write it to ``output_path``.

        Raises:
            MissingChunk: If chunks are missing
        """
        job = self.jobs.find(job_id)
        if job is not None and job.status != JobStatus.COMPLETED:
            raise MissingChunk(f"Download '{job_id}' has no chunks ({job.status.value})")

        # Chunk sets without a job record are rebuilt from the files on disk
        manifest = job.chunks if job is not None else None
        data = self.codec.reconstruct(job_id, manifest)
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(data)

        chunks_used = len(manifest) if manifest is not None else self.codec.chunk_count(job_id)
        logger.info("Reconstructed %s from %d chunks: %s", job_id, chunks_used, output_path)
        return ReconstructResult(output_path=output_path, size_bytes=len(data), chunks_used=chunks_used)

    def verify_integrity(self, job_id: str) -> IntegrityReport:
        """
        Compare chunk files with the manifest recorded when they were created.

        Raises:
            JobNotFound: If the job does not exist
            MissingChunk: If the job has not completed, so has no chunk manifest
        """
        job = self.jobs.get(job_id)
        if job.status != JobStatus.COMPLETED:
            raise MissingChunk(f"Download '{job_id}' has no chunks ({job.status.value})")
        return self.codec.verify(job_id, job.chunks)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def chunk_archive(
        self,
        archive_path: Path,
        region_name: Optional[str] = None,
        chunk_size: Optional[int] = None,
    ) -> Job:
        """
        Chunk an archive that was built elsewhere and record it as a completed job.

        Raises:
            ConfigurationError: If the chunk size is not positive
            InvalidTransition: If a job with the same id is still active
            FileNotFoundError: If the archive does not exist
        """
        data = Path(archive_path).read_bytes()
        chunk_size = chunk_size or self.config.chunk_size
        if chunk_size <= 0:
            raise ConfigurationError(f"Chunk size must be positive, got {chunk_size}")

        job_id = self.resolver.resolve(region_name)
        name = region_name.replace("_", " ") if region_name else Path(archive_path).stem
        with self._admission_lock:
            self._claim(job_id)
            self.jobs.create(job_id, chunk_size, region_name=name)
        try:
            self.jobs.transition(job_id, JobStatus.DOWNLOADING)
            self.jobs.transition(job_id, JobStatus.CHUNKING)
            chunks = self.codec.split(data, chunk_size, job_id)
            return self.jobs.transition(
                job_id,
                JobStatus.COMPLETED,
                chunks=chunks,
                archive_size_bytes=len(data),
                total_size_bytes=len(data),
            )
        except Exception as e:
            self.jobs.fail(job_id, str(e))
            raise

    def list_chunk_sets(self) -> list[ChunkSetSummary]:
        """Chunk directories on disk, newest first."""
        summaries = []
        for job_id in self.chunk_store.job_ids():
            filenames = self.chunk_store.list_filenames(job_id)
            if not filenames:
                continue
            chunk_dir = self.chunk_store.chunk_dir(job_id)
            job = self.jobs.find(job_id)
            summaries.append(ChunkSetSummary(
                job_id=job_id,
                chunk_count=len(filenames),
                total_size=self.chunk_store.total_size(job_id),
                modified_at=datetime.fromtimestamp(chunk_dir.stat().st_mtime, tz=timezone.utc),
                status=job.status if job else None,
            ))
        return sorted(summaries, key=lambda s: s.modified_at, reverse=True)

    def _purge(self, job_id: str) -> None:
        self.chunk_store.remove(job_id)
        self.tile_store.remove(job_id)
        self.jobs.remove(job_id)

    def remove(self, job_id: str) -> bool:
        """
        Delete a job's record, chunks and tiles.

        Raises:
            InvalidTransition: If the job is still active
        """
        job = self.jobs.find(job_id)
        if job is not None and not job.is_terminal and job.status != JobStatus.PAUSED:
            raise InvalidTransition(job_id, job.status.value, "REMOVED")

        existed = job is not None or self.chunk_store.chunk_dir(job_id).exists()
        self._purge(job_id)
        if existed:
            logger.info("Removed download %s", job_id)
        return existed

    def cleanup(self, older_than_days: int = 30) -> CleanupResult:
        """Remove finished chunk sets not modified for ``older_than_days`` days."""
        cutoff = time.time() - older_than_days * 86400
        result = CleanupResult()

        chunk_sets = self.list_chunk_sets()
        for chunk_set in chunk_sets:
            if chunk_set.modified_at.timestamp() >= cutoff:
                continue
            if chunk_set.status is not None and not chunk_set.status.is_terminal:
                continue
            self._purge(chunk_set.job_id)
            result.removed.append(chunk_set.job_id)
            logger.info("Removed old chunk set: %s", chunk_set.job_id)

        result.remaining = len(chunk_sets) - len(result.removed)
        return result

    def recover_interrupted(self) -> list[Job]:
        """
        Release jobs left active by a process that stopped without ``shutdown``.

        Downloading jobs become PAUSED so they can be resumed; jobs stopped
        while initializing or chunking become ERROR. Jobs run by this service
        are left alone. Only call this when no other process is working on the
        same data directory.
        """
        with self._lock:
            running = set(self._tokens)

        recovered = []
        for job in self.jobs.list():
            if job.is_terminal or job.status == JobStatus.PAUSED or job.id in running:
                continue
            try:
                if job.status == JobStatus.DOWNLOADING:
                    job = self.jobs.transition(job.id, JobStatus.PAUSED)
                else:
                    job = self.jobs.fail(job.id, f"Interrupted while {job.status.value.lower()}")
            except (InvalidTransition, JobNotFound) as e:
                logger.debug("Not recovering %s: %s", job.id, e)
                continue
            logger.warning("Recovered interrupted job %s as %s", job.id, job.status.value)
            recovered.append(job)
        return recovered

    def shutdown(self) -> None:
        """Pause running downloads and wait for the workers to stop."""
        with self._lock:
            active = list(self._tokens)
        for job_id in active:
            try:
                self.pause(job_id)
            except (InvalidTransition, JobNotFound) as e:
                logger.debug("Not pausing %s on shutdown: %s", job_id, e)
        self._executor.shutdown(wait=True)
        self.fetcher.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

