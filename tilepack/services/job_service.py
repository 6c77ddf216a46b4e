"""Job lifecycle management."""

import logging
from typing import Optional

from ..errors import InvalidTransition, JobNotFound
from ..models.job import (
    ALLOWED_TRANSITIONS,
    DOWNLOAD_PROGRESS_SHARE,
    Job,
    JobStatus,
    download_progress,
)
from ..models.region import GenerationRequest
from .fetch_service import FetchProgress
from .storage import JobRepository

logger = logging.getLogger(__name__)

# Fields a transition may set alongside the new status.
TRANSITION_FIELDS = frozenset({
    "total_tiles",
    "downloaded_tiles",
    "failed_tiles",
    "total_size_bytes",
    "archive_size_bytes",
    "chunk_size_bytes",
    "chunks",
    "error",
})


class JobStateMachine:
    """Owns job records and the only allowed ways of changing them.

    ``progress_percent`` is never set directly: it is derived from the tile
    counters while downloading, raised to the download share on CHUNKING and
    forced to 100 on COMPLETED. It never goes down while a job is active.
    Transitions out of a terminal state are ignored and the unchanged job is
    returned; other disallowed edges raise InvalidTransition.
    """

    def __init__(self, repository: JobRepository):
        self.repository = repository

    def create(
        self,
        job_id: str,
        chunk_size: int,
        request: Optional[GenerationRequest] = None,
        region_name: Optional[str] = None,
        total_tiles: int = 0,
    ) -> Job:
        """
        Create a job record in the INITIALIZING state.

        Jobs for archives built elsewhere have no request; only a region name
        is recorded for them.
        """
        job = Job(id=job_id, status=JobStatus.INITIALIZING, total_tiles=total_tiles, chunk_size_bytes=chunk_size)
        if request is not None:
            job.region_name = request.region_name
            job.region_code = request.region_code
            job.region_ref = request.region_ref
            job.formatted_name = request.formatted_name
            job.bounds = request.bounds
            job.min_zoom = request.min_zoom
            job.max_zoom = request.max_zoom
            job.provider = request.provider
        else:
            job.region_name = region_name

        self.repository.put(job)
        logger.info("Created job %s for %s", job_id, job.region_name)
        return job

    def get(self, job_id: str) -> Job:
        """
        Get a job snapshot.

        Raises:
            JobNotFound: If no record exists
        """
        job = self.repository.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def find(self, job_id: str) -> Optional[Job]:
        """Get a job snapshot, or None if it does not exist."""
        return self.repository.get(job_id)

    def list(self) -> list[Job]:
        """All jobs, newest first."""
        return sorted(self.repository.list(), key=lambda j: j.created_at, reverse=True)

    def transition(self, job_id: str, new_status: JobStatus, **fields) -> Job:
        """
        Move a job to a new status, optionally updating counters at the same time.

        Args:
            job_id: Job to update
            new_status: Target status
            **fields: Extra fields to set (see TRANSITION_FIELDS)

        Returns:
            The updated job, or the unchanged job if it was already terminal

        Raises:
            JobNotFound: If no record exists
            InvalidTransition: If the edge is not allowed
        """
        new_status = JobStatus(new_status)
        unknown = set(fields) - TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Cannot set {sorted(unknown)} through a transition")

        def mutate(job: Job) -> Job:
            if new_status not in ALLOWED_TRANSITIONS[job.status]:
                raise InvalidTransition(job.id, job.status.value, new_status.value)

            for name, value in fields.items():
                setattr(job, name, value)
            job.status = new_status
            job.progress_percent = self._derive_progress(job)
            return job

        current = self.get(job_id)
        if current.is_terminal:
            logger.warning(
                "Ignoring transition of job %s from terminal state %s to %s",
                job_id, current.status.value, new_status.value,
            )
            return current

        try:
            job = self.repository.update(job_id, mutate)
        except InvalidTransition as e:
            if e.current in {s.value for s in JobStatus if s.is_terminal}:
                # Became terminal between the read and the update
                logger.warning("Ignoring transition of job %s: %s", job_id, e)
                return self.get(job_id)
            raise

        logger.info("Job %s -> %s (%d%%)", job_id, job.status.value, job.progress_percent)
        return job

    def record_progress(self, job_id: str, event: FetchProgress) -> Job:
        """
        Apply a fetch progress event to a downloading job.

        Events arriving after the job has left DOWNLOADING (for example once a
        pause was requested) still update the counters but never the status.

        Raises:
            JobNotFound: If no record exists
        """

        def mutate(job: Job) -> Job:
            if job.is_terminal:
                return job
            job.total_tiles = event.total_tiles
            job.downloaded_tiles = event.downloaded_tiles
            job.failed_tiles = event.failed_tiles
            job.progress_percent = self._derive_progress(job)
            return job

        return self.repository.update(job_id, mutate)

    def fail(self, job_id: str, error: str) -> Job:
        """Move a job to ERROR with a message; no-op if already terminal."""
        return self.transition(job_id, JobStatus.ERROR, error=error)

    def remove(self, job_id: str) -> bool:
        """Delete a job record. Returns False if it did not exist."""
        return self.repository.delete(job_id)

    @staticmethod
    def _derive_progress(job: Job) -> int:
        previous = job.progress_percent
        if job.status == JobStatus.COMPLETED:
            return 100
        if job.status == JobStatus.CHUNKING:
            return max(previous, DOWNLOAD_PROGRESS_SHARE)
        if job.status in (JobStatus.DOWNLOADING, JobStatus.PAUSED):
            return max(previous, download_progress(job.downloaded_tiles, job.total_tiles))
        return previous
