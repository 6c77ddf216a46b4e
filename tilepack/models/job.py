"""Generation job models and the job lifecycle table."""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .provider import TileProvider
from .region import BoundingBox

# Share of progress reserved for tile downloading; the rest covers chunking.
DOWNLOAD_PROGRESS_SHARE = 90


class JobStatus(str, Enum):
    """Lifecycle state of a generation job."""

    INITIALIZING = "INITIALIZING"
    DOWNLOADING = "DOWNLOADING"
    PAUSED = "PAUSED"
    CHUNKING = "CHUNKING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.CANCELLED})

# Allowed edges; ERROR is reachable from every non-terminal state.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.INITIALIZING: frozenset({JobStatus.DOWNLOADING, JobStatus.CANCELLED, JobStatus.ERROR}),
    JobStatus.DOWNLOADING: frozenset(
        {JobStatus.CHUNKING, JobStatus.PAUSED, JobStatus.CANCELLED, JobStatus.ERROR}
    ),
    JobStatus.PAUSED: frozenset({JobStatus.DOWNLOADING, JobStatus.CANCELLED, JobStatus.ERROR}),
    JobStatus.CHUNKING: frozenset({JobStatus.COMPLETED, JobStatus.ERROR}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
    JobStatus.ERROR: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties away from zero for positive values."""
    return int(math.floor(value + 0.5))


def download_progress(downloaded: int, total: int) -> int:
    """Percent complete while downloading, capped at the download share."""
    if total <= 0:
        return 0
    ratio = min(downloaded, total) / total
    return round_half_up(ratio * DOWNLOAD_PROGRESS_SHARE)


class Chunk(BaseModel):
    """One stored slice of a job's archive."""

    index: int = Field(..., ge=0)
    filename: str
    size: int = Field(..., gt=0)
    checksum: str


class Job(BaseModel):
    """Persisted record of one generation job (a "download")."""

    id: str
    status: JobStatus = JobStatus.INITIALIZING

    # Region
    region_name: Optional[str] = None
    region_code: Optional[str] = None
    region_ref: Optional[str] = None
    formatted_name: Optional[str] = None
    bounds: Optional[BoundingBox] = None
    min_zoom: Optional[int] = None
    max_zoom: Optional[int] = None
    provider: Optional[TileProvider] = None

    # Progress
    total_tiles: int = 0
    downloaded_tiles: int = 0
    failed_tiles: int = 0
    progress_percent: int = Field(default=0, ge=0, le=100)

    # Output
    total_size_bytes: int = 0
    archive_size_bytes: int = 0
    chunk_size_bytes: int = 0
    chunks: list[Chunk] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    def chunk_by_index(self, index: int) -> Optional[Chunk]:
        for chunk in self.chunks:
            if chunk.index == index:
                return chunk
        return None
