"""Offline map pack services."""

from .archive_service import ArchiveAssembler
from .chunk_service import ChunkCodec, IntegrityReport
from .fetch_service import CancellationToken, FetchProgress, FetchResult, TileFetcher
from .generation_service import GenerationPipeline, MapPackService
from .identity_service import IdentityResolver
from .job_service import JobStateMachine
from .storage import ChunkStore, FileJobRepository, InMemoryJobRepository, JobRepository, TileStore

__all__ = [
    "ArchiveAssembler",
    "ChunkCodec",
    "IntegrityReport",
    "CancellationToken",
    "FetchProgress",
    "FetchResult",
    "TileFetcher",
    "GenerationPipeline",
    "MapPackService",
    "IdentityResolver",
    "JobStateMachine",
    "ChunkStore",
    "FileJobRepository",
    "InMemoryJobRepository",
    "JobRepository",
    "TileStore",
]
