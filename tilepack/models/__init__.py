"""Data models for offline map packs."""

from .job import Chunk, Job, JobStatus
from .provider import TileProvider
from .region import (
    BoundingBox,
    GenerationRequest,
    LatLng,
    RegionEntry,
    RegionRegistry,
    TileCoordinate,
)

__all__ = [
    "Chunk",
    "Job",
    "JobStatus",
    "TileProvider",
    "BoundingBox",
    "GenerationRequest",
    "LatLng",
    "RegionEntry",
    "RegionRegistry",
    "TileCoordinate",
]
