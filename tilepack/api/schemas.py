"""API request/response models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..models.job import Chunk, Job, JobStatus
from ..models.provider import TileProvider
from ..models.region import BoundingBox
from ..services.chunk_service import IntegrityReport
from ..services.generation_service import Estimate, ReconstructResult


# =============================================================================
# Provider Schemas
# =============================================================================


class ProviderInfo(BaseModel):
    """A tile provider that can be requested."""

    name: TileProvider
    label: str
    requires_api_key: bool
    available: bool


# =============================================================================
# Generation Schemas
# =============================================================================


class EstimateRequest(BaseModel):
    """Request to estimate a region's tile count."""

    bounds: BoundingBox
    min_zoom: int = Field(default=13, ge=0, le=22)
    max_zoom: int = Field(default=22, ge=0, le=22)


class EstimateResponse(BaseModel):
    total_tiles: int
    tiles_by_zoom: dict[int, int]
    estimated_bytes: int

    @classmethod
    def from_estimate(cls, estimate: Estimate) -> "EstimateResponse":
        return cls(
            total_tiles=estimate.total_tiles,
            tiles_by_zoom=estimate.tiles_by_zoom,
            estimated_bytes=estimate.estimated_bytes,
        )


class GenerationStartResponse(BaseModel):
    """Response when starting generation."""

    download_id: str
    status: JobStatus
    total_tiles: int
    progress_url: str


class DownloadProgress(BaseModel):
    """Progress of one download job."""

    download_id: str
    status: JobStatus
    progress_percent: int
    total_tiles: int
    downloaded_tiles: int
    failed_tiles: int
    total_size_bytes: int
    chunk_count: int
    error: Optional[str] = None
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "DownloadProgress":
        return cls(
            download_id=job.id,
            status=job.status,
            progress_percent=job.progress_percent,
            total_tiles=job.total_tiles,
            downloaded_tiles=job.downloaded_tiles,
            failed_tiles=job.failed_tiles,
            total_size_bytes=job.total_size_bytes,
            chunk_count=job.chunk_count,
            error=job.error,
            updated_at=job.updated_at,
        )


class DownloadSummary(BaseModel):
    """Summary of a download for list views."""

    download_id: str
    status: JobStatus
    region_name: Optional[str] = None
    region_code: Optional[str] = None
    provider: Optional[TileProvider] = None
    progress_percent: int
    archive_size_bytes: int
    chunk_count: int
    created_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "DownloadSummary":
        return cls(
            download_id=job.id,
            status=job.status,
            region_name=job.region_name,
            region_code=job.region_code,
            provider=job.provider,
            progress_percent=job.progress_percent,
            archive_size_bytes=job.archive_size_bytes,
            chunk_count=job.chunk_count,
            created_at=job.created_at,
        )


class DownloadDetail(DownloadSummary):
    """Full download record including the chunk manifest."""

    bounds: Optional[BoundingBox] = None
    min_zoom: Optional[int] = None
    max_zoom: Optional[int] = None
    chunk_size_bytes: int
    chunks: list[Chunk]

    @classmethod
    def from_job(cls, job: Job) -> "DownloadDetail":
        summary = DownloadSummary.from_job(job)
        return cls(
            **summary.model_dump(),
            bounds=job.bounds,
            min_zoom=job.min_zoom,
            max_zoom=job.max_zoom,
            chunk_size_bytes=job.chunk_size_bytes,
            chunks=job.chunks,
        )


# =============================================================================
# Chunk Schemas
# =============================================================================


class IntegrityResponse(BaseModel):
    """Result of re-hashing a download's chunks."""

    download_id: str
    is_valid: bool
    valid_count: int
    invalid_count: int
    invalid_files: list[str]

    @classmethod
    def from_report(cls, report: IntegrityReport) -> "IntegrityResponse":
        return cls(
            download_id=report.job_id,
            is_valid=report.is_valid,
            valid_count=report.valid_count,
            invalid_count=report.invalid_count,
            invalid_files=report.invalid_files,
        )


class ChunkArchiveRequest(BaseModel):
    """Request to chunk an archive that already exists on the server."""

    archive_path: str = Field(..., min_length=1, description="Archive to split")
    region_name: Optional[str] = Field(default=None, description="Region name used to look up a stable id")
    chunk_size: Optional[int] = Field(default=None, gt=0, description="Override chunk size in bytes")


class ReconstructRequest(BaseModel):
    """Request to rebuild an archive from its chunks on the server."""

    download_id: str
    output_path: str = Field(..., min_length=1, description="Where to write the archive")


class ReconstructResponse(BaseModel):
    output_path: str
    size_bytes: int
    chunks_used: int

    @classmethod
    def from_result(cls, result: ReconstructResult) -> "ReconstructResponse":
        return cls(
            output_path=str(result.output_path),
            size_bytes=result.size_bytes,
            chunks_used=result.chunks_used,
        )


# =============================================================================
# Common Schemas
# =============================================================================


class SuccessResponse(BaseModel):
    """Generic success response."""

    success: bool = True
    message: str
