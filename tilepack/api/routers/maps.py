"""Offline map download endpoints."""

import asyncio
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException, Response

from ...config import get_config
from ...errors import InvalidTransition, JobNotFound, MissingChunk, TilePackError
from ...models.provider import TileProvider
from ...models.region import GenerationRequest
from ...services.generation_service import MapPackService
from ..schemas import (
    ChunkArchiveRequest,
    DownloadDetail,
    DownloadProgress,
    DownloadSummary,
    EstimateRequest,
    EstimateResponse,
    GenerationStartResponse,
    IntegrityResponse,
    ProviderInfo,
    ReconstructRequest,
    ReconstructResponse,
    SuccessResponse,
)

router = APIRouter()

_service: Optional[MapPackService] = None


def get_service() -> MapPackService:
    """Get or create the shared service."""
    global _service
    if _service is None:
        _service = MapPackService(get_config())
        # The server owns the data directory, so leftovers of a crash are released
        _service.recover_interrupted()
    return _service


def shutdown_service() -> None:
    """Pause running downloads and release the shared service."""
    global _service
    if _service is not None:
        _service.shutdown()
        _service = None


def to_http_exception(error: TilePackError) -> HTTPException:
    """Map a domain error onto an HTTP status."""
    if isinstance(error, (JobNotFound, MissingChunk)):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidTransition):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


@router.get("/providers", response_model=list[ProviderInfo])
async def list_providers():
    """List tile providers and whether they can be used with the current config."""
    config = get_config()
    return [
        ProviderInfo(
            name=provider,
            label=provider.label,
            requires_api_key=provider.requires_api_key,
            available=not provider.requires_api_key or bool(config.thunderforest_api_key),
        )
        for provider in TileProvider
    ]


@router.post("/estimate", response_model=EstimateResponse)
async def estimate(request: EstimateRequest):
    """Estimate tile count and size for a region."""
    service = get_service()
    generation = GenerationRequest(
        region_name="estimate",
        bounds=request.bounds,
        min_zoom=request.min_zoom,
        max_zoom=request.max_zoom,
    )
    try:
        result = service.estimate(generation)
    except TilePackError as e:
        raise to_http_exception(e) from e
    return EstimateResponse.from_estimate(result)


@router.post("/generate", response_model=GenerationStartResponse, status_code=202)
async def start_generation(request: GenerationRequest):
    """Start generating an offline map in the background."""
    service = get_service()
    try:
        download_id = await asyncio.to_thread(service.start_generation, request)
    except TilePackError as e:
        raise to_http_exception(e) from e

    job = service.get_progress(download_id)
    return GenerationStartResponse(
        download_id=download_id,
        status=job.status,
        total_tiles=job.total_tiles,
        progress_url=f"/api/maps/progress/{download_id}",
    )


@router.get("/progress/{download_id}", response_model=DownloadProgress)
async def get_progress(download_id: str):
    """Get the progress of a download."""
    try:
        job = get_service().get_progress(download_id)
    except TilePackError as e:
        raise to_http_exception(e) from e
    return DownloadProgress.from_job(job)


@router.get("/downloads", response_model=list[DownloadSummary])
async def list_downloads():
    """List all downloads, newest first."""
    return [DownloadSummary.from_job(job) for job in get_service().list_jobs()]


@router.get("/downloads/{download_id}", response_model=DownloadDetail)
async def get_download(download_id: str):
    """Get a download with its chunk manifest."""
    try:
        job = get_service().get_progress(download_id)
    except TilePackError as e:
        raise to_http_exception(e) from e
    return DownloadDetail.from_job(job)


@router.delete("/downloads/{download_id}", response_model=SuccessResponse)
async def delete_download(download_id: str):
    """Delete a download's record, chunks and tiles."""
    try:
        existed = await asyncio.to_thread(get_service().remove, download_id)
    except TilePackError as e:
        raise to_http_exception(e) from e

    if not existed:
        raise HTTPException(status_code=404, detail=f"Download '{download_id}' not found")
    return SuccessResponse(message=f"Download '{download_id}' deleted")


@router.get("/download-chunk/{download_id}/{index}")
async def download_chunk(download_id: str, index: int):
    """Get the bytes of one chunk."""
    try:
        data = await asyncio.to_thread(get_service().get_chunk, download_id, index)
    except TilePackError as e:
        raise to_http_exception(e) from e

    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="chunk_{index:03d}.bin"'},
    )


@router.post("/verify/{download_id}", response_model=IntegrityResponse)
async def verify(download_id: str):
    """Re-hash a download's chunks against its manifest."""
    try:
        report = await asyncio.to_thread(get_service().verify_integrity, download_id)
    except TilePackError as e:
        raise to_http_exception(e) from e
    return IntegrityResponse.from_report(report)


@router.post("/reconstruct", response_model=ReconstructResponse)
async def reconstruct(request: ReconstructRequest):
    """Rebuild a download's archive from its chunks."""
    try:
        result = await asyncio.to_thread(
            get_service().reconstruct, request.download_id, Path(request.output_path)
        )
    except TilePackError as e:
        raise to_http_exception(e) from e
    return ReconstructResponse.from_result(result)


@router.post("/create-chunks-from-zip", response_model=DownloadDetail)
async def create_chunks_from_zip(request: ChunkArchiveRequest):
    """Chunk an archive built elsewhere and record it as a completed download."""
    archive_path = Path(request.archive_path)
    if not archive_path.is_file():
        raise HTTPException(status_code=404, detail=f"Archive not found: {archive_path}")

    try:
        job = await asyncio.to_thread(
            get_service().chunk_archive, archive_path, request.region_name, request.chunk_size
        )
    except TilePackError as e:
        raise to_http_exception(e) from e
    return DownloadDetail.from_job(job)


@router.post("/pause/{download_id}", response_model=DownloadProgress)
async def pause(download_id: str):
    """Pause a running download."""
    try:
        job = await asyncio.to_thread(get_service().pause, download_id)
    except TilePackError as e:
        raise to_http_exception(e) from e
    return DownloadProgress.from_job(job)


@router.post("/resume/{download_id}", response_model=DownloadProgress)
async def resume(download_id: str):
    """Resume a paused download."""
    try:
        job = await asyncio.to_thread(get_service().resume, download_id)
    except TilePackError as e:
        raise to_http_exception(e) from e
    return DownloadProgress.from_job(job)


@router.post("/cancel/{download_id}", response_model=DownloadProgress)
async def cancel(download_id: str):
    """Cancel a download that has not started chunking."""
    try:
        job = await asyncio.to_thread(get_service().cancel, download_id)
    except TilePackError as e:
        raise to_http_exception(e) from e
    return DownloadProgress.from_job(job)
