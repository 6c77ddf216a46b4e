"""Tests for API Pydantic schemas."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from tilepack.api.schemas import (
    DownloadDetail,
    DownloadProgress,
    DownloadSummary,
    EstimateRequest,
    IntegrityResponse,
    ReconstructRequest,
    ReconstructResponse,
)
from tilepack.models.job import Chunk, Job, JobStatus
from tilepack.services.chunk_service import IntegrityReport
from tilepack.services.generation_service import ReconstructResult


@pytest.fixture
def completed_job(small_bbox):
    return Job(
        id="job-1",
        status=JobStatus.COMPLETED,
        region_name="North Estate",
        bounds=small_bbox,
        min_zoom=14,
        max_zoom=14,
        total_tiles=4,
        downloaded_tiles=4,
        progress_percent=100,
        archive_size_bytes=30,
        chunk_size_bytes=16,
        chunks=[
            Chunk(index=0, filename="chunk_000.bin", size=16, checksum="a"),
            Chunk(index=1, filename="chunk_001.bin", size=14, checksum="b"),
        ],
    )


class TestDownloadSchemas:
    def test_progress_from_job(self, completed_job):
        progress = DownloadProgress.from_job(completed_job)
        assert progress.download_id == "job-1"
        assert progress.status == JobStatus.COMPLETED
        assert progress.progress_percent == 100
        assert progress.chunk_count == 2

    def test_summary_from_job(self, completed_job):
        summary = DownloadSummary.from_job(completed_job)
        assert summary.region_name == "North Estate"
        assert summary.archive_size_bytes == 30

    def test_detail_includes_manifest(self, completed_job):
        detail = DownloadDetail.from_job(completed_job)
        assert [c.filename for c in detail.chunks] == ["chunk_000.bin", "chunk_001.bin"]
        assert detail.bounds == completed_job.bounds
        assert detail.chunk_size_bytes == 16

    def test_status_serialized_as_name(self, completed_job):
        data = DownloadProgress.from_job(completed_job).model_dump(mode="json")
        assert data["status"] == "COMPLETED"


class TestRequests:
    def test_estimate_defaults(self, small_bbox):
        request = EstimateRequest(bounds=small_bbox)
        assert (request.min_zoom, request.max_zoom) == (13, 22)

    def test_estimate_rejects_bad_zoom(self, small_bbox):
        with pytest.raises(ValidationError):
            EstimateRequest(bounds=small_bbox, min_zoom=-1)

    def test_reconstruct_requires_path(self):
        with pytest.raises(ValidationError):
            ReconstructRequest(download_id="job-1", output_path="")


class TestResults:
    def test_integrity_response(self):
        report = IntegrityReport(job_id="job-1", valid_count=2, invalid_count=1, invalid_files=["chunk_002.bin"])
        response = IntegrityResponse.from_report(report)
        assert response.is_valid is False
        assert response.invalid_files == ["chunk_002.bin"]

    def test_reconstruct_response(self, tmp_path):
        result = ReconstructResult(output_path=tmp_path / "out.zip", size_bytes=10, chunks_used=1)
        response = ReconstructResponse.from_result(result)
        assert Path(response.output_path) == tmp_path / "out.zip"
        assert response.chunks_used == 1
