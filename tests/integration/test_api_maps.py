"""Integration tests for map download endpoints using FastAPI TestClient."""

import os
from unittest.mock import patch

import pytest

from tilepack.models.job import JobStatus
from tilepack.services.generation_service import MapPackService

# FastAPI/httpx may not be installed; skip these tests if not available
pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient


@pytest.fixture
def service(app_config, job_repository, tile_server):
    service = MapPackService(app_config, repository=job_repository, client=tile_server.client())
    yield service
    service.shutdown()


@pytest.fixture
def client(service, tmp_path):
    """FastAPI test client backed by a service using the stub tile server."""
    with patch.dict(os.environ, {"TILEPACK_DATA_DIR": str(tmp_path / "maps")}):
        os.environ.pop("THUNDERFOREST_API_KEY", None)
        # Reset the global config so it picks up our env vars
        import tilepack.config as config_module
        config_module._config = None

        with patch("tilepack.api.routers.maps.get_service", return_value=service):
            from tilepack.api.main import app
            with TestClient(app) as c:
                yield c

        config_module._config = None


@pytest.fixture
def generate_body(small_bbox):
    return {
        "region_name": "North Estate",
        "region_code": "ABC",
        "bounds": small_bbox.model_dump(),
        "min_zoom": 14,
        "max_zoom": 14,
        "chunk_size": 256,
    }


@pytest.fixture
def completed_id(client, service, generate_body):
    response = client.post("/api/maps/generate", json=generate_body)
    download_id = response.json()["download_id"]
    assert service.wait(download_id, timeout=10).status == JobStatus.COMPLETED
    return download_id


class TestHealthCheck:
    """Test health endpoint."""

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"


class TestProviders:
    def test_list(self, client):
        response = client.get("/api/maps/providers")
        assert response.status_code == 200
        providers = {p["name"]: p for p in response.json()}
        assert set(providers) == {"standard", "satellite", "terrain", "hybrid"}
        assert providers["satellite"]["available"] is True
        assert providers["terrain"]["requires_api_key"] is True
        assert providers["terrain"]["available"] is False


class TestEstimate:
    def test_scenario(self, client, sample_bbox):
        response = client.post("/api/maps/estimate", json={
            "bounds": sample_bbox.model_dump(),
            "min_zoom": 14,
            "max_zoom": 14,
        })
        assert response.status_code == 200
        data = response.json()
        assert data["total_tiles"] == 100
        assert data["tiles_by_zoom"] == {"14": 100}

    def test_antimeridian_rejected(self, client):
        response = client.post("/api/maps/estimate", json={
            "bounds": {
                "southwest": {"latitude": -18.0, "longitude": 179.0},
                "northeast": {"latitude": -16.0, "longitude": -179.0},
            },
        })
        assert response.status_code == 400
        assert "antimeridian" in response.json()["detail"]


class TestGenerate:
    """Test starting and following a download."""

    def test_start(self, client, service, generate_body):
        response = client.post("/api/maps/generate", json=generate_body)
        assert response.status_code == 202
        data = response.json()
        assert data["total_tiles"] == 4
        assert data["progress_url"] == f"/api/maps/progress/{data['download_id']}"
        service.wait(data["download_id"], timeout=10)

    def test_progress(self, client, completed_id):
        response = client.get(f"/api/maps/progress/{completed_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "COMPLETED"
        assert data["progress_percent"] == 100
        assert data["downloaded_tiles"] == 4
        assert data["chunk_count"] > 1

    def test_progress_unknown(self, client):
        response = client.get("/api/maps/progress/missing")
        assert response.status_code == 404

    def test_terrain_without_key(self, client, generate_body):
        response = client.post("/api/maps/generate", json={**generate_body, "provider": "terrain"})
        assert response.status_code == 400

    def test_invalid_body(self, client, generate_body):
        response = client.post("/api/maps/generate", json={**generate_body, "max_zoom": 30})
        assert response.status_code == 422


class TestDownloads:
    def test_list(self, client, completed_id):
        response = client.get("/api/maps/downloads")
        assert response.status_code == 200
        data = response.json()
        assert [d["download_id"] for d in data] == [completed_id]
        assert data[0]["region_name"] == "North Estate"

    def test_detail(self, client, completed_id):
        response = client.get(f"/api/maps/downloads/{completed_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["chunks"][0]["filename"] == "chunk_000.bin"
        assert data["chunk_size_bytes"] == 256

    def test_delete(self, client, completed_id):
        response = client.delete(f"/api/maps/downloads/{completed_id}")
        assert response.status_code == 200
        assert response.json()["success"] is True

        assert client.get(f"/api/maps/progress/{completed_id}").status_code == 404
        assert client.delete(f"/api/maps/downloads/{completed_id}").status_code == 404


class TestChunks:
    def test_download_chunk(self, client, service, completed_id):
        response = client.get(f"/api/maps/download-chunk/{completed_id}/0")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/octet-stream"
        assert 'filename="chunk_000.bin"' in response.headers["content-disposition"]
        assert response.content == service.get_chunk(completed_id, 0)

    def test_download_missing_chunk(self, client, completed_id):
        response = client.get(f"/api/maps/download-chunk/{completed_id}/999")
        assert response.status_code == 404

    def test_verify(self, client, completed_id):
        response = client.post(f"/api/maps/verify/{completed_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is True
        assert data["invalid_count"] == 0

    def test_reconstruct(self, client, service, completed_id, tmp_path):
        output = tmp_path / "rebuilt.zip"
        response = client.post("/api/maps/reconstruct", json={
            "download_id": completed_id,
            "output_path": str(output),
        })
        assert response.status_code == 200
        data = response.json()
        assert data["size_bytes"] == service.get_progress(completed_id).archive_size_bytes
        assert output.stat().st_size == data["size_bytes"]

    def test_reconstruct_unknown(self, client, tmp_path):
        response = client.post("/api/maps/reconstruct", json={
            "download_id": "missing",
            "output_path": str(tmp_path / "x.zip"),
        })
        assert response.status_code == 404



class TestCreateChunksFromZip:
    def test_scenario(self, client, service, tmp_path):
        archive = tmp_path / "region.zip"
        archive.write_bytes(bytes(range(256)) * 3)

        response = client.post("/api/maps/create-chunks-from-zip", json={
            "archive_path": str(archive),
            "region_name": "North Estate",
            "chunk_size": 256,
        })
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "COMPLETED"
        assert len(data["chunks"]) == 3
        assert service.get_chunk(data["download_id"], 2) == bytes(range(256))

    def test_missing_archive(self, client, tmp_path):
        response = client.post("/api/maps/create-chunks-from-zip", json={
            "archive_path": str(tmp_path / "nope.zip"),
        })
        assert response.status_code == 404

    def test_bad_chunk_size(self, client, tmp_path):
        archive = tmp_path / "region.zip"
        archive.write_bytes(b"data")
        response = client.post("/api/maps/create-chunks-from-zip", json={
            "archive_path": str(archive),
            "chunk_size": 0,
        })
        assert response.status_code == 422

class TestLifecycle:
    def test_resume_completed_conflicts(self, client, completed_id):
        response = client.post(f"/api/maps/resume/{completed_id}")
        assert response.status_code == 409

    def test_pause_completed_is_ignored(self, client, completed_id):
        response = client.post(f"/api/maps/pause/{completed_id}")
        assert response.status_code == 200
        assert response.json()["status"] == "COMPLETED"

    def test_cancel_unknown(self, client):
        assert client.post("/api/maps/cancel/missing").status_code == 404

    def test_cancel_initializing(self, client, service, small_request):
        service.jobs.create("job-1", 1024, request=small_request)
        response = client.post("/api/maps/cancel/job-1")
        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"
