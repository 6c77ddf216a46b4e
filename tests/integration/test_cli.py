"""Tests for the tilepack command line."""

import os
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from tilepack.cli import main
from tilepack.models.job import JobStatus
from tilepack.models.region import RegionEntry, RegionRegistry

STABLE_ID = "3f6c2a9e-1b1d-4c51-9a53-7d2f0c8e4b11"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "maps"


@pytest.fixture(autouse=True)
def cli_env(tmp_path, data_dir):
    """Point the CLI at a temporary data dir and a one-entry region registry."""
    regions_file = tmp_path / "regions.yaml"
    RegionRegistry(
        regions=[RegionEntry(name="North Estate", code="NE", download_id=STABLE_ID)]
    ).to_yaml(regions_file)

    env = {
        "TILEPACK_DATA_DIR": str(data_dir),
        "TILEPACK_REGIONS_FILE": str(regions_file),
        "TILEPACK_CHUNK_SIZE": "100",
    }
    with patch.dict(os.environ, env):
        os.environ.pop("THUNDERFOREST_API_KEY", None)
        import tilepack.config as config_module
        config_module._config = None
        yield
        config_module._config = None


@pytest.fixture
def archive(tmp_path):
    path = tmp_path / "north_estate.zip"
    path.write_bytes(bytes(range(256)) * 2)
    return path


@pytest.fixture
def chunked(runner, archive):
    result = runner.invoke(main, ["chunk-archive", str(archive), "--name", "North_Estate"])
    assert result.exit_code == 0, result.output
    return STABLE_ID


class TestInfoCommands:
    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_providers(self, runner):
        result = runner.invoke(main, ["providers"])
        assert result.exit_code == 0
        assert "satellite" in result.output
        assert "missing" in result.output

    def test_estimate(self, runner):
        result = runner.invoke(main, [
            "estimate",
            "--south", "-2.70", "--west", "111.60", "--north", "-2.50", "--east", "111.80",
            "--min-zoom", "14", "--max-zoom", "14",
        ])
        assert result.exit_code == 0, result.output
        assert "Total tiles: 100" in result.output

    def test_estimate_antimeridian(self, runner):
        result = runner.invoke(main, [
            "estimate",
            "--south", "-18", "--west", "179", "--north", "-16", "--east", "-179",
        ])
        assert result.exit_code == 1
        assert "antimeridian" in result.output

    def test_progress_unknown(self, runner):
        result = runner.invoke(main, ["progress", "missing"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_list_empty(self, runner):
        result = runner.invoke(main, ["list"])
        assert result.exit_code == 0
        assert "No downloads found" in result.output

    def test_resume_unknown(self, runner):
        result = runner.invoke(main, ["resume", "missing"])
        assert result.exit_code == 1


class TestChunkArchive:
    def test_uses_registry_id(self, runner, chunked, data_dir):
        chunk_files = sorted(p.name for p in (data_dir / "chunks" / chunked).iterdir())
        assert chunk_files == [f"chunk_{i:03d}.bin" for i in range(6)]

    def test_progress_after_chunking(self, runner, chunked):
        result = runner.invoke(main, ["progress", chunked])
        assert result.exit_code == 0
        assert "COMPLETED" in result.output
        assert "100%" in result.output

    def test_list(self, runner, chunked):
        result = runner.invoke(main, ["list"])
        assert result.exit_code == 0
        assert "North Estate" in result.output

    def test_info_lists_chunk_files(self, runner, chunked):
        result = runner.invoke(main, ["info", chunked])
        assert result.exit_code == 0
        assert "chunk_000.bin" in result.output

    def test_missing_archive(self, runner, tmp_path):
        result = runner.invoke(main, ["chunk-archive", str(tmp_path / "nope.zip")])
        assert result.exit_code != 0

    def test_rejects_bad_chunk_size(self, runner, archive):
        result = runner.invoke(main, ["chunk-archive", str(archive), "--chunk-size", "-5"])
        assert result.exit_code == 1


class TestVerifyReconstruct:
    def test_verify(self, runner, chunked):
        result = runner.invoke(main, ["verify", chunked])
        assert result.exit_code == 0
        assert "All chunks are valid" in result.output

    def test_verify_detects_corruption(self, runner, chunked, data_dir):
        (data_dir / "chunks" / chunked / "chunk_002.bin").write_bytes(b"garbage")
        result = runner.invoke(main, ["verify", chunked])
        assert result.exit_code == 1
        assert "chunk_002.bin" in result.output

    def test_reconstruct(self, runner, chunked, archive, tmp_path):
        output = tmp_path / "out" / "rebuilt.zip"
        result = runner.invoke(main, ["reconstruct", chunked, "-o", str(output)])
        assert result.exit_code == 0, result.output
        assert output.read_bytes() == archive.read_bytes()

    def test_reconstruct_unknown(self, runner, tmp_path):
        result = runner.invoke(main, ["reconstruct", "missing", "-o", str(tmp_path / "x.zip")])
        assert result.exit_code == 1



class TestRecover:
    def test_nothing_to_recover(self, runner):
        result = runner.invoke(main, ["recover"])
        assert result.exit_code == 0
        assert "Recovered 0" in result.output

    def test_interrupted_download_is_paused(self, runner, small_request):
        from tilepack.config import get_config
        from tilepack.services.generation_service import MapPackService

        with MapPackService(get_config()) as service:
            service.jobs.create("job-1", 100, request=small_request)
            service.jobs.transition("job-1", JobStatus.DOWNLOADING)

        result = runner.invoke(main, ["recover"])
        assert result.exit_code == 0, result.output
        assert "job-1" in result.output
        assert "Recovered 1" in result.output

        result = runner.invoke(main, ["progress", "job-1"])
        assert "PAUSED" in result.output

class TestCleanup:
    def test_keeps_recent(self, runner, chunked):
        result = runner.invoke(main, ["cleanup"])
        assert result.exit_code == 0
        assert "Removed 0" in result.output
        assert "1 remaining" in result.output
