"""Tests for splitting archives into chunks and rebuilding them."""

import os

import pytest

from tilepack.errors import ConfigurationError, MissingChunk
from tilepack.services.chunk_service import checksum, plan_chunks

MIB2 = 2 * 1024 * 1024


class TestPlanChunks:
    """Test stride planning."""

    def test_scenario_sizes(self):
        sizes = [length for _, length in plan_chunks(5_000_000, MIB2)]
        assert sizes == [2097152, 2097152, 805696]

    def test_exact_multiple(self):
        assert plan_chunks(30, 10) == [(0, 10), (10, 10), (20, 10)]

    def test_smaller_than_chunk(self):
        assert plan_chunks(5, 10) == [(0, 5)]

    def test_empty(self):
        assert plan_chunks(0, 10) == []

    @pytest.mark.parametrize("chunk_size", [0, -1])
    def test_rejects_non_positive_chunk_size(self, chunk_size):
        with pytest.raises(ConfigurationError):
            plan_chunks(100, chunk_size)


class TestSplit:
    """Test ChunkCodec.split."""

    def test_scenario_manifest(self, codec, chunk_store):
        data = os.urandom(5_000_000)
        chunks = codec.split(data, MIB2, "job-1")

        assert [c.size for c in chunks] == [2097152, 2097152, 805696]
        assert [c.index for c in chunks] == [0, 1, 2]
        assert [c.filename for c in chunks] == ["chunk_000.bin", "chunk_001.bin", "chunk_002.bin"]
        assert sum(c.size for c in chunks) == len(data)
        assert chunk_store.list_filenames("job-1") == ["chunk_000.bin", "chunk_001.bin", "chunk_002.bin"]

    def test_checksums_match_stored_bytes(self, codec, chunk_store):
        chunks = codec.split(b"abcdefghij", 4, "job-1")
        for chunk in chunks:
            assert checksum(chunk_store.read("job-1", chunk.filename)) == chunk.checksum

    def test_empty_data_creates_no_chunks(self, codec, chunk_store):
        assert codec.split(b"", 10, "job-1") == []
        assert not chunk_store.chunk_dir("job-1").exists()

    def test_rejects_zero_chunk_size(self, codec):
        with pytest.raises(ConfigurationError):
            codec.split(b"data", 0, "job-1")

    def test_resplit_replaces_old_chunks(self, codec, chunk_store):
        codec.split(b"x" * 100, 10, "job-1")
        codec.split(b"y" * 25, 10, "job-1")
        assert chunk_store.list_filenames("job-1") == ["chunk_000.bin", "chunk_001.bin", "chunk_002.bin"]
        assert codec.reconstruct("job-1") == b"y" * 25


class TestReconstruct:
    """Test ChunkCodec.reconstruct."""

    @pytest.mark.parametrize("size,chunk_size", [(0, 10), (1, 1), (100, 7), (4096, 1024), (10_000, 3_333)])
    def test_round_trip(self, codec, size, chunk_size):
        data = os.urandom(size)
        manifest = codec.split(data, chunk_size, "job-1")
        assert codec.reconstruct("job-1", manifest) == data

    def test_round_trip_from_files(self, codec):
        data = os.urandom(100)
        codec.split(data, 7, "job-1")
        assert codec.reconstruct("job-1") == data

    def test_manifest_chunk_missing(self, codec, chunk_store):
        manifest = codec.split(b"0123456789", 3, "job-1")
        chunk_store.path("job-1", "chunk_002.bin").unlink()
        with pytest.raises(MissingChunk):
            codec.reconstruct("job-1", manifest)

    def test_manifest_with_gap(self, codec):
        manifest = codec.split(b"0123456789", 3, "job-1")
        with pytest.raises(MissingChunk):
            codec.reconstruct("job-1", manifest[:1] + manifest[2:])

    def test_missing_directory(self, codec):
        with pytest.raises(MissingChunk):
            codec.reconstruct("nope")

    def test_empty_directory(self, codec, chunk_store):
        chunk_store.chunk_dir("job-1").mkdir(parents=True)
        with pytest.raises(MissingChunk):
            codec.reconstruct("job-1")

    def test_gap_in_indices(self, codec, chunk_store):
        codec.split(b"0123456789", 3, "job-1")
        chunk_store.path("job-1", "chunk_001.bin").unlink()
        with pytest.raises(MissingChunk, match="missing indices \\[1\\]"):
            codec.reconstruct("job-1")

    def test_unpadded_names_sort_numerically(self, codec, chunk_store):
        for index in range(12):
            chunk_store.write("job-1", f"chunk_{index}.bin", bytes([index]))
        assert codec.reconstruct("job-1") == bytes(range(12))

    def test_ignores_unrelated_files(self, codec, chunk_store):
        codec.split(b"abcdef", 2, "job-1")
        chunk_store.write("job-1", "notes.txt", b"ignored")
        assert codec.reconstruct("job-1") == b"abcdef"


class TestReadChunk:
    def test_reads_by_index(self, codec):
        codec.split(b"aabbc", 2, "job-1")
        assert codec.read_chunk("job-1", 1) == b"bb"
        assert codec.read_chunk("job-1", 2) == b"c"

    def test_missing_index(self, codec):
        codec.split(b"aabbc", 2, "job-1")
        with pytest.raises(MissingChunk):
            codec.read_chunk("job-1", 3)

    def test_negative_index(self, codec):
        codec.split(b"aabbc", 2, "job-1")
        with pytest.raises(MissingChunk):
            codec.read_chunk("job-1", -1)


class TestVerify:
    """Test ChunkCodec.verify."""

    def test_untouched_chunks_are_valid(self, codec):
        chunks = codec.split(os.urandom(10_000), 1_000, "job-1")
        report = codec.verify("job-1", chunks)
        assert report.is_valid
        assert report.valid_count == 10
        assert report.invalid_count == 0
        assert report.invalid_files == []

    def test_corrupting_one_byte_flips_one_chunk(self, codec, chunk_store):
        chunks = codec.split(os.urandom(10_000), 1_000, "job-1")
        path = chunk_store.path("job-1", "chunk_004.bin")
        data = bytearray(path.read_bytes())
        data[10] ^= 0xFF
        path.write_bytes(bytes(data))

        report = codec.verify("job-1", chunks)
        assert not report.is_valid
        assert report.valid_count == 9
        assert report.invalid_count == 1
        assert report.invalid_files == ["chunk_004.bin"]
        assert report.mismatches[0].expected == chunks[4].checksum

    def test_missing_file_counts_as_invalid(self, codec, chunk_store):
        chunks = codec.split(b"0123456789", 5, "job-1")
        chunk_store.path("job-1", "chunk_000.bin").unlink()

        report = codec.verify("job-1", chunks)
        assert report.invalid_files == ["chunk_000.bin"]
        assert report.valid_count == 1
        assert report.total_count == 2


class TestDescribe:
    def test_lists_current_files(self, codec):
        codec.split(b"abcdefg", 3, "job-1")
        infos = codec.describe("job-1")
        assert [i.filename for i in infos] == ["chunk_000.bin", "chunk_001.bin", "chunk_002.bin"]
        assert [i.size for i in infos] == [3, 3, 1]
        assert infos[2].checksum == checksum(b"g")
