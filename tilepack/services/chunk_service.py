"""Chunk codec: split an archive into checksummed chunks and rebuild it."""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Optional

from ..errors import ChecksumMismatch, ConfigurationError, MissingChunk
from ..models.job import Chunk
from ..utils.format_utils import format_size
from .storage import ChunkStore, chunk_filename, parse_chunk_index

logger = logging.getLogger(__name__)


def checksum(data: bytes) -> str:
    """MD5 hex digest of a chunk. Guards against accidental corruption only."""
    return hashlib.md5(data).hexdigest()


def plan_chunks(total_size: int, chunk_size: int) -> list[tuple[int, int]]:
    """
    Compute (offset, length) strides for an archive.

    Args:
        total_size: Archive size in bytes
        chunk_size: Maximum chunk size in bytes

    Returns:
        One (offset, length) pair per chunk; empty for an empty archive

    Raises:
        ConfigurationError: If chunk_size is not positive
    """
    if chunk_size <= 0:
        raise ConfigurationError(f"Chunk size must be positive, got {chunk_size}")

    strides = []
    offset = 0
    while offset < total_size:
        length = min(chunk_size, total_size - offset)
        strides.append((offset, length))
        offset += length
    return strides


@dataclass
class IntegrityReport:
    """Result of re-hashing a job's chunk files."""

    job_id: str
    valid_count: int = 0
    invalid_count: int = 0
    invalid_files: list[str] = field(default_factory=list)
    mismatches: list[ChecksumMismatch] = field(default_factory=list, repr=False)

    @property
    def total_count(self) -> int:
        return self.valid_count + self.invalid_count

    @property
    def is_valid(self) -> bool:
        return self.invalid_count == 0


@dataclass
class ChunkFileInfo:
    """Current state of one chunk file on disk."""

    index: int
    filename: str
    size: int
    checksum: str


class ChunkCodec:
    """Splits byte sequences into stored chunks and reassembles them."""

    def __init__(self, store: ChunkStore):
        self.store = store

    def split(self, data: bytes, chunk_size: int, job_id: str) -> list[Chunk]:
        """
        Split data into fixed-size chunks and persist each one.

        Args:
            data: Archive bytes
            chunk_size: Maximum chunk size in bytes
            job_id: Job owning the chunks

        Returns:
            Chunk manifest ordered by index; existing chunks for the job are replaced

        Raises:
            ConfigurationError: If chunk_size is not positive
        """
        strides = plan_chunks(len(data), chunk_size)
        # Drop chunks left by an earlier split
        self.store.remove(job_id)
        logger.info(
            "Creating %d chunks of max %s each from %s",
            len(strides), format_size(chunk_size), format_size(len(data)),
        )

        view = memoryview(data)
        chunks = []
        for index, (offset, length) in enumerate(strides):
            piece = bytes(view[offset:offset + length])
            filename = chunk_filename(index)
            self.store.write(job_id, filename, piece)
            chunks.append(Chunk(index=index, filename=filename, size=length, checksum=checksum(piece)))
            logger.debug("Created chunk %d: %s (%s)", index, filename, format_size(length))

        logger.info("Successfully created %d chunks for download ID: %s", len(chunks), job_id)
        return chunks

    def _ordered_files(self, job_id: str) -> list[tuple[int, str]]:
        filenames = self.store.list_filenames(job_id)
        if not filenames:
            raise MissingChunk(f"No chunks found for '{job_id}'")

        ordered = [(parse_chunk_index(name), name) for name in filenames]
        expected = list(range(len(ordered)))
        actual = [index for index, _ in ordered]
        if actual != expected:
            missing = sorted(set(range(max(actual) + 1)) - set(actual))
            raise MissingChunk(f"Chunk set for '{job_id}' is incomplete, missing indices {missing}")
        return ordered

    def reconstruct(self, job_id: str, manifest: Optional[list[Chunk]] = None) -> bytes:
        """
        Concatenate a job's chunks in numeric index order.

        With a manifest, exactly the chunks it lists are read, so an empty
        manifest rebuilds an empty archive. Without one, whatever chunk files
        are on disk are used. Checksums are not checked here; call ``verify``
        first when integrity matters.

        Raises:
            MissingChunk: If a listed chunk is missing, or without a manifest if
                the chunk directory is empty, unreadable or has gaps
        """
        if manifest is not None:
            ordered = sorted(manifest, key=lambda c: c.index)
            if [c.index for c in ordered] != list(range(len(ordered))):
                raise MissingChunk(f"Chunk manifest for '{job_id}' has gaps")
            return b"".join(self.store.read(job_id, c.filename) for c in ordered)

        ordered_files = self._ordered_files(job_id)
        logger.info("Found %d chunk files for %s", len(ordered_files), job_id)
        return b"".join(self.store.read(job_id, name) for _, name in ordered_files)

    def chunk_count(self, job_id: str) -> int:
        return len(self.store.list_filenames(job_id))

    def read_chunk(self, job_id: str, index: int) -> bytes:
        """
        Read one chunk by index.

        Raises:
            MissingChunk: If the chunk does not exist
        """
        if index < 0:
            raise MissingChunk(f"Invalid chunk index {index}")
        return self.store.read(job_id, chunk_filename(index))

    def verify(self, job_id: str, manifest: list[Chunk]) -> IntegrityReport:
        """
        Re-hash each chunk file and compare with the manifest from split time.

        Every mismatch or missing file is counted; nothing is raised, so the
        caller decides whether partial corruption is acceptable.
        """
        report = IntegrityReport(job_id=job_id)

        for chunk in sorted(manifest, key=lambda c: c.index):
            try:
                current = checksum(self.store.read(job_id, chunk.filename))
            except MissingChunk:
                current = ""

            if current == chunk.checksum:
                report.valid_count += 1
            else:
                report.invalid_count += 1
                report.invalid_files.append(chunk.filename)
                report.mismatches.append(ChecksumMismatch(chunk.filename, chunk.checksum, current))
                logger.warning("Invalid chunk: %s", chunk.filename)

        logger.info(
            "Verified %s: %d valid, %d invalid",
            job_id, report.valid_count, report.invalid_count,
        )
        return report

    def describe(self, job_id: str) -> list[ChunkFileInfo]:
        """
        List chunk files as they are now, with freshly computed checksums.

        Raises:
            MissingChunk: If the chunk directory is unavailable
        """
        infos = []
        for name in self.store.list_filenames(job_id):
            data = self.store.read(job_id, name)
            infos.append(ChunkFileInfo(
                index=parse_chunk_index(name),
                filename=name,
                size=len(data),
                checksum=checksum(data),
            ))
        return infos

