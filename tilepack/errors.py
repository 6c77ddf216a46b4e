"""Exception types raised by the tile packaging pipeline."""


class TilePackError(Exception):
    """Base class for all tilepack errors."""


class ConfigurationError(TilePackError, ValueError):
    """Invalid configuration detected before any work is done.

    Raised for unknown providers, providers missing an API key, antimeridian
    crossing bounding boxes and non-positive chunk sizes. Never retried.
    """


class TileFetchFailure(TilePackError):
    """A single tile could not be downloaded.

    Recorded and counted by the fetcher; it never aborts a batch or a job.
    """

    def __init__(self, zoom: int, x: int, y: int, reason: str):
        self.zoom = zoom
        self.x = x
        self.y = y
        self.reason = reason
        super().__init__(f"Tile {zoom}/{x}/{y} failed: {reason}")


class MissingChunk(TilePackError, LookupError):
    """A chunk file or chunk directory is absent or unreadable."""


class ChecksumMismatch(TilePackError):
    """A chunk's bytes no longer match the checksum recorded at split time."""

    def __init__(self, filename: str, expected: str, actual: str):
        self.filename = filename
        self.expected = expected
        self.actual = actual
        super().__init__(f"Checksum mismatch for {filename}: expected {expected}, got {actual}")


class InvalidTransition(TilePackError):
    """A job state change that the state machine does not allow."""

    def __init__(self, job_id: str, current: str, requested: str):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Job '{job_id}' cannot move from {current} to {requested}")


class JobNotFound(TilePackError, LookupError):
    """No job record exists for the requested id."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Download '{job_id}' not found")
