"""Shared test fixtures."""

import re
import threading

import httpx
import pytest

from tilepack.config import AppConfig
from tilepack.models.region import BoundingBox, GenerationRequest
from tilepack.services.chunk_service import ChunkCodec
from tilepack.services.storage import ChunkStore, InMemoryJobRepository, TileStore

# Minimal PNG signature followed by filler; tile bytes are never decoded.
TILE_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 56

ARCGIS_TILE_RE = re.compile(r"/tile/(\d+)/(\d+)/(\d+)$")
XYZ_TILE_RE = re.compile(r"/(\d+)/(\d+)/(\d+)\.png$")


def parse_tile_url(url: httpx.URL) -> tuple[int, int, int]:
    """Return (zoom, x, y) for a provider tile URL."""
    match = ARCGIS_TILE_RE.search(url.path)
    if match:
        zoom, y, x = (int(g) for g in match.groups())
        return zoom, x, y
    match = XYZ_TILE_RE.search(url.path)
    zoom, x, y = (int(g) for g in match.groups())
    return zoom, x, y


class StubTileServer:
    """Records tile requests and answers them from memory."""

    content = TILE_BYTES

    def __init__(self, failing: set[tuple[int, int, int]] = frozenset(), status_code: int = 404):
        self.failing = set(failing)
        self.status_code = status_code
        self.requests: list[tuple[int, int, int]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        tile = parse_tile_url(request.url)
        self.requests.append(tile)
        if tile in self.failing:
            return httpx.Response(self.status_code)
        return httpx.Response(200, content=self.content, headers={"Content-Type": "image/png"})

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


class GatedTileServer(StubTileServer):
    """Stub server that holds every request until the gate opens."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.started = threading.Event()
        self.gate = threading.Event()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.started.set()
        self.gate.wait(5)
        return super().__call__(request)


@pytest.fixture
def sample_bbox():
    """Bounding box covering 10 x 10 tiles at zoom 14."""
    return BoundingBox.from_edges(south=-2.70, west=111.60, north=-2.50, east=111.80)


@pytest.fixture
def small_bbox():
    """Bounding box covering 2 x 2 tiles at zoom 14."""
    return BoundingBox.from_edges(south=-2.60, west=111.70, north=-2.59, east=111.71)


@pytest.fixture
def small_request(small_bbox):
    """Single-zoom generation request for the small box."""
    return GenerationRequest(
        region_name="North Estate",
        region_code="ABC",
        bounds=small_bbox,
        min_zoom=14,
        max_zoom=14,
    )


@pytest.fixture
def tile_server():
    return StubTileServer()


@pytest.fixture
def make_tile_server():
    """Factory for stub servers that fail some tiles."""
    return StubTileServer


@pytest.fixture
def gated_server():
    server = GatedTileServer()
    yield server
    server.gate.set()


@pytest.fixture
def tile_store(tmp_path):
    return TileStore(tmp_path / "tiles")


@pytest.fixture
def chunk_store(tmp_path):
    return ChunkStore(tmp_path / "chunks")


@pytest.fixture
def codec(chunk_store):
    return ChunkCodec(chunk_store)


@pytest.fixture
def job_repository():
    return InMemoryJobRepository()


@pytest.fixture
def app_config(tmp_path):
    """Config rooted in a temporary directory with no inter-batch delay."""
    return AppConfig(data_dir=tmp_path / "maps", batch_delay=0.0, chunk_size=1024)
