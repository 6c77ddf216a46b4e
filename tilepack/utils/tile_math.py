"""Slippy-map tile arithmetic."""

import math
from typing import Iterator

from ..models.region import BoundingBox, TileCoordinate

# Web Mercator is undefined at the poles; latitudes are clamped to this limit.
MAX_MERCATOR_LATITUDE = 85.0511287798066

# Rough average size of a 256px raster tile, used for size estimates.
AVERAGE_TILE_BYTES = 15 * 1024


def _clamp_tile(value: int, zoom: int) -> int:
    return max(0, min(2 ** zoom - 1, value))


def lon_to_tile_x(lon: float, zoom: int) -> int:
    """Convert longitude to tile X coordinate."""
    n = 2 ** zoom
    return _clamp_tile(math.floor((lon + 180) / 360 * n), zoom)


def lat_to_tile_y(lat: float, zoom: int) -> int:
    """Convert latitude to tile Y coordinate (0 at the north edge)."""
    n = 2 ** zoom
    lat = max(-MAX_MERCATOR_LATITUDE, min(MAX_MERCATOR_LATITUDE, lat))
    lat_rad = math.radians(lat)
    return _clamp_tile(math.floor((1 - math.asinh(math.tan(lat_rad)) / math.pi) / 2 * n), zoom)


def tile_to_lon(x: int, zoom: int) -> float:
    """Convert tile X coordinate to the longitude of its west edge."""
    n = 2 ** zoom
    return x / n * 360 - 180


def tile_to_lat(y: int, zoom: int) -> float:
    """Convert tile Y coordinate to the latitude of its north edge."""
    n = 2 ** zoom
    lat_rad = math.atan(math.sinh(math.pi * (1 - 2 * y / n)))
    return math.degrees(lat_rad)


def tile_range(bbox: BoundingBox, zoom: int) -> tuple[int, int, int, int]:
    """
    Get the inclusive tile range covering a bounding box at one zoom level.

    Args:
        bbox: Bounding box
        zoom: Zoom level

    Returns:
        (min_x, max_x, min_y, max_y)
    """
    min_x = lon_to_tile_x(bbox.west, zoom)
    max_x = lon_to_tile_x(bbox.east, zoom)
    min_y = lat_to_tile_y(bbox.north, zoom)  # Note: y is inverted
    max_y = lat_to_tile_y(bbox.south, zoom)
    return min_x, max_x, min_y, max_y


def tile_extent(bbox: BoundingBox, zoom: int) -> tuple[float, float, float, float]:
    """
    Area actually covered by the tile range of a box at one zoom level.

    Tiles snap outwards, so the extent always contains the box.

    Returns:
        (south, west, north, east)
    """
    min_x, max_x, min_y, max_y = tile_range(bbox, zoom)
    return (
        tile_to_lat(max_y + 1, zoom),
        tile_to_lon(min_x, zoom),
        tile_to_lat(min_y, zoom),
        tile_to_lon(max_x + 1, zoom),
    )


def tile_count(bbox: BoundingBox, min_zoom: int, max_zoom: int) -> int:
    """
    Count the tiles covering a bounding box across an inclusive zoom range.

    A reversed zoom range (min_zoom > max_zoom) covers no tiles.

    Raises:
        ConfigurationError: If the box crosses the antimeridian or is empty
    """
    bbox.validate_extent()

    total = 0
    for zoom in range(min_zoom, max_zoom + 1):
        min_x, max_x, min_y, max_y = tile_range(bbox, zoom)
        total += (max_x - min_x + 1) * (max_y - min_y + 1)
    return total


def iter_tiles(bbox: BoundingBox, min_zoom: int, max_zoom: int) -> Iterator[TileCoordinate]:
    """Yield every tile of the tile set, zoom first, then x, then y."""
    bbox.validate_extent()

    for zoom in range(min_zoom, max_zoom + 1):
        min_x, max_x, min_y, max_y = tile_range(bbox, zoom)
        for x in range(min_x, max_x + 1):
            for y in range(min_y, max_y + 1):
                yield TileCoordinate(x=x, y=y, zoom=zoom)


def tile_counts_by_zoom(bbox: BoundingBox, min_zoom: int, max_zoom: int) -> dict[int, int]:
    """Tile count per zoom level, for estimates and reports."""
    bbox.validate_extent()

    counts = {}
    for zoom in range(min_zoom, max_zoom + 1):
        min_x, max_x, min_y, max_y = tile_range(bbox, zoom)
        counts[zoom] = (max_x - min_x + 1) * (max_y - min_y + 1)
    return counts


def estimate_size_bytes(count: int, avg_tile_bytes: int = AVERAGE_TILE_BYTES) -> int:
    """Estimate the on-disk size of ``count`` tiles."""
    return count * avg_tile_bytes
