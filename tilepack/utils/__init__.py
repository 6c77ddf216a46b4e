"""Utility functions for offline map packs."""

from .format_utils import format_size
from .tile_math import (
    iter_tiles,
    lat_to_tile_y,
    lon_to_tile_x,
    tile_count,
    tile_range,
)

__all__ = [
    "format_size",
    "iter_tiles",
    "lat_to_tile_y",
    "lon_to_tile_x",
    "tile_count",
    "tile_range",
]
