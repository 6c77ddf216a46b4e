"""Region, bounding box and tile coordinate models."""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from ..errors import ConfigurationError
from .provider import TileProvider


class LatLng(BaseModel):
    """A single geographic point."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class BoundingBox(BaseModel):
    """Geographic bounding box given by its south-west and north-east corners."""

    southwest: LatLng
    northeast: LatLng

    @classmethod
    def from_edges(cls, south: float, west: float, north: float, east: float) -> "BoundingBox":
        """Build a box from its four edges."""
        return cls(
            southwest=LatLng(latitude=south, longitude=west),
            northeast=LatLng(latitude=north, longitude=east),
        )

    @property
    def south(self) -> float:
        return self.southwest.latitude

    @property
    def west(self) -> float:
        return self.southwest.longitude

    @property
    def north(self) -> float:
        return self.northeast.latitude

    @property
    def east(self) -> float:
        return self.northeast.longitude

    @property
    def center(self) -> tuple[float, float]:
        """Return center point (lat, lon)."""
        return ((self.north + self.south) / 2, (self.east + self.west) / 2)

    def validate_extent(self) -> None:
        """Check the corner ordering.

        Boxes crossing the antimeridian (west > east) are not supported.

        Raises:
            ConfigurationError: If the corners are not strictly ordered
        """
        if self.west > self.east:
            raise ConfigurationError(
                f"Bounding box crosses the antimeridian (west {self.west} > east {self.east}); "
                "split it into two boxes"
            )
        if self.west == self.east:
            raise ConfigurationError("Bounding box has zero width")
        if self.south >= self.north:
            raise ConfigurationError(
                f"Bounding box south latitude {self.south} must be below north latitude {self.north}"
            )


@dataclass(frozen=True)
class TileCoordinate:
    """Slippy-map tile address."""

    x: int
    y: int
    zoom: int

    def __post_init__(self):
        limit = 2 ** self.zoom
        if not (0 <= self.x < limit and 0 <= self.y < limit):
            raise ValueError(f"Tile ({self.x}, {self.y}) out of range for zoom {self.zoom}")

    def __str__(self) -> str:
        return f"{self.zoom}/{self.x}/{self.y}"


def format_region_name(name: str, code: Optional[str] = None) -> str:
    """Folder-safe region name, e.g. ``ABC_North_Estate``."""
    base = re.sub(r"\s+", "_", name.strip())
    return f"{code}_{base}" if code else base


class GenerationRequest(BaseModel):
    """Parameters for one offline map generation job."""

    region_name: str = Field(..., min_length=1, description="Human-readable region name")
    region_code: Optional[str] = Field(default=None, description="Short region code")
    region_ref: Optional[str] = Field(default=None, description="Caller's own id for the region")
    bounds: BoundingBox
    min_zoom: int = Field(default=13, ge=0, le=22)
    max_zoom: int = Field(default=22, ge=0, le=22)
    provider: TileProvider = TileProvider.SATELLITE
    chunk_size: Optional[int] = Field(default=None, gt=0, description="Override chunk size in bytes")

    @property
    def formatted_name(self) -> str:
        return format_region_name(self.region_name, self.region_code)


class RegionEntry(BaseModel):
    """A region with a pre-assigned stable download id."""

    name: str
    code: Optional[str] = None
    download_id: str


class RegionRegistry(BaseModel):
    """Static table of known regions."""

    regions: list[RegionEntry] = Field(default_factory=list)

    @classmethod
    def from_yaml(cls, path: Path) -> "RegionRegistry":
        """Load the registry from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save the registry to a YAML file."""
        data = self.model_dump(mode="json")
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
