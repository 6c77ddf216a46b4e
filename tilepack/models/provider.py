"""Tile provider variants."""

from enum import Enum
from typing import Optional

from ..errors import ConfigurationError


class TileProvider(str, Enum):
    """Supported upstream tile sources, selected by name in configuration."""

    STANDARD = "standard"  # OpenStreetMap
    SATELLITE = "satellite"  # ArcGIS World Imagery
    TERRAIN = "terrain"  # Thunderforest Landscape, needs an API key
    HYBRID = "hybrid"  # ArcGIS World Street Map

    @property
    def label(self) -> str:
        """Human-readable provider name."""
        return {
            TileProvider.STANDARD: "OpenStreetMap",
            TileProvider.SATELLITE: "ArcGIS World Imagery",
            TileProvider.TERRAIN: "Thunderforest Landscape",
            TileProvider.HYBRID: "ArcGIS World Street Map",
        }[self]

    @property
    def requires_api_key(self) -> bool:
        return self is TileProvider.TERRAIN

    @property
    def type_index(self) -> int:
        """Numeric map type written into region metadata for mobile clients."""
        return list(TileProvider).index(self)

    def build_url(self, zoom: int, x: int, y: int, api_key: Optional[str] = None) -> str:
        """Build the request URL for one tile.

        ArcGIS services address tiles as z/y/x, the others as z/x/y.

        Raises:
            ConfigurationError: If the provider needs an API key and none is given
        """
        if self is TileProvider.STANDARD:
            return f"https://tile.openstreetmap.org/{zoom}/{x}/{y}.png"
        if self is TileProvider.SATELLITE:
            return (
                "https://server.arcgisonline.com/ArcGIS/rest/services/"
                f"World_Imagery/MapServer/tile/{zoom}/{y}/{x}"
            )
        if self is TileProvider.HYBRID:
            return (
                "https://server.arcgisonline.com/ArcGIS/rest/services/"
                f"World_Street_Map/MapServer/tile/{zoom}/{y}/{x}"
            )
        if not api_key:
            raise ConfigurationError(
                f"Provider '{self.value}' requires an API key. "
                "Set THUNDERFOREST_API_KEY environment variable."
            )
        return f"https://tile.thunderforest.com/landscape/{zoom}/{x}/{y}.png?apikey={api_key}"

    @classmethod
    def parse(cls, value: "str | TileProvider") -> "TileProvider":
        """Look up a provider by name.

        Raises:
            ConfigurationError: If the name is not a known provider
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            available = ", ".join(p.value for p in cls)
            raise ConfigurationError(
                f"Invalid map type: {value}. Available types: {available}"
            ) from None
