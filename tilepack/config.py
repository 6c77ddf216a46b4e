"""Configuration management for the tile packager."""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from .models.provider import TileProvider


class AppConfig(BaseModel):
    """Application-level configuration."""

    # API Keys
    thunderforest_api_key: Optional[str] = Field(
        default=None,
        description="Thunderforest API key for the terrain provider",
    )

    # Directories
    data_dir: Path = Field(
        default=Path.cwd() / "assets" / "maps",
        description="Root directory for tiles, chunks and job metadata",
    )
    regions_file: Optional[Path] = Field(
        default=None,
        description="YAML file with the stable region identifier table",
    )

    # Generation defaults
    chunk_size: int = Field(default=2 * 1024 * 1024, gt=0, description="Chunk size in bytes")
    concurrency: int = Field(default=20, gt=0, description="Tiles fetched per batch")
    tile_timeout: float = Field(default=5.0, gt=0, description="Per-tile request timeout in seconds")
    batch_delay: float = Field(default=0.1, ge=0, description="Pause between batches in seconds")
    default_min_zoom: int = Field(default=13, ge=0, le=22)
    default_max_zoom: int = Field(default=22, ge=0, le=22)
    default_provider: TileProvider = Field(default=TileProvider.SATELLITE)
    user_agent: str = Field(default="tilepack/0.1", description="User-Agent for tile requests")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level for the CLI and server")

    @classmethod
    def load(cls) -> "AppConfig":
        """Load configuration from environment and defaults."""
        regions_file = os.environ.get("TILEPACK_REGIONS_FILE")
        return cls(
            thunderforest_api_key=os.environ.get("THUNDERFOREST_API_KEY"),
            data_dir=Path(os.environ.get("TILEPACK_DATA_DIR", str(cls.model_fields["data_dir"].default))),
            regions_file=Path(regions_file) if regions_file else None,
            chunk_size=int(os.environ.get("TILEPACK_CHUNK_SIZE", cls.model_fields["chunk_size"].default)),
            concurrency=int(os.environ.get("TILEPACK_CONCURRENCY", cls.model_fields["concurrency"].default)),
            tile_timeout=float(os.environ.get("TILEPACK_TILE_TIMEOUT", cls.model_fields["tile_timeout"].default)),
            batch_delay=float(os.environ.get("TILEPACK_BATCH_DELAY", cls.model_fields["batch_delay"].default)),
            log_level=os.environ.get("TILEPACK_LOG_LEVEL", "INFO").upper(),
        )

    @property
    def tiles_dir(self) -> Path:
        return self.data_dir / "tiles"

    @property
    def chunks_dir(self) -> Path:
        return self.data_dir / "chunks"

    @property
    def metadata_dir(self) -> Path:
        return self.data_dir / "metadata"

    def ensure_directories(self) -> None:
        """Create necessary directories."""
        for directory in (self.tiles_dir, self.chunks_dir, self.metadata_dir):
            directory.mkdir(parents=True, exist_ok=True)


# Global config instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get or create global configuration."""
    global _config
    if _config is None:
        _config = AppConfig.load()
    return _config
