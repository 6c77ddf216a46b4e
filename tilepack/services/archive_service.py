"""Packages downloaded tiles into a single ZIP archive."""

import io
import json
import logging
import zipfile

from ..models.job import Job, utcnow
from ..utils.tile_math import tile_extent
from .storage import TileStore

logger = logging.getLogger(__name__)

METADATA_FILENAME = "region_metadata.json"


class ArchiveAssembler:
    """Builds the archive that gets chunked.

    Layout::

        map_regions/<formatted_name>/<z>/<x>-<y>.png
        region_metadata.json
    """

    def __init__(self, tile_store: TileStore, compression_level: int = 9):
        self.tile_store = tile_store
        self.compression_level = compression_level

    def region_metadata(self, job: Job, tile_count: int, size_bytes: int) -> dict:
        """Metadata describing the region, stored inside the archive."""
        bounds = job.bounds
        coverage = None
        if bounds is not None and job.max_zoom is not None:
            south, west, north, east = tile_extent(bounds, job.max_zoom)
            coverage = {"sw_lat": south, "sw_lng": west, "ne_lat": north, "ne_lng": east}

        return {
            "id": job.id,
            "name": job.region_name,
            "code": job.region_code,
            "regionRef": job.region_ref,
            "mapType": job.provider.type_index if job.provider else None,
            "bounds": {
                "sw_lat": bounds.south,
                "sw_lng": bounds.west,
                "ne_lat": bounds.north,
                "ne_lng": bounds.east,
            } if bounds else None,
            "coverage": coverage,
            "minZoom": job.min_zoom,
            "maxZoom": job.max_zoom,
            "path": f"map_regions/{job.formatted_name or job.id}",
            "dateCreated": utcnow().isoformat(),
            "tileCount": tile_count,
            "sizeInBytes": size_bytes,
        }

    def assemble(self, job: Job) -> bytes:
        """
        Zip a job's stored tiles and region metadata.

        Args:
            job: Job whose tiles are stored under its id

        Returns:
            Archive bytes
        """
        folder = f"map_regions/{job.formatted_name or job.id}"
        buffer = io.BytesIO()
        tile_count = 0
        size_bytes = 0

        with zipfile.ZipFile(
            buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=self.compression_level
        ) as archive:
            for tile, path in self.tile_store.iter_files(job.id):
                archive.write(path, f"{folder}/{tile.zoom}/{tile.x}-{tile.y}.png")
                tile_count += 1
                size_bytes += path.stat().st_size

            metadata = self.region_metadata(job, tile_count, size_bytes)
            archive.writestr(METADATA_FILENAME, json.dumps(metadata, indent=2))

        data = buffer.getvalue()
        logger.info("Packed %d tiles (%d bytes) into a %d byte archive", tile_count, size_bytes, len(data))
        return data
