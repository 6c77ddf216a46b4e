"""Region name to download id resolution."""

import logging
import re
import uuid
from pathlib import Path
from typing import Optional

from ..models.region import RegionEntry, RegionRegistry

logger = logging.getLogger(__name__)


def normalize_region_name(name: str) -> str:
    """Case-fold a region name and treat underscores and spaces alike."""
    return re.sub(r"\s+", " ", name.replace("_", " ")).strip().casefold()


def region_short_code(name: str) -> str:
    """Short code derived from a region name: its first word."""
    normalized = normalize_region_name(name)
    return normalized.split(" ", 1)[0] if normalized else ""


class IdentityResolver:
    """Maps region names to stable download ids.

    Unknown regions get a fresh random id on every call. Regions that need
    the same id across runs must be listed in the registry.
    """

    def __init__(self, registry: Optional[RegionRegistry] = None):
        self.registry = registry or RegionRegistry()
        self._by_name: dict[str, RegionEntry] = {}
        self._by_code: dict[str, RegionEntry] = {}
        for entry in self.registry.regions:
            self._by_name.setdefault(normalize_region_name(entry.name), entry)
            if entry.code:
                self._by_code.setdefault(entry.code.casefold(), entry)

    @classmethod
    def from_file(cls, path: Optional[Path]) -> "IdentityResolver":
        """Load the registry from YAML; a missing path gives an empty registry."""
        if path is None or not Path(path).exists():
            if path is not None:
                logger.warning("Region registry %s not found; all ids will be random", path)
            return cls()
        return cls(RegionRegistry.from_yaml(Path(path)))

    def lookup(self, region_name: str) -> Optional[RegionEntry]:
        """Find the registry entry for a name, by full name then by short code."""
        entry = self._by_name.get(normalize_region_name(region_name))
        if entry is None:
            entry = self._by_code.get(region_short_code(region_name))
        return entry

    def resolve(self, region_name: Optional[str]) -> str:
        """Return the stable id for a region, or a new random id."""
        if region_name:
            entry = self.lookup(region_name)
            if entry is not None:
                logger.info("Found region %s (%s) - download id %s", entry.name, entry.code, entry.download_id)
                return entry.download_id
            logger.info("Region %r not in registry, generating random id", region_name)

        download_id = str(uuid.uuid4())
        logger.debug("Generated random download id: %s", download_id)
        return download_id
