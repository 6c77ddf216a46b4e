"""Bounded-concurrency tile downloader."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import httpx

from ..errors import ConfigurationError, TileFetchFailure
from ..models.provider import TileProvider
from ..models.region import TileCoordinate
from .storage import TileStore

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative stop signal checked by the fetcher between batches."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns True if cancelled meanwhile."""
        return self._event.wait(timeout)


@dataclass
class FetchProgress:
    """Progress event emitted after each batch."""

    total_tiles: int
    downloaded_tiles: int
    failed_tiles: int
    skipped_tiles: int
    batch: int
    batch_count: int


@dataclass
class FetchResult:
    """Outcome of one pass over a tile set."""

    total_tiles: int
    downloaded_tiles: int = 0
    failed_tiles: int = 0
    skipped_tiles: int = 0
    cancelled: bool = False

    @property
    def remaining_tiles(self) -> int:
        return self.total_tiles - self.downloaded_tiles - self.failed_tiles


class TileFetcher:
    """Downloads tile sets into a TileStore in fixed-size parallel batches.

    Each batch is fully awaited before the next starts, so progress is
    reported at deterministic points and pause/cancel requests are honoured
    at batch boundaries only. Failed tiles are counted, not retried; run the
    fetch again to pick up whatever is still missing.
    """

    def __init__(
        self,
        tile_store: TileStore,
        client: Optional[httpx.Client] = None,
        concurrency: int = 20,
        timeout: float = 5.0,
        batch_delay: float = 0.1,
        user_agent: str = "tilepack/0.1",
        api_key: Optional[str] = None,
    ):
        """
        Initialize the fetcher.

        Args:
            tile_store: Where tiles are written and looked up
            client: Optional pre-configured HTTP client
            concurrency: Number of tiles fetched in parallel per batch
            timeout: Per-tile request timeout in seconds
            batch_delay: Fixed pause between batches in seconds
            user_agent: User-Agent header sent to tile servers
            api_key: API key for providers that need one
        """
        if concurrency <= 0:
            raise ConfigurationError(f"Concurrency must be positive, got {concurrency}")

        self.tile_store = tile_store
        self.concurrency = concurrency
        self.timeout = timeout
        self.batch_delay = batch_delay
        self.api_key = api_key

        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": user_agent, "Accept": "image/png,image/*;q=0.9"},
        )

    def _fetch_tile(self, provider: TileProvider, key: str, tile: TileCoordinate) -> str:
        """Fetch one tile; returns "skipped", "downloaded" or "failed"."""
        if self.tile_store.exists(key, tile):
            return "skipped"

        url = provider.build_url(tile.zoom, tile.x, tile.y, self.api_key)
        try:
            response = self._client.get(url, timeout=self.timeout)
            if not response.is_success:
                raise TileFetchFailure(tile.zoom, tile.x, tile.y, f"HTTP {response.status_code}")
        except httpx.HTTPError as e:
            logger.warning("%s", TileFetchFailure(tile.zoom, tile.x, tile.y, str(e) or type(e).__name__))
            return "failed"
        except TileFetchFailure as e:
            logger.warning("%s", e)
            return "failed"

        self.tile_store.write(key, tile, response.content)
        return "downloaded"

    def fetch(
        self,
        tiles: Sequence[TileCoordinate],
        provider: TileProvider,
        key: str,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[Callable[[FetchProgress], None]] = None,
    ) -> FetchResult:
        """
        Download every tile of a tile set that is not stored yet.

        Args:
            tiles: Tile set to fetch
            provider: Upstream tile provider
            key: Tile store namespace (the job id)
            token: Checked before each batch; a cancelled token stops the pass
            on_progress: Called with a FetchProgress after each batch, and once
                before the first batch (``batch`` 0) when tiles are already stored

        Returns:
            FetchResult; ``cancelled`` is True if the pass stopped early

        Raises:
            ConfigurationError: If the provider cannot build URLs (checked
                before any request is made)
        """
        provider = TileProvider.parse(provider)
        provider.build_url(0, 0, 0, self.api_key)

        result = FetchResult(total_tiles=len(tiles))

        # Tiles stored by an earlier pass count from the first event on
        pending = [tile for tile in tiles if not self.tile_store.exists(key, tile)]
        result.skipped_tiles = result.downloaded_tiles = len(tiles) - len(pending)
        batches = [pending[i:i + self.concurrency] for i in range(0, len(pending), self.concurrency)]

        if result.skipped_tiles:
            logger.info("Resuming with %d/%d tiles already stored", result.skipped_tiles, result.total_tiles)
            if on_progress is not None:
                on_progress(self._progress_event(result, 0, len(batches)))

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="tile-fetch") as pool:
            for batch_num, batch in enumerate(batches, start=1):
                if token is not None and token.is_cancelled:
                    logger.info("Fetch stopped before batch %d/%d (%s)", batch_num, len(batches), token.reason)
                    result.cancelled = True
                    break

                futures = [pool.submit(self._fetch_tile, provider, key, tile) for tile in batch]
                wait(futures)

                for future in futures:
                    outcome = future.result()
                    if outcome == "failed":
                        result.failed_tiles += 1
                    else:
                        result.downloaded_tiles += 1
                        if outcome == "skipped":
                            result.skipped_tiles += 1

                logger.info(
                    "Progress: %d/%d tiles downloaded, %d failed (batch %d/%d)",
                    result.downloaded_tiles, result.total_tiles, result.failed_tiles,
                    batch_num, len(batches),
                )
                if on_progress is not None:
                    on_progress(self._progress_event(result, batch_num, len(batches)))

                if batch_num < len(batches) and self.batch_delay > 0:
                    if token is not None:
                        token.wait(self.batch_delay)
                    else:
                        time.sleep(self.batch_delay)

        return result

    @staticmethod
    def _progress_event(result: FetchResult, batch: int, batch_count: int) -> FetchProgress:
        return FetchProgress(
            total_tiles=result.total_tiles,
            downloaded_tiles=result.downloaded_tiles,
            failed_tiles=result.failed_tiles,
            skipped_tiles=result.skipped_tiles,
            batch=batch,
            batch_count=batch_count,
        )

    def close(self):
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
