"""Per-tile workers: fetch with retries, optional transform, one outcome per item."""

import logging
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from pathlib import Path

from tilepipe.cache_paths import get_tile_cache_path
from tilepipe.enumerator import DemCell
from tilepipe.errors import FetchError, TileAbsentError, TransformError, TransientFetchError
from tilepipe.sources.base import TileSource
from tilepipe.tile_math import TileCoordinate
from tilepipe.transform.base import DEFAULT_INDEX_INTERVAL, ContourFeature, Transformer, classify_features


DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_S = 2.0

log = logging.getLogger(__name__)


#===============================================================================
# records and outcomes------------
#===============================================================================


@dataclass(frozen=True)
class TileRecord:
    """One persisted tile keyed by (zoom, x, row)."""

    zoom: int
    x: int
    row: int
    data: bytes


@dataclass(frozen=True)
class FeatureBatch:
    """Contour features produced from one DEM cell."""

    name: str
    features: tuple[ContourFeature, ...]


@dataclass(frozen=True)
class Stored:
    key: Hashable
    record: object
    kind = "stored"


@dataclass(frozen=True)
class Empty:
    key: Hashable
    reason: str = ""
    kind = "empty"


@dataclass(frozen=True)
class Failed:
    key: Hashable
    error: BaseException
    kind = "failed"


Outcome = Stored | Empty | Failed


#===============================================================================
# fetching------------
#===============================================================================


def fetch_with_retries(
    source: TileSource,
    key: Hashable,
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_s: float = DEFAULT_BACKOFF_S,
    sleep: Callable[[float], None] = time.sleep,
    logger=None,
) -> bytes:
    """Fetch one key, retrying only transient failures with linear backoff.

    Confirmed absence (:class:`TileAbsentError`) and permanent errors propagate
    on the first attempt.
    """
    log = logger or logging.getLogger(__name__)
    assert max_retries >= 1, f"max_retries must be >= 1; got {max_retries}"
    for attempt in range(1, max_retries + 1):
        try:
            return source.fetch(key)
        except TransientFetchError as err:
            if attempt >= max_retries:
                raise
            delay = backoff_s * attempt
            log.debug(f"attempt {attempt}/{max_retries} for {key} failed ({err}); retrying in {delay:.1f}s")
            sleep(delay)
    raise AssertionError("unreachable")


class CachedFetcher:
    """Fetch source bytes, reusing an advisory on-disk copy when one exists."""

    def __init__(
        self,
        source: TileSource,
        *,
        cache_dir: str | Path | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_s: float = DEFAULT_BACKOFF_S,
        sleep: Callable[[float], None] = time.sleep,
        logger=None,
    ):
        self.source = source
        self.cache_dir = cache_dir
        self.max_retries = max_retries
        self.backoff_s = backoff_s
        self.sleep = sleep
        self.log = logger or logging.getLogger(__name__)

    def _cache_path(self, key: Hashable) -> Path | None:
        if self.cache_dir is None:
            return None
        return get_tile_cache_path(self.source.source_id, key, self.source.extension, cache_dir=self.cache_dir)

    def get(self, key: Hashable) -> bytes:
        cache_fp = self._cache_path(key)
        if cache_fp is not None and cache_fp.exists() and cache_fp.stat().st_size > 0:
            self.log.debug(f"cache hit for {key}\n    {cache_fp}")
            return cache_fp.read_bytes()

        data = fetch_with_retries(
            self.source,
            key,
            max_retries=self.max_retries,
            backoff_s=self.backoff_s,
            sleep=self.sleep,
            logger=self.log,
        )
        if cache_fp is not None and data:
            # Write-then-rename so a crash never leaves a truncated cache entry.
            part_fp = cache_fp.with_suffix(f"{cache_fp.suffix}.part")
            try:
                part_fp.write_bytes(data)
                part_fp.replace(cache_fp)
            except OSError as err:
                self.log.debug(f"could not cache {key}: {err}")
        return data


#===============================================================================
# workers------------
#===============================================================================


class TileWorker:
    """Download one slippy tile into a storable record."""

    def __init__(self, fetcher: CachedFetcher, logger=None):
        self.fetcher = fetcher
        self.log = logger or logging.getLogger(__name__)

    def process(self, coord: TileCoordinate) -> Outcome:
        try:
            data = self.fetcher.get(coord)
        except TileAbsentError as err:
            self.log.debug(f"no data for tile {coord}: {err}")
            return Empty(coord, "absent")
        except (FetchError, OSError) as err:
            self.log.warning(f"failed z={coord.zoom} x={coord.x} y={coord.y}: {err}")
            return Failed(coord, err)

        if not data:
            return Empty(coord, "empty payload")
        return Stored(coord, TileRecord(zoom=coord.zoom, x=coord.x, row=coord.row, data=data))


class ContourWorker:
    """Download one DEM cell and contour it into classified features."""

    def __init__(
        self,
        fetcher: CachedFetcher,
        transformer: Transformer,
        *,
        index_interval: int = DEFAULT_INDEX_INTERVAL,
        logger=None,
    ):
        self.fetcher = fetcher
        self.transformer = transformer
        self.index_interval = index_interval
        self.log = logger or logging.getLogger(__name__)

    def process(self, cell: DemCell) -> Outcome:
        try:
            raster = self.fetcher.get(cell)
        except TileAbsentError:
            # Ocean cells are never published.
            return Empty(cell, "absent")
        except (FetchError, OSError) as err:
            self.log.warning(f"failed cell {cell.name}: {err}")
            return Failed(cell, err)

        try:
            features = self.transformer.extract_features(cell.name, raster)
        except (TransformError, ValueError, OSError) as err:
            self.log.warning(f"contouring {cell.name} failed, skipping: {err}")
            return Empty(cell, "transform failed")

        classified = classify_features(features, self.index_interval)
        if not classified:
            return Empty(cell, "no contours")
        return Stored(cell, FeatureBatch(name=cell.name, features=tuple(classified)))
