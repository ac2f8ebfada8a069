"""Job configuration for terrain and contour runs."""

from dataclasses import dataclass, field
from pathlib import Path

from tilepipe.pool import default_concurrency
from tilepipe.sinks.mbtiles import DEFAULT_BATCH_SIZE
from tilepipe.sources.http import DEFAULT_TIMEOUT_S, SKADI_URL, TERRARIUM_URL
from tilepipe.tile_math import BoundingBox, ZoomRange
from tilepipe.transform.base import DEFAULT_CONTOUR_INTERVAL, DEFAULT_INDEX_INTERVAL
from tilepipe.worker import DEFAULT_BACKOFF_S, DEFAULT_MAX_RETRIES


DATA_DIR = Path("data")

# Norway, mainland plus Svalbard for terrain.
TERRAIN_BBOX = BoundingBox(west=4.0, south=57.0, east=32.0, north=81.5)
CONTOUR_BBOX = BoundingBox(west=4.0, south=57.0, east=32.0, north=72.0)


@dataclass(frozen=True)
class TerrainJob:
    """Download Terrarium elevation tiles into an MBTiles store."""

    output_fp: Path = DATA_DIR / "terrain.mbtiles"
    bbox: BoundingBox = TERRAIN_BBOX
    zoom_range: ZoomRange = ZoomRange(0, 12)
    source_url: str = TERRARIUM_URL
    concurrency: int = field(default_factory=lambda: default_concurrency("network"))
    batch_size: int = DEFAULT_BATCH_SIZE
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_s: float = DEFAULT_BACKOFF_S
    timeout_s: float = DEFAULT_TIMEOUT_S
    cache_dir: Path | None = None
    show_progress: bool = True
    name: str = "terrain"
    description: str = "AWS Terrain Tiles (Mapzen Terrarium) for Norway"
    attribution: str = "Terrain data: AWS Terrain Tiles / Mapzen"

    def __post_init__(self):
        assert self.concurrency >= 1, f"concurrency must be >= 1; got {self.concurrency}"
        assert self.batch_size >= 1, f"batch_size must be >= 1; got {self.batch_size}"
        assert self.max_retries >= 1, f"max_retries must be >= 1; got {self.max_retries}"

    def metadata(self) -> dict[str, str]:
        """Return the MBTiles metadata table contents for this job."""
        return {
            "name": self.name,
            "format": "png",
            "type": "baselayer",
            "description": self.description,
            "attribution": self.attribution,
            "minzoom": str(self.zoom_range.min_zoom),
            "maxzoom": str(self.zoom_range.max_zoom),
            "bounds": self.bbox.as_bounds_string(),
        }


@dataclass(frozen=True)
class ContourJob:
    """Contour SRTM cells and package the merged lines as vector tiles."""

    output_fp: Path = DATA_DIR / "contours.mbtiles"
    bbox: BoundingBox = CONTOUR_BBOX
    zoom_range: ZoomRange = ZoomRange(9, 14)
    source_url: str = SKADI_URL
    interval: int = DEFAULT_CONTOUR_INTERVAL
    index_interval: int = DEFAULT_INDEX_INTERVAL
    transformer: str = "gdal"
    concurrency: int = field(default_factory=lambda: default_concurrency("cpu"))
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_s: float = DEFAULT_BACKOFF_S
    timeout_s: float = 15.0
    work_dir: Path | None = None
    cache_dir: Path | None = None
    show_progress: bool = True

    def __post_init__(self):
        assert self.interval > 0, f"interval must be > 0; got {self.interval}"
        assert self.index_interval > 0, f"index_interval must be > 0; got {self.index_interval}"
        assert self.concurrency >= 1, f"concurrency must be >= 1; got {self.concurrency}"

    @property
    def resolved_work_dir(self) -> Path:
        """Per-cell feeds and the merged feed live here, next to the output by default."""
        if self.work_dir is not None:
            return Path(self.work_dir)
        return Path(self.output_fp).parent / "contours_work"

    @property
    def resolved_cache_dir(self) -> Path:
        """Downloaded HGT cells are kept here between runs."""
        if self.cache_dir is not None:
            return Path(self.cache_dir)
        return self.resolved_work_dir / "srtm"
