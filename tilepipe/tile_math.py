"""Web Mercator slippy-map tile math."""

import math
from dataclasses import dataclass


# Latitude limit of the square spherical Mercator world.
MAX_MERCATOR_LAT = 85.0511287798066
MAX_ZOOM = 22


@dataclass(frozen=True)
class BoundingBox:
    """Geographic bounding box in WGS84 degrees."""

    west: float
    south: float
    east: float
    north: float

    def __post_init__(self):
        if not (-180.0 <= self.west <= 180.0 and -180.0 <= self.east <= 180.0):
            raise ValueError(f"longitudes must lie in [-180, 180]; got west={self.west}, east={self.east}")
        if not (-90.0 <= self.south <= 90.0 and -90.0 <= self.north <= 90.0):
            raise ValueError(f"latitudes must lie in [-90, 90]; got south={self.south}, north={self.north}")
        if not self.west < self.east:
            raise ValueError(f"west must be < east; got west={self.west}, east={self.east}")
        if not self.south < self.north:
            raise ValueError(f"south must be < north; got south={self.south}, north={self.north}")

    @classmethod
    def parse(cls, raw: str) -> "BoundingBox":
        """Parse a 'west,south,east,north' string."""
        parts = [part.strip() for part in str(raw).split(",")]
        if len(parts) != 4:
            raise ValueError(f"bbox must have 4 comma-separated values; got '{raw}'")
        west, south, east, north = (float(part) for part in parts)
        return cls(west=west, south=south, east=east, north=north)

    def as_bounds_string(self) -> str:
        """Return the MBTiles 'bounds' metadata representation."""
        return f"{self.west},{self.south},{self.east},{self.north}"


@dataclass(frozen=True)
class ZoomRange:
    """Inclusive range of zoom levels."""

    min_zoom: int
    max_zoom: int

    def __post_init__(self):
        if not 0 <= self.min_zoom <= self.max_zoom <= MAX_ZOOM:
            raise ValueError(
                f"zoom range must satisfy 0 <= min <= max <= {MAX_ZOOM}; got {self.min_zoom}-{self.max_zoom}"
            )

    def __iter__(self):
        return iter(range(self.min_zoom, self.max_zoom + 1))

    def __len__(self) -> int:
        return self.max_zoom - self.min_zoom + 1


@dataclass(frozen=True, order=True)
class TileCoordinate:
    """One slippy-map tile (y=0 at the north edge)."""

    zoom: int
    x: int
    y: int

    def __post_init__(self):
        assert 0 <= self.zoom <= MAX_ZOOM, f"zoom out of range: {self.zoom}"
        max_index = (1 << self.zoom) - 1
        assert 0 <= self.x <= max_index, f"x={self.x} outside [0, {max_index}] at zoom {self.zoom}"
        assert 0 <= self.y <= max_index, f"y={self.y} outside [0, {max_index}] at zoom {self.zoom}"

    @property
    def row(self) -> int:
        """Storage row under the south-up (TMS) convention."""
        return flip_row(self.zoom, self.y)

    def __str__(self) -> str:
        return f"{self.zoom}/{self.x}/{self.y}"


def flip_row(zoom: int, y: int) -> int:
    """Convert between north-up slippy y and south-up TMS row (involutive)."""
    return (1 << zoom) - 1 - y


def clamp_latitude(lat: float) -> float:
    """Clamp a latitude into the Mercator-projectable range."""
    return max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, lat))


def lonlat_to_tile(lon: float, lat: float, zoom: int) -> tuple[int, int]:
    """Return the clamped (x, y) tile index containing a lon/lat point."""
    n = 1 << zoom
    max_index = n - 1
    x = math.floor((lon + 180.0) / 360.0 * n)
    lat_rad = math.radians(clamp_latitude(lat))
    y = math.floor((1.0 - math.asinh(math.tan(lat_rad)) / math.pi) / 2.0 * n)
    return max(0, min(max_index, x)), max(0, min(max_index, y))


def tile_range(bbox: BoundingBox, zoom: int) -> tuple[int, int, int, int]:
    """Return inclusive (x_min, x_max, y_min, y_max) covering a bbox at one zoom."""
    assert 0 <= zoom <= MAX_ZOOM, f"zoom out of range: {zoom}"
    # North latitude maps to the smaller y.
    x_min, y_min = lonlat_to_tile(bbox.west, bbox.north, zoom)
    x_max, y_max = lonlat_to_tile(bbox.east, bbox.south, zoom)
    return x_min, x_max, y_min, y_max


def tile_count(bbox: BoundingBox, zoom: int) -> int:
    """Return the number of tiles covering a bbox at one zoom."""
    x_min, x_max, y_min, y_max = tile_range(bbox, zoom)
    return (x_max - x_min + 1) * (y_max - y_min + 1)


def total_tile_count(bbox: BoundingBox, zoom_range: ZoomRange) -> int:
    """Return the number of tiles covering a bbox across a zoom range."""
    return sum(tile_count(bbox, zoom) for zoom in zoom_range)
