"""Work item enumeration over tile pyramids and DEM cell grids."""

import logging
import math
from collections.abc import Callable, Hashable, Iterable, Iterator
from dataclasses import dataclass

from tilepipe.tile_math import BoundingBox, TileCoordinate, ZoomRange, tile_range


log = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class DemCell:
    """One 1x1 degree elevation cell, named by its south-west corner."""

    lat: int
    lon: int

    def __post_init__(self):
        assert -90 <= self.lat < 90, f"cell latitude out of range: {self.lat}"
        assert -180 <= self.lon < 180, f"cell longitude out of range: {self.lon}"

    @property
    def lat_token(self) -> str:
        """Latitude part of the cell name, e.g. 'N60' or 'S01'."""
        return f"N{self.lat:02d}" if self.lat >= 0 else f"S{-self.lat:02d}"

    @property
    def lon_token(self) -> str:
        """Longitude part of the cell name, e.g. 'E010' or 'W005'."""
        return f"E{self.lon:03d}" if self.lon >= 0 else f"W{-self.lon:03d}"

    @property
    def name(self) -> str:
        return f"{self.lat_token}{self.lon_token}"

    def __str__(self) -> str:
        return self.name


def iter_zoom_tiles(bbox: BoundingBox, zoom: int) -> Iterator[TileCoordinate]:
    """Yield every tile covering the bbox at one zoom, x then y ascending."""
    x_min, x_max, y_min, y_max = tile_range(bbox, zoom)
    for x in range(x_min, x_max + 1):
        for y in range(y_min, y_max + 1):
            yield TileCoordinate(zoom, x, y)


def iter_tiles(bbox: BoundingBox, zoom_range: ZoomRange) -> Iterator[TileCoordinate]:
    """Yield every tile covering the bbox across the zoom range, zoom ascending."""
    for zoom in zoom_range:
        yield from iter_zoom_tiles(bbox, zoom)


def iter_dem_cells(bbox: BoundingBox) -> Iterator[DemCell]:
    """Yield the 1-degree cells intersecting the bbox, south to north then west to east."""
    lat_start = math.floor(bbox.south)
    lat_stop = math.ceil(bbox.north)
    lon_start = math.floor(bbox.west)
    lon_stop = math.ceil(bbox.east)
    for lat in range(max(lat_start, -90), min(lat_stop, 90)):
        for lon in range(max(lon_start, -180), min(lon_stop, 180)):
            yield DemCell(lat, lon)


def tile_storage_key(coord: TileCoordinate) -> tuple[int, int]:
    """Return the (x, row) key a tile is persisted under within its zoom."""
    return (coord.x, coord.row)


def cell_storage_key(cell: DemCell) -> str:
    """Return the key a DEM cell's features are persisted under."""
    return cell.name


class PendingItems:
    """Lazy view of a work stream without the items already completed."""

    def __init__(
        self,
        items: Iterable,
        existing,
        key: Callable[[object], Hashable],
        on_skip: Callable[[int], None] | None = None,
    ):
        self._items = items
        self.existing = existing
        self.key = key
        self.on_skip = on_skip
        self.skipped = 0

    def __iter__(self) -> Iterator:
        for item in self._items:
            if self.key(item) in self.existing:
                self.skipped += 1
                if self.on_skip is not None:
                    self.on_skip(1)
                continue
            yield item


def filter_pending(
    items: Iterable,
    existing,
    key: Callable[[object], Hashable] = tile_storage_key,
    on_skip: Callable[[int], None] | None = None,
) -> PendingItems:
    """Skip items whose storage key is in `existing`; `.skipped` counts the drops.

    `on_skip` is called with 1 for every drop as the stream is consumed.
    """
    log.debug(f"filtering work items against {len(existing)} existing key(s)")
    return PendingItems(items, existing, key, on_skip)
