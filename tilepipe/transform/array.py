"""In-process contouring of SRTM HGT cells with numpy and contourpy."""

import logging
import math

import contourpy
import numpy as np

from tilepipe.errors import TransformError
from tilepipe.transform.base import DEFAULT_CONTOUR_INTERVAL, ContourFeature, Transformer


HGT_NODATA = -32768
log = logging.getLogger(__name__)


def parse_cell_origin(name: str) -> tuple[int, int]:
    """Return the (lat, lon) south-west corner encoded in a cell name like 'N60E010'."""
    token = name.strip().upper()
    if len(token) != 7 or token[0] not in "NS" or token[3] not in "EW":
        raise TransformError(f"invalid HGT cell name: '{name}'")
    try:
        lat = int(token[1:3])
        lon = int(token[4:7])
    except ValueError as err:
        raise TransformError(f"invalid HGT cell name: '{name}'") from err
    return (lat if token[0] == "N" else -lat, lon if token[3] == "E" else -lon)


def decode_hgt(raster_bytes: bytes) -> np.ndarray:
    """Decode square big-endian int16 HGT samples into a float32 grid (north row first)."""
    sample_count = len(raster_bytes) // 2
    side = math.isqrt(sample_count)
    if side < 2 or side * side * 2 != len(raster_bytes):
        raise TransformError(f"HGT payload of {len(raster_bytes)} bytes is not a square int16 grid")
    grid = np.frombuffer(raster_bytes, dtype=">i2").reshape(side, side).astype(np.float32)
    grid[grid == HGT_NODATA] = np.nan
    return grid


def contour_levels(grid: np.ndarray, interval: float) -> list[float]:
    """Return positive multiples of `interval` spanned by the grid's valid values."""
    assert interval > 0, f"interval must be > 0; got {interval}"
    valid = grid[np.isfinite(grid)]
    if valid.size == 0:
        return []
    vmin = float(valid.min())
    vmax = float(valid.max())
    if vmin == vmax:
        return []
    lo = max(interval, math.ceil(vmin / interval) * interval)
    hi = math.floor(vmax / interval) * interval
    if hi < lo:
        return []
    count = int(round((hi - lo) / interval)) + 1
    return [lo + i * interval for i in range(count)]


class ArrayContourTransformer(Transformer):
    """Contour HGT cells in-process; no external tools required."""

    name = "array"

    def __init__(self, interval: float = DEFAULT_CONTOUR_INTERVAL, logger=None):
        assert interval > 0, f"interval must be > 0; got {interval}"
        self.interval = float(interval)
        self.log = logger or logging.getLogger(__name__)

    def extract_features(self, name: str, raster_bytes: bytes) -> list[ContourFeature]:
        """Decode, georeference and contour one cell."""
        lat, lon = parse_cell_origin(name)
        grid = decode_hgt(raster_bytes)
        levels = contour_levels(grid, self.interval)
        if not levels:
            self.log.debug(f"no contour levels in {name} (flat or below sea level)")
            return []

        # Flip so rows run south to north with ascending y.
        side = grid.shape[0]
        z = np.ma.masked_invalid(grid[::-1])
        xs = lon + np.arange(side, dtype=np.float64) / (side - 1)
        ys = lat + np.arange(side, dtype=np.float64) / (side - 1)
        generator = contourpy.contour_generator(xs, ys, z, line_type="Separate")

        features = []
        for level in levels:
            lines = tuple(
                tuple((round(float(px), 7), round(float(py), 7)) for px, py in line)
                for line in generator.lines(level)
                if len(line) >= 2
            )
            if lines:
                features.append(ContourFeature(elevation=level, lines=lines))
        return features
