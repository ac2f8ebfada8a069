"""Tests for Web Mercator tile math."""

import pytest

from tilepipe.tile_math import (
    MAX_MERCATOR_LAT,
    BoundingBox,
    TileCoordinate,
    ZoomRange,
    clamp_latitude,
    flip_row,
    lonlat_to_tile,
    tile_count,
    tile_range,
    total_tile_count,
)


pytestmark = pytest.mark.unit

SOUTH_NORWAY = BoundingBox(west=4.0, south=57.0, east=6.0, north=59.0)


@pytest.mark.parametrize(
    "zoom, expected",
    [
        pytest.param(0, (0, 0, 0, 0), id="z0_single_tile"),
        pytest.param(8, (130, 132, 75, 78), id="z8"),
        pytest.param(9, (261, 264, 151, 156), id="z9"),
    ],
)
def test_tile_range_known_values(zoom: int, expected: tuple):
    """Check inclusive tile ranges for a small bbox."""
    assert tile_range(SOUTH_NORWAY, zoom) == expected


def test_tile_range_orders_corners():
    """Minimums never exceed maximums at any zoom."""
    for zoom in range(0, 15):
        x_min, x_max, y_min, y_max = tile_range(SOUTH_NORWAY, zoom)
        assert x_min <= x_max, f"x range inverted at z{zoom}"
        assert y_min <= y_max, f"y range inverted at z{zoom}"


@pytest.mark.parametrize(
    "lat",
    [
        pytest.param(89.9, id="near_north_pole"),
        pytest.param(90.0, id="north_pole"),
        pytest.param(-90.0, id="south_pole"),
    ],
)
def test_polar_latitudes_clamp_into_grid(lat: float):
    """Latitudes beyond the Mercator limit stay inside [0, 2^z - 1]."""
    for zoom in (0, 5, 12):
        x, y = lonlat_to_tile(10.0, lat, zoom)
        assert 0 <= y <= (1 << zoom) - 1
        assert 0 <= x <= (1 << zoom) - 1


def test_antimeridian_east_edge_clamps():
    """lon=180 maps onto the last column rather than one past it."""
    x, _ = lonlat_to_tile(180.0, 0.0, 4)
    assert x == 15


def test_clamp_latitude_limits():
    assert clamp_latitude(95.0) == MAX_MERCATOR_LAT
    assert clamp_latitude(-95.0) == -MAX_MERCATOR_LAT
    assert clamp_latitude(45.0) == 45.0


@pytest.mark.parametrize("zoom", [0, 1, 8, 12, 22])
def test_flip_row_is_involutive(zoom: int):
    """Flipping twice returns the original row for every edge value."""
    for y in {0, (1 << zoom) // 2, (1 << zoom) - 1}:
        assert flip_row(zoom, flip_row(zoom, y)) == y


def test_flip_row_examples():
    assert flip_row(0, 0) == 0
    assert flip_row(8, 76) == 179
    assert TileCoordinate(8, 131, 76).row == 179


def test_tile_count_matches_range_product():
    assert tile_count(SOUTH_NORWAY, 8) == 12
    assert tile_count(SOUTH_NORWAY, 9) == 24
    assert total_tile_count(SOUTH_NORWAY, ZoomRange(8, 9)) == 36


def test_tile_count_zero_zoom_is_one():
    world = BoundingBox(west=-180.0, south=-85.0, east=180.0, north=85.0)
    assert tile_count(world, 0) == 1


@pytest.mark.parametrize(
    "kwargs",
    [
        pytest.param(dict(west=6.0, south=57.0, east=4.0, north=59.0), id="west_gt_east"),
        pytest.param(dict(west=4.0, south=59.0, east=6.0, north=57.0), id="south_gt_north"),
        pytest.param(dict(west=-181.0, south=57.0, east=6.0, north=59.0), id="west_out_of_range"),
        pytest.param(dict(west=4.0, south=57.0, east=6.0, north=91.0), id="north_out_of_range"),
    ],
)
def test_bounding_box_rejects_invalid(kwargs: dict):
    with pytest.raises(ValueError):
        BoundingBox(**kwargs)


def test_bounding_box_parse_and_bounds_string():
    bbox = BoundingBox.parse(" 4, 57, 32, 81.5 ")
    assert bbox == BoundingBox(4.0, 57.0, 32.0, 81.5)
    assert bbox.as_bounds_string() == "4.0,57.0,32.0,81.5"


def test_bounding_box_parse_rejects_wrong_arity():
    with pytest.raises(ValueError, match="4 comma-separated"):
        BoundingBox.parse("4,57,32")


@pytest.mark.parametrize(
    "min_zoom, max_zoom",
    [
        pytest.param(5, 4, id="inverted"),
        pytest.param(-1, 4, id="negative"),
        pytest.param(0, 23, id="too_deep"),
    ],
)
def test_zoom_range_rejects_invalid(min_zoom: int, max_zoom: int):
    with pytest.raises(ValueError):
        ZoomRange(min_zoom, max_zoom)


def test_zoom_range_iterates_ascending():
    assert list(ZoomRange(3, 6)) == [3, 4, 5, 6]
    assert len(ZoomRange(3, 6)) == 4


def test_tile_coordinate_validates_range():
    with pytest.raises(AssertionError):
        TileCoordinate(2, 4, 0)
    assert str(TileCoordinate(8, 131, 76)) == "8/131/76"
