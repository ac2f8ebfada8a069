"""End-to-end runs against stub sources (no network, no external tools)."""

import json
from pathlib import Path

import pytest

from tilepipe.checksums import compute_sha256
from tilepipe.config import ContourJob, TerrainJob
from tilepipe.enumerator import DemCell, iter_dem_cells
from tilepipe.errors import MissingDependencyError, ZeroOutputError
from tilepipe.pipeline import run_contours, run_terrain
from tilepipe.sinks import MBTilesStore, TileStoreSink
from tilepipe.tile_math import BoundingBox, TileCoordinate, ZoomRange, tile_count, tile_range
from tilepipe.transform import ArrayContourTransformer


pytestmark = pytest.mark.e2e

SOUTH_NORWAY = BoundingBox(west=4.0, south=57.0, east=6.0, north=59.0)
ZOOMS = ZoomRange(8, 9)
MISSING = TileCoordinate(8, 131, 76)


def _terrain_job(output_fp: Path, **kwargs) -> TerrainJob:
    params = dict(
        output_fp=output_fp,
        bbox=SOUTH_NORWAY,
        zoom_range=ZOOMS,
        concurrency=4,
        batch_size=5,
        backoff_s=0.0,
        show_progress=False,
    )
    params.update(kwargs)
    return TerrainJob(**params)


def _store_contents(fp: Path) -> dict:
    with MBTilesStore(fp) as store:
        return {key: store.get_tile(*key) for key in store.existing_keys(None)}


#===============================================================================
# terrain------------
#===============================================================================


def test_missing_tile_is_inside_bbox():
    x_min, x_max, y_min, y_max = tile_range(SOUTH_NORWAY, MISSING.zoom)
    assert x_min <= MISSING.x <= x_max
    assert y_min <= MISSING.y <= y_max


def test_terrain_run_with_one_absent_tile(tmp_path: Path, stub_source_factory, fake_sleep, logger):
    output_fp = tmp_path / "data" / "terrain.mbtiles"
    source = stub_source_factory(absent=[MISSING])
    summary = run_terrain(_terrain_job(output_fp), source=source, sleep=fake_sleep, logger=logger)

    expected_rows = tile_count(SOUTH_NORWAY, 8) + tile_count(SOUTH_NORWAY, 9) - 1
    assert expected_rows == 35
    with MBTilesStore(output_fp) as store:
        assert store.count() == expected_rows
        assert store.get_tile(8, MISSING.x, MISSING.row) is None
        assert store.get_tile(8, 130, TileCoordinate(8, 130, 75).row) == b"tile:8/130/75"
        metadata = store.read_metadata()
    assert (summary.stored, summary.empty, summary.failed, summary.skipped) == (35, 1, 0, 0)
    assert metadata["bounds"] == "4.0,57.0,6.0,59.0"
    assert (metadata["minzoom"], metadata["maxzoom"]) == ("8", "9")
    assert summary.output_sha256 == compute_sha256(output_fp)


def test_terrain_run_into_supplied_sink(tmp_path: Path, stub_source_factory, fake_sleep):
    output_fp = tmp_path / "terrain.mbtiles"
    sink = TileStoreSink(MBTilesStore(output_fp), batch_size=50)
    summary = run_terrain(_terrain_job(output_fp), source=stub_source_factory(), sink=sink, sleep=fake_sleep)

    assert summary.stored == 36
    assert sink.inserted_count == 36
    assert sink.pending_count == 0
    with MBTilesStore(output_fp) as store:
        assert store.count() == 36


def test_terrain_rerun_is_noop(tmp_path: Path, stub_source_factory, fake_sleep):
    """A second run fetches only the absent tile and leaves the store byte-identical."""
    output_fp = tmp_path / "terrain.mbtiles"
    run_terrain(_terrain_job(output_fp), source=stub_source_factory(absent=[MISSING]), sleep=fake_sleep)
    first_sha = compute_sha256(output_fp)

    rerun_source = stub_source_factory(absent=[MISSING])
    summary = run_terrain(_terrain_job(output_fp), source=rerun_source, sleep=fake_sleep)
    assert summary.skipped == 35
    assert summary.stored == 0
    assert rerun_source.calls == [MISSING]
    assert compute_sha256(output_fp) == first_sha
    assert summary.output_sha256 == first_sha


def test_terrain_narrower_rerun_keeps_metadata_extent(tmp_path: Path, stub_source_factory, fake_sleep):
    output_fp = tmp_path / "terrain.mbtiles"
    run_terrain(_terrain_job(output_fp, zoom_range=ZoomRange(6, 9)), source=stub_source_factory(), sleep=fake_sleep)

    narrow_bbox = BoundingBox(west=4.0, south=57.0, east=5.0, north=58.0)
    run_terrain(
        _terrain_job(output_fp, bbox=narrow_bbox, zoom_range=ZoomRange(8, 9)),
        source=stub_source_factory(),
        sleep=fake_sleep,
    )
    with MBTilesStore(output_fp) as store:
        metadata = store.read_metadata()
        assert store.count(6) > 0
    assert (metadata["minzoom"], metadata["maxzoom"]) == ("6", "9")
    assert metadata["bounds"] == SOUTH_NORWAY.as_bounds_string()


def test_terrain_concurrency_does_not_change_output(tmp_path: Path, stub_source_factory, fake_sleep):
    serial_fp = tmp_path / "serial.mbtiles"
    parallel_fp = tmp_path / "parallel.mbtiles"
    run_terrain(_terrain_job(serial_fp, concurrency=1), source=stub_source_factory(absent=[MISSING]), sleep=fake_sleep)
    run_terrain(_terrain_job(parallel_fp, concurrency=16), source=stub_source_factory(absent=[MISSING]), sleep=fake_sleep)
    assert _store_contents(serial_fp) == _store_contents(parallel_fp)


def test_terrain_retries_transient_failures(tmp_path: Path, stub_source_factory, fake_sleep, sleeps):
    flaky = TileCoordinate(9, 262, 152)
    source = stub_source_factory(transient={flaky: 2})
    summary = run_terrain(_terrain_job(tmp_path / "t.mbtiles", backoff_s=2.0), source=source, sleep=fake_sleep)
    assert summary.stored == 36
    assert summary.failed == 0
    assert sleeps == [2.0, 4.0]


def test_terrain_failures_are_counted_not_fatal(tmp_path: Path, stub_source_factory, fake_sleep):
    broken = TileCoordinate(9, 261, 151)
    summary = run_terrain(
        _terrain_job(tmp_path / "t.mbtiles"),
        source=stub_source_factory(broken=[broken]),
        sleep=fake_sleep,
    )
    assert (summary.stored, summary.failed) == (35, 1)


def test_terrain_interrupt_keeps_committed_batches(tmp_path: Path, stub_source_factory, fake_sleep):
    """Interrupting mid-zoom keeps whole batches only; a rerun completes the store."""
    output_fp = tmp_path / "t.mbtiles"
    # Call 20 is the 8th tile of zoom 9 (zoom 8 has 12 tiles).
    source = stub_source_factory(interrupt_on_call=20)
    with pytest.raises(KeyboardInterrupt):
        run_terrain(_terrain_job(output_fp, concurrency=1), source=source, sleep=fake_sleep)
    with MBTilesStore(output_fp) as store:
        assert store.count(8) == 12
        assert store.count(9) == 5

    summary = run_terrain(_terrain_job(output_fp), source=stub_source_factory(), sleep=fake_sleep)
    assert summary.skipped == 17
    assert summary.stored == 19
    with MBTilesStore(output_fp) as store:
        assert store.count() == 36


def test_terrain_all_absent_is_zero_output(tmp_path: Path, stub_source_factory, fake_sleep):
    bbox = BoundingBox(west=4.0, south=57.0, east=4.5, north=57.5)
    job = _terrain_job(tmp_path / "t.mbtiles", bbox=bbox, zoom_range=ZoomRange(0, 0))
    with pytest.raises(ZeroOutputError) as excinfo:
        run_terrain(job, source=stub_source_factory(absent=[TileCoordinate(0, 0, 0)]), sleep=fake_sleep)
    assert excinfo.value.summary.empty == 1
    assert excinfo.value.summary.stored == 0


#===============================================================================
# contours------------
#===============================================================================


CONTOUR_BBOX = BoundingBox(west=10.0, south=60.0, east=12.0, north=61.0)
OCEAN = DemCell(60, 11)


def _contour_job(tmp_path: Path, **kwargs) -> ContourJob:
    params = dict(
        output_fp=tmp_path / "data" / "contours.mbtiles",
        bbox=CONTOUR_BBOX,
        zoom_range=ZoomRange(9, 14),
        concurrency=2,
        backoff_s=0.0,
        show_progress=False,
    )
    params.update(kwargs)
    return ContourJob(**params)


def test_contour_run_merges_and_packages(tmp_path: Path, stub_source_factory, fake_sleep, fake_packager, hgt_factory, logger):
    job = _contour_job(tmp_path)
    assert [cell.name for cell in iter_dem_cells(job.bbox)] == ["N60E010", "N60E011"]
    source = stub_source_factory(absent=[OCEAN], payload=lambda key: hgt_factory(side=21, peak=120.0))
    summary = run_contours(
        job,
        source=source,
        transformer=ArrayContourTransformer(interval=10),
        packager=fake_packager,
        sleep=fake_sleep,
        logger=logger,
    )
    assert (summary.stored, summary.empty, summary.failed) == (1, 1, 0)
    assert len(fake_packager.calls) == 1
    feed_fp, output_fp, zoom_range = fake_packager.calls[0]
    assert output_fp == job.output_fp
    assert zoom_range == ZoomRange(9, 14)

    records = [json.loads(line) for line in feed_fp.read_text(encoding="utf-8").splitlines()]
    assert records
    assert all(r["properties"]["height"] > 0 for r in records)
    classes = {r["properties"]["height"]: r["properties"]["nth_line"] for r in records}
    assert classes[100] == 10
    assert classes[50] == 5
    assert classes[10] == 1
    assert summary.output_sha256 == compute_sha256(feed_fp)
    assert (job.resolved_work_dir / "geojson" / "N60E010.geojsonl").exists()


def test_contour_rerun_skips_done_cells_and_packaging(tmp_path: Path, stub_source_factory, fake_sleep, fake_packager, hgt_factory):
    job = _contour_job(tmp_path)
    payload = lambda key: hgt_factory(side=21, peak=120.0)
    kwargs = dict(transformer=ArrayContourTransformer(interval=10), packager=fake_packager, sleep=fake_sleep)
    first = run_contours(job, source=stub_source_factory(absent=[OCEAN], payload=payload), **kwargs)

    rerun_source = stub_source_factory(absent=[OCEAN], payload=payload)
    second = run_contours(job, source=rerun_source, **kwargs)
    assert second.skipped == 1
    assert second.stored == 0
    assert rerun_source.calls == [OCEAN]
    assert second.output_sha256 == first.output_sha256
    assert len(fake_packager.calls) == 1


def test_contour_missing_dependency_fails_before_download(tmp_path: Path, stub_source_factory, fake_sleep, packager_factory):
    source = stub_source_factory()
    with pytest.raises(MissingDependencyError):
        run_contours(
            _contour_job(tmp_path),
            source=source,
            transformer=ArrayContourTransformer(),
            packager=packager_factory(missing=True),
            sleep=fake_sleep,
        )
    assert source.calls == []


def test_contour_all_ocean_is_zero_output(tmp_path: Path, stub_source_factory, fake_sleep, fake_packager):
    source = stub_source_factory(absent=list(iter_dem_cells(CONTOUR_BBOX)))
    with pytest.raises(ZeroOutputError):
        run_contours(
            _contour_job(tmp_path),
            source=source,
            transformer=ArrayContourTransformer(),
            packager=fake_packager,
            sleep=fake_sleep,
        )
    assert fake_packager.calls == []


def test_contour_smaller_bbox_rerun_packages_only_its_cells(tmp_path: Path, stub_source_factory, fake_sleep, fake_packager, hgt_factory):
    payload = lambda key: hgt_factory(side=21, peak=120.0)
    kwargs = dict(transformer=ArrayContourTransformer(interval=10), packager=fake_packager, sleep=fake_sleep)
    run_contours(_contour_job(tmp_path), source=stub_source_factory(payload=payload), **kwargs)

    west_half = BoundingBox(west=10.0, south=60.0, east=11.0, north=61.0)
    summary = run_contours(_contour_job(tmp_path, bbox=west_half), source=stub_source_factory(payload=payload), **kwargs)
    assert (summary.skipped, summary.stored) == (1, 0)
    assert len(fake_packager.calls) == 2

    feed_fp = fake_packager.calls[-1][0]
    records = [json.loads(line) for line in feed_fp.read_text(encoding="utf-8").splitlines()]
    assert records
    longitudes = [
        point[0]
        for r in records
        for line in (r["geometry"]["coordinates"] if r["geometry"]["type"] == "MultiLineString" else [r["geometry"]["coordinates"]])
        for point in line
    ]
    assert max(longitudes) <= 11.0
    # The other cell's feed is kept for later runs over the wider area.
    assert (tmp_path / "data" / "contours_work" / "geojson" / "N60E011.geojsonl").exists()
