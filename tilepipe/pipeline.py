"""Terrain and contour acquisition runs.

Both runs follow the same shape: enumerate work, drop what the sink already
holds, fan the rest out over a worker pool, and let the coordinating thread
feed every outcome to the sink and the progress reporter.
"""

import logging
import time
from collections.abc import Callable, Iterable
from contextlib import closing
from pathlib import Path

from tilepipe.checksums import compute_sha256
from tilepipe.config import ContourJob, TerrainJob
from tilepipe.enumerator import cell_storage_key, filter_pending, iter_dem_cells, iter_zoom_tiles, tile_storage_key
from tilepipe.errors import ZeroOutputError
from tilepipe.existing import ExistingSet
from tilepipe.pool import WorkerPool
from tilepipe.progress import ProgressReporter, RunSummary
from tilepipe.sinks import GeometryMergeSink, MBTilesStore, Sink, TileStoreSink, TippecanoePackager
from tilepipe.sources import TileSource, get_source
from tilepipe.tile_math import total_tile_count
from tilepipe.transform import Transformer, get_transformer
from tilepipe.worker import CachedFetcher, ContourWorker, TileWorker


# Log-line sampling is coarser than bar redraws.
BAR_INTERVAL_S = 1.0
LOG_INTERVAL_S = 15.0

log = logging.getLogger(__name__)


def _build_reporter(total: int, desc: str, show_progress: bool, clock, logger) -> ProgressReporter:
    return ProgressReporter(
        total,
        desc=desc,
        show_bar=show_progress,
        interval_s=BAR_INTERVAL_S if show_progress else LOG_INTERVAL_S,
        clock=clock,
        logger=logger,
    )


def _drain_into(
    pool: WorkerPool,
    items: Iterable,
    process: Callable,
    sink: Sink,
    reporter: ProgressReporter,
) -> None:
    """Feed every outcome to the sink and the reporter; the only writer is this thread."""
    with closing(pool.run(items, process)) as outcomes:
        for outcome in outcomes:
            sink.accept(outcome)
            reporter.record(outcome)


def _log_summary(summary: RunSummary, log) -> None:
    log.info("run complete\n    " + "\n    ".join(summary.format_lines()))


#===============================================================================
# terrain------------
#===============================================================================


def run_terrain(
    job: TerrainJob,
    *,
    source: TileSource | None = None,
    sink: TileStoreSink | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    logger=None,
) -> RunSummary:
    """Download every tile of the job's pyramid into its MBTiles store.

    Tiles already in the store are skipped, so an interrupted run resumes
    where its last committed batch left off.
    """
    log = logger or logging.getLogger(__name__)
    bbox, zoom_range = job.bbox, job.zoom_range
    total = total_tile_count(bbox, zoom_range)
    log.info(
        f"terrain: {total} tile(s) for zoom {zoom_range.min_zoom}-{zoom_range.max_zoom} "
        f"over {bbox.as_bounds_string()} with concurrency={job.concurrency}\n    {job.output_fp}"
    )

    source = source or get_source("terrarium", base_url=job.source_url, timeout_s=job.timeout_s, logger=log)
    fetcher = CachedFetcher(
        source,
        cache_dir=job.cache_dir,
        max_retries=job.max_retries,
        backoff_s=job.backoff_s,
        sleep=sleep,
        logger=log,
    )
    worker = TileWorker(fetcher, logger=log)
    pool = WorkerPool(job.concurrency, logger=log)
    reporter = _build_reporter(total, "terrain", job.show_progress, clock, log)

    sink = sink or TileStoreSink(MBTilesStore(job.output_fp, logger=log), batch_size=job.batch_size, logger=log)
    sink.store.update_metadata(job.metadata())
    try:
        with sink, reporter:
            for zoom in zoom_range:
                existing = ExistingSet.load(sink, zoom, logger=log)
                pending = filter_pending(
                    iter_zoom_tiles(bbox, zoom), existing, key=tile_storage_key, on_skip=reporter.add_skipped
                )
                _drain_into(pool, pending, worker.process, sink, reporter)
                # Commit boundary; the ExistingSet for this zoom is dropped here.
                sink.end_zoom(zoom)
                log.debug(f"zoom {zoom} done ({pending.skipped} skipped)")
    except KeyboardInterrupt:
        pool.cancel()
        log.warning("interrupted; committed batches are kept, rerun to resume")
        raise

    summary = reporter.summary(output_fp=job.output_fp, output_sha256=compute_sha256(job.output_fp))
    _log_summary(summary, log)
    if not summary.has_output:
        raise ZeroOutputError(summary)
    return summary


#===============================================================================
# contours------------
#===============================================================================


def run_contours(
    job: ContourJob,
    *,
    source: TileSource | None = None,
    transformer: Transformer | None = None,
    packager: TippecanoePackager | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    logger=None,
) -> RunSummary:
    """Contour every DEM cell in the bbox, merge the lines and package them.

    Cells with a finished feature file in the work directory are skipped.
    External tools are checked before anything is downloaded.
    """
    log = logger or logging.getLogger(__name__)
    transformer = transformer or get_transformer(job.transformer, interval=job.interval, logger=log)
    packager = packager or TippecanoePackager(logger=log)
    transformer.require()
    packager.require()

    cells = list(iter_dem_cells(job.bbox))
    work_dir = job.resolved_work_dir
    log.info(
        f"contours: {len(cells)} cell(s) at {job.interval}m intervals with {transformer.name} "
        f"and concurrency={job.concurrency}\n    {work_dir}"
    )

    source = source or get_source("skadi", base_url=job.source_url, timeout_s=job.timeout_s, logger=log)
    fetcher = CachedFetcher(
        source,
        cache_dir=job.resolved_cache_dir,
        max_retries=job.max_retries,
        backoff_s=job.backoff_s,
        sleep=sleep,
        logger=log,
    )
    worker = ContourWorker(fetcher, transformer, index_interval=job.index_interval, logger=log)
    pool = WorkerPool(job.concurrency, logger=log)
    reporter = _build_reporter(len(cells), "contours", job.show_progress, clock, log)

    sink = GeometryMergeSink(work_dir, logger=log)
    try:
        with sink, reporter:
            existing = ExistingSet.load(sink, logger=log)
            pending = filter_pending(cells, existing, key=cell_storage_key, on_skip=reporter.add_skipped)
            _drain_into(pool, pending, worker.process, sink, reporter)
    except KeyboardInterrupt:
        pool.cancel()
        log.warning("interrupted; finished cells are kept, rerun to resume")
        raise

    if not reporter.summary().has_output:
        summary = reporter.summary()
        _log_summary(summary, log)
        raise ZeroOutputError(summary)

    merged = sink.finalize(cell.name for cell in cells)
    output_fp = Path(job.output_fp)
    if output_fp.exists() and not merged.changed:
        log.info(f"merged feed unchanged; keeping existing archive\n    {output_fp}")
    else:
        packager.package(merged.path, output_fp, job.zoom_range)

    summary = reporter.summary(output_fp=output_fp, output_sha256=merged.sha256, sha256_fp=merged.path)
    _log_summary(summary, log)
    return summary
