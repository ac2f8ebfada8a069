"""Per-cell GeoJSON-seq feeds merged into one contour feed."""

import json
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from tilepipe.checksums import compute_sha256, same_content
from tilepipe.sinks.base import Sink
from tilepipe.worker import FeatureBatch


CELL_SUFFIX = ".geojsonl"
MERGED_NAME = "contours.geojsonl"

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeResult:
    """Merged feed location, digest and whether it differs from the previous run."""

    path: Path
    sha256: str
    cell_count: int
    feature_count: int
    changed: bool


def _atomic_write_text(fp: Path, text: str) -> None:
    part_fp = fp.with_name(f".{fp.name}.part")
    part_fp.write_text(text, encoding="utf-8")
    os.replace(part_fp, fp)


class GeometryMergeSink(Sink):
    """Persist each cell's features to its own file, then merge them.

    The per-cell files in `cell_dir` are the durable resume state: a cell
    whose file exists is complete and is skipped on the next run.
    """

    def __init__(self, work_dir: str | Path, *, merged_fp: str | Path | None = None, logger=None):
        super().__init__(logger=logger)
        self.work_dir = Path(work_dir)
        self.cell_dir = self.work_dir / "geojson"
        self.merged_fp = Path(merged_fp) if merged_fp else self.work_dir / MERGED_NAME
        self.cell_dir.mkdir(parents=True, exist_ok=True)
        self.log.debug(f"contour work directory\n    {self.work_dir}")

    def cell_path(self, name: str) -> Path:
        return self.cell_dir / f"{name}{CELL_SUFFIX}"

    def existing_keys(self, zoom: int | None = None) -> set[str]:
        """Return the names of cells with a finished feature file (zoom is ignored)."""
        return {fp.name[: -len(CELL_SUFFIX)] for fp in self.cell_dir.glob(f"*{CELL_SUFFIX}")}

    def _buffer(self, record: FeatureBatch) -> None:
        # Cells are expensive; make each one durable as soon as it arrives.
        lines = [json.dumps(feature.to_geojson(), separators=(",", ":")) for feature in record.features]
        _atomic_write_text(self.cell_path(record.name), "\n".join(lines) + "\n")
        self.log.debug(f"wrote {len(lines)} feature(s) for {record.name}")

    def flush(self) -> None:
        """Nothing is buffered; each cell is written on arrival."""

    def abort(self) -> None:
        """Cell files are complete or absent, so there is nothing to discard."""

    def finalize(self, names: Iterable[str] | None = None) -> MergeResult:
        """Concatenate cell feeds, in name order, into the merged feed.

        With `names`, only those cells are merged; files left by earlier runs
        over other cells stay in the work directory but are not packaged.
        """
        if names is None:
            cell_fps = sorted(self.cell_dir.glob(f"*{CELL_SUFFIX}"))
        else:
            cell_fps = [self.cell_path(name) for name in sorted(set(names))]
            cell_fps = [fp for fp in cell_fps if fp.exists()]
        part_fp = self.merged_fp.with_name(f".{self.merged_fp.name}.part")
        self.merged_fp.parent.mkdir(parents=True, exist_ok=True)

        cell_count = 0
        feature_count = 0
        with part_fp.open("w", encoding="utf-8") as merged:
            for cell_fp in cell_fps:
                if cell_fp.stat().st_size == 0:
                    continue
                cell_count += 1
                with cell_fp.open("r", encoding="utf-8") as stream:
                    for line in stream:
                        if line.strip():
                            merged.write(line if line.endswith("\n") else line + "\n")
                            feature_count += 1

        changed = not same_content(part_fp, self.merged_fp)
        if changed:
            os.replace(part_fp, self.merged_fp)
        else:
            part_fp.unlink()

        sha256 = compute_sha256(self.merged_fp)
        self.log.info(
            f"merged {feature_count} feature(s) from {cell_count} cell(s) "
            f"({'updated' if changed else 'unchanged'})\n    {self.merged_fp}"
        )
        return MergeResult(
            path=self.merged_fp,
            sha256=sha256,
            cell_count=cell_count,
            feature_count=feature_count,
            changed=changed,
        )
