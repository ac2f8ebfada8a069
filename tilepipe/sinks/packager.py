"""Vector tile packaging of the merged contour feed with tippecanoe."""

import logging
import shutil
import subprocess
from pathlib import Path

from tilepipe.errors import MissingDependencyError, TransformError
from tilepipe.tile_math import ZoomRange


TIPPECANOE_HINT = "Install tippecanoe: brew install tippecanoe / see https://github.com/felt/tippecanoe"
CONTOUR_ATTRIBUTION = "Contours derived from SRTM data"

log = logging.getLogger(__name__)


class TippecanoePackager:
    """Build an MBTiles vector tile archive from a GeoJSON-seq feed."""

    tool = "tippecanoe"

    def __init__(
        self,
        *,
        layer: str = "contour",
        name: str = "contours",
        attribution: str = CONTOUR_ATTRIBUTION,
        simplification: int = 2,
        logger=None,
    ):
        self.layer = layer
        self.name = name
        self.attribution = attribution
        self.simplification = simplification
        self.log = logger or logging.getLogger(__name__)

    def require(self) -> None:
        if shutil.which(self.tool) is None:
            raise MissingDependencyError(self.tool, TIPPECANOE_HINT)

    def build_command(self, feed_fp: Path, output_fp: Path, zoom_range: ZoomRange) -> list[str]:
        return [
            self.tool,
            "-o", str(output_fp),
            f"--named-layer={self.layer}:{feed_fp}",
            f"--minimum-zoom={zoom_range.min_zoom}",
            f"--maximum-zoom={zoom_range.max_zoom}",
            f"--simplification={self.simplification}",
            "--detect-shared-borders",
            "--no-tile-size-limit",
            f"--attribution={self.attribution}",
            f"--name={self.name}",
            "--force",
        ]

    def package(self, feed_fp: str | Path, output_fp: str | Path, zoom_range: ZoomRange) -> Path:
        """Run tippecanoe; return the archive path."""
        feed_fp = Path(feed_fp)
        output_fp = Path(output_fp)
        assert feed_fp.exists(), f"merged feed does not exist: {feed_fp}"
        output_fp.parent.mkdir(parents=True, exist_ok=True)

        cmd = self.build_command(feed_fp, output_fp, zoom_range)
        self.log.info(f"packaging zoom {zoom_range.min_zoom}-{zoom_range.max_zoom} with {self.tool}\n    {output_fp}")
        try:
            subprocess.run(cmd, check=True, capture_output=True, text=True)
        except subprocess.CalledProcessError as err:
            raise TransformError(f"{self.tool} exited with {err.returncode}: {err.stderr.strip()}") from err
        assert output_fp.exists(), f"{self.tool} did not produce\n    {output_fp}"
        return output_fp
