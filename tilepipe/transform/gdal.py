"""GDAL command-line contour transform (gdal_contour + ogr2ogr)."""

import json
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path

from tilepipe.errors import MissingDependencyError, TransformError
from tilepipe.transform.base import DEFAULT_CONTOUR_INTERVAL, ContourFeature, Transformer


GDAL_HINT = "Install GDAL: brew install gdal / apt install gdal-bin"
log = logging.getLogger(__name__)


def _geometry_lines(geometry: dict) -> tuple:
    """Return a tuple of coordinate tuples for a (Multi)LineString geometry."""
    if not geometry:
        return ()
    geom_type = geometry.get("type")
    coordinates = geometry.get("coordinates") or []
    if geom_type == "LineString":
        parts = [coordinates]
    elif geom_type == "MultiLineString":
        parts = coordinates
    else:
        return ()
    return tuple(tuple((float(p[0]), float(p[1])) for p in part) for part in parts if len(part) >= 2)


def read_geojsonseq(fp: Path) -> list[ContourFeature]:
    """Parse a GeoJSONSeq contour file written by ogr2ogr."""
    features = []
    with fp.open("r", encoding="utf-8") as stream:
        for line in stream:
            # GeoJSONSeq may prefix records with an RS character.
            line = line.strip().lstrip("\x1e")
            if not line:
                continue
            try:
                payload = json.loads(line)
                lines = _geometry_lines(payload.get("geometry"))
                if not lines:
                    continue
                height = float(payload["properties"]["height"])
            except (AttributeError, KeyError, TypeError, ValueError) as err:
                raise TransformError(f"unreadable contour record in {fp.name}: {err!r}") from err
            features.append(ContourFeature(elevation=height, lines=lines))
    return features


class GdalContourTransformer(Transformer):
    """Shell out to gdal_contour and ogr2ogr for one HGT cell at a time."""

    name = "gdal"
    tools = ("gdal_contour", "ogr2ogr")

    def __init__(self, interval: float = DEFAULT_CONTOUR_INTERVAL, *, timeout_s: float | None = 600, logger=None):
        assert interval > 0, f"interval must be > 0; got {interval}"
        self.interval = interval
        self.timeout_s = timeout_s
        self.log = logger or logging.getLogger(__name__)

    def require(self) -> None:
        """Fail fast when GDAL command-line tools are not on PATH."""
        for tool in self.tools:
            if shutil.which(tool) is None:
                raise MissingDependencyError(tool, GDAL_HINT)

    def _run(self, cmd: list[str]) -> None:
        self.log.debug(f"running {' '.join(cmd)}")
        try:
            subprocess.run(cmd, check=True, capture_output=True, text=True, timeout=self.timeout_s)
        except subprocess.CalledProcessError as err:
            raise TransformError(f"{cmd[0]} exited with {err.returncode}: {err.stderr.strip()}") from err
        except subprocess.TimeoutExpired as err:
            raise TransformError(f"{cmd[0]} timed out after {self.timeout_s}s") from err

    def extract_features(self, name: str, raster_bytes: bytes) -> list[ContourFeature]:
        """Contour one cell; the HGT driver georeferences it from `name`."""
        with tempfile.TemporaryDirectory(prefix=f"tilepipe-{name}-") as tmp:
            work_dir = Path(tmp)
            hgt_fp = work_dir / f"{name}.hgt"
            hgt_fp.write_bytes(raster_bytes)
            shp_dir = work_dir / f"{name}_shp"
            self._run([
                "gdal_contour",
                "-a", "height",
                "-i", str(self.interval),
                "-f", "ESRI Shapefile",
                str(hgt_fp),
                str(shp_dir),
            ])

            shp_files = sorted(shp_dir.glob("*.shp"))
            if not shp_files:
                return []

            geojsonl_fp = work_dir / f"{name}.geojsonl"
            self._run([
                "ogr2ogr",
                "-f", "GeoJSONSeq",
                "-t_srs", "EPSG:4326",
                "-where", "height > 0",
                str(geojsonl_fp),
                str(shp_files[0]),
            ])
            if not geojsonl_fp.exists():
                return []
            return read_geojsonseq(geojsonl_fp)
