"""Raster-to-feature transform interfaces for tilepipe."""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, replace


DEFAULT_CONTOUR_INTERVAL = 10
DEFAULT_INDEX_INTERVAL = 50


@dataclass(frozen=True)
class ContourFeature:
    """One contour line (or multi-line) at a single elevation."""

    elevation: float
    lines: tuple[tuple[tuple[float, float], ...], ...]
    line_class: int = 1

    def to_geojson(self) -> dict:
        """Return the feature as a GeoJSON mapping with height/nth_line properties."""
        coordinates = [[list(point) for point in line] for line in self.lines]
        if len(coordinates) == 1:
            geometry = {"type": "LineString", "coordinates": coordinates[0]}
        else:
            geometry = {"type": "MultiLineString", "coordinates": coordinates}
        height = int(self.elevation) if float(self.elevation).is_integer() else float(self.elevation)
        return {
            "type": "Feature",
            "properties": {"height": height, "nth_line": self.line_class},
            "geometry": geometry,
        }


def line_class(elevation: float, index_interval: int = DEFAULT_INDEX_INTERVAL) -> int | None:
    """Return the index-line class for an elevation, or None when it is dropped.

    10 marks every 100 m, 5 every `index_interval`, 1 all other lines. Lines at
    or below sea level are not contoured.
    """
    assert index_interval > 0, f"index_interval must be > 0; got {index_interval}"
    if elevation <= 0:
        return None
    height = int(elevation)
    if height % 100 == 0:
        return 10
    if height % index_interval == 0:
        return 5
    return 1


def classify_features(
    features: Iterable[ContourFeature],
    index_interval: int = DEFAULT_INDEX_INTERVAL,
) -> list[ContourFeature]:
    """Tag features with their line class and drop land-less (<= 0 m) ones."""
    classified = []
    for feature in features:
        feature_class = line_class(feature.elevation, index_interval)
        if feature_class is None or not feature.lines:
            continue
        classified.append(replace(feature, line_class=feature_class))
    return classified


class Transformer(ABC):
    """Abstract raster-to-contour transform."""

    name = "base"

    def require(self) -> None:
        """Raise MissingDependencyError when the transform cannot run here."""

    @abstractmethod
    def extract_features(self, name: str, raster_bytes: bytes) -> list[ContourFeature]:
        """Contour one raster tile into unclassified features."""
