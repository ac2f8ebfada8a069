"""Output sinks: MBTiles tile store and merged contour feeds."""

from tilepipe.sinks.base import Sink
from tilepipe.sinks.geojsonseq import GeometryMergeSink, MergeResult
from tilepipe.sinks.mbtiles import MBTilesStore, TileStoreSink
from tilepipe.sinks.packager import TippecanoePackager

__all__ = [
    "GeometryMergeSink",
    "MBTilesStore",
    "MergeResult",
    "Sink",
    "TileStoreSink",
    "TippecanoePackager",
]
