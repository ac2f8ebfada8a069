"""Tile source backends and registry helpers."""

from tilepipe.sources.base import TileSource
from tilepipe.sources.catalog import get_source
from tilepipe.sources.http import HttpTileSource, SkadiSource

__all__ = ["HttpTileSource", "SkadiSource", "TileSource", "get_source"]
