"""Registry and dispatch for tile source backends."""

import logging

from tilepipe.sources.base import TileSource
from tilepipe.sources.http import HttpTileSource, SkadiSource


_SOURCE_REGISTRY = {
    "terrarium": HttpTileSource,
    "skadi": SkadiSource,
}


def get_source(source_id: str, *, base_url: str | None = None, logger=None, **kwargs) -> TileSource:
    """Build one registered source backend, optionally pointing it at another base URL."""
    log = logger or logging.getLogger(__name__)
    source_key = str(source_id).strip().lower()
    assert source_key in _SOURCE_REGISTRY, f"unsupported source_id='{source_id}'"
    source_cls = _SOURCE_REGISTRY[source_key]
    if base_url is not None:
        kwargs["base_url"] = base_url
    source = source_cls(**kwargs)
    log.debug(f"built {source_key} source for\n    {source.base_url}")
    return source
