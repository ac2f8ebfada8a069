"""Cache path helpers for downloaded source tiles."""

import logging
from pathlib import Path
from platformdirs import user_cache_dir


APP_NAME = "tilepipe"
APP_AUTHOR = "tilepipe"
log = logging.getLogger(__name__)


def get_cache_dir(cache_dir: str | Path | None = None) -> Path:
    """Return a writable cache directory and ensure it exists."""
    # Prefer an explicit cache directory when one is supplied.
    if cache_dir is not None:
        path = Path(cache_dir).expanduser().resolve()
    else:
        # Use a stable platform cache path.
        path = Path(user_cache_dir(APP_NAME, APP_AUTHOR))
    path.mkdir(parents=True, exist_ok=True)
    assert path.exists(), f"failed to create cache directory: {path}"
    log.debug(f"resolved cache directory to\n    {path}")
    return path


def get_tile_cache_path(
    source_id: str,
    key,
    extension: str,
    cache_dir: str | Path | None = None,
) -> Path:
    """Return the cache path for one source tile, e.g. `<cache>/terrarium/8/130/75.png`."""
    assert source_id, "source_id cannot be empty"
    assert extension, "extension cannot be empty"

    # Tile keys render as 'z/x/y', DEM cells as their 'N60E010' name.
    tile_fp = get_cache_dir(cache_dir) / source_id / f"{key}.{extension.lstrip('.')}"
    tile_fp.parent.mkdir(parents=True, exist_ok=True)
    return tile_fp
