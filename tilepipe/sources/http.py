"""HTTP tile source backends (Terrarium slippy tiles and Skadi SRTM cells)."""

import gzip
import http.client
import logging
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from tilepipe.enumerator import DemCell
from tilepipe.errors import FetchError, TileAbsentError, TransientFetchError
from tilepipe.sources.base import TileSource
from tilepipe.tile_math import TileCoordinate


TERRARIUM_URL = "https://s3.amazonaws.com/elevation-tiles-prod/terrarium"
SKADI_URL = "https://elevation-tiles-prod.s3.amazonaws.com/skadi"
DEFAULT_TIMEOUT_S = 30.0
USER_AGENT = "tilepipe"

# Statuses worth another attempt; everything else in 4xx is permanent.
RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})

log = logging.getLogger(__name__)


def _read_url(url: str, *, timeout_s: float, absent_statuses: frozenset[int]) -> bytes:
    """GET one URL, mapping failures onto the fetch error taxonomy."""
    request = Request(url, headers={"User-Agent": USER_AGENT})
    try:
        with urlopen(request, timeout=timeout_s) as response:  # nosec B310
            return response.read()
    except HTTPError as err:
        if err.code in absent_statuses:
            raise TileAbsentError(url, "no data", status_code=err.code) from err
        if err.code in RETRYABLE_STATUSES or err.code >= 500:
            raise TransientFetchError(url, str(err.reason), status_code=err.code) from err
        raise FetchError(url, str(err.reason), status_code=err.code) from err
    except URLError as err:
        raise TransientFetchError(url, f"URL error: {err.reason}") from err
    except (TimeoutError, ConnectionError, http.client.HTTPException) as err:
        raise TransientFetchError(url, f"{type(err).__name__}: {err}") from err


class HttpTileSource(TileSource):
    """Slippy-map tiles from a `{base}/{z}/{x}/{y}.{ext}` endpoint."""

    source_id = "terrarium"

    def __init__(
        self,
        base_url: str = TERRARIUM_URL,
        *,
        extension: str = "png",
        timeout_s: float = DEFAULT_TIMEOUT_S,
        absent_statuses: tuple[int, ...] = (404,),
        source_id: str | None = None,
    ):
        assert base_url, "base_url cannot be empty"
        assert timeout_s > 0, f"timeout_s must be > 0; got {timeout_s}"
        self.base_url = base_url.rstrip("/")
        self.extension = extension.lstrip(".")
        self.timeout_s = float(timeout_s)
        self.absent_statuses = frozenset(absent_statuses)
        if source_id is not None:
            self.source_id = source_id

    def url_for(self, key: TileCoordinate) -> str:
        return f"{self.base_url}/{key.zoom}/{key.x}/{key.y}.{self.extension}"

    def fetch(self, key: TileCoordinate) -> bytes:
        """Download one tile's bytes."""
        return _read_url(self.url_for(key), timeout_s=self.timeout_s, absent_statuses=self.absent_statuses)


class SkadiSource(TileSource):
    """SRTM HGT cells from a `{base}/{NSxx}/{NSxxEWyyy}.hgt.gz` endpoint."""

    source_id = "skadi"
    extension = "hgt"

    def __init__(
        self,
        base_url: str = SKADI_URL,
        *,
        timeout_s: float = 15.0,
        absent_statuses: tuple[int, ...] = (403, 404),
    ):
        assert base_url, "base_url cannot be empty"
        self.base_url = base_url.rstrip("/")
        self.timeout_s = float(timeout_s)
        # S3 answers 403 for keys that were never uploaded (ocean cells).
        self.absent_statuses = frozenset(absent_statuses)

    def url_for(self, key: DemCell) -> str:
        return f"{self.base_url}/{key.lat_token}/{key.name}.hgt.gz"

    def fetch(self, key: DemCell) -> bytes:
        """Download and decompress one HGT cell."""
        url = self.url_for(key)
        payload = _read_url(url, timeout_s=self.timeout_s, absent_statuses=self.absent_statuses)
        try:
            return gzip.decompress(payload)
        except (OSError, EOFError) as err:
            # Truncated body; worth another attempt.
            raise TransientFetchError(url, f"corrupt gzip payload: {err}") from err
