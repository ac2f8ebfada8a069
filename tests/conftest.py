"""Pytest fixtures for tilepipe tests."""

import logging, pathlib, threading

import numpy as np
import pytest

from tilepipe.errors import FetchError, MissingDependencyError, TileAbsentError, TransientFetchError
from tilepipe.sources.base import TileSource


def tile_payload(key) -> bytes:
    """Deterministic stand-in bytes for one tile."""
    return f"tile:{key}".encode("ascii")


class StubTileSource(TileSource):
    """In-memory source that never touches the network.

    `absent` keys raise TileAbsentError, `transient` maps keys to the number of
    leading attempts that fail transiently, `broken` keys fail permanently, and
    `interrupt_on_call` raises KeyboardInterrupt on the n-th fetch.
    """

    source_id = "stub"
    extension = "png"

    def __init__(self, absent=(), transient=None, broken=(), payload=tile_payload, interrupt_on_call=None):
        self.absent = set(absent)
        self.transient = dict(transient or {})
        self.broken = set(broken)
        self.payload = payload
        self.interrupt_on_call = interrupt_on_call
        self.calls = []
        self._lock = threading.Lock()

    def url_for(self, key) -> str:
        return f"stub://{key}"

    def fetch(self, key) -> bytes:
        with self._lock:
            self.calls.append(key)
            call_number = len(self.calls)
            attempts = sum(1 for called in self.calls if called == key)
        if self.interrupt_on_call is not None and call_number == self.interrupt_on_call:
            raise KeyboardInterrupt
        if key in self.absent:
            raise TileAbsentError(self.url_for(key), "no data", status_code=404)
        if key in self.broken:
            raise FetchError(self.url_for(key), "Forbidden", status_code=401)
        if attempts <= self.transient.get(key, 0):
            raise TransientFetchError(self.url_for(key), "Service Unavailable", status_code=503)
        return self.payload(key)


def make_hgt(side: int = 11, peak: float = 120.0, nodata_corner: bool = False) -> bytes:
    """Build a square big-endian int16 HGT grid shaped like a cone."""
    coords = np.linspace(-1.0, 1.0, side)
    xx, yy = np.meshgrid(coords, coords)
    grid = np.clip(peak * (1.0 - np.sqrt(xx**2 + yy**2)), 0.0, None).round().astype(">i2")
    if nodata_corner:
        grid[0, 0] = -32768
    return grid.tobytes()


class FakePackager:
    """Records packaging calls and writes the feed bytes as the archive."""

    tool = "fake-tippecanoe"

    def __init__(self, missing: bool = False):
        self.missing = missing
        self.calls = []

    def require(self) -> None:
        if self.missing:
            raise MissingDependencyError(self.tool)

    def package(self, feed_fp, output_fp, zoom_range):
        output_fp = pathlib.Path(output_fp)
        output_fp.parent.mkdir(parents=True, exist_ok=True)
        output_fp.write_bytes(pathlib.Path(feed_fp).read_bytes())
        self.calls.append((pathlib.Path(feed_fp), output_fp, zoom_range))
        return output_fp


#===============================================================================
# pytest custom config------------
#===============================================================================


def pytest_runtest_teardown(item, nextitem):
    """Custom teardown message."""
    test_name = item.name
    print(f"\n{'='*20} Test completed: {test_name} {'='*20}\n\n\n")


def pytest_report_header(config):
    """Show pytest invocation arguments in the test header."""
    return f"pytest arguments: {' '.join(config.invocation_params.args)}"


# -------------------
# ----- Fixtures -----
# -------------------
@pytest.fixture(scope="session")
def logger():
    """Simple logger fixture for the function under test."""
    log = logging.getLogger("pytest")
    log.setLevel(logging.DEBUG)
    # keep handlers minimal to avoid duplicate logs across runs
    if not log.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter("%(levelname)s:%(name)s:%(message)s")
        handler.setFormatter(formatter)
        log.addHandler(handler)
    return log


@pytest.fixture(scope="function")
def stub_source_factory():
    """Return the stub source class so tests can configure failures per key."""
    return StubTileSource


@pytest.fixture(scope="function")
def sleeps():
    """Collect requested backoff delays instead of sleeping."""
    return []


@pytest.fixture(scope="function")
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture(scope="session")
def hgt_factory():
    return make_hgt


@pytest.fixture(scope="function")
def fake_packager():
    return FakePackager()


@pytest.fixture(scope="function")
def packager_factory():
    return FakePackager


@pytest.fixture(scope="function")
def fake_clock():
    """Manually advanced monotonic clock."""

    class _Clock:
        def __init__(self):
            self.now = 100.0

        def __call__(self) -> float:
            return self.now

        def advance(self, seconds: float) -> None:
            self.now += seconds

    return _Clock()
