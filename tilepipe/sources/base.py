"""Common contracts for tile source backends."""

from abc import ABC, abstractmethod
from collections.abc import Hashable


class TileSource(ABC):
    """Abstract source of raw bytes for one unit of work.

    Implementations raise :class:`tilepipe.errors.TileAbsentError` when the
    source confirms there is no data, :class:`tilepipe.errors.TransientFetchError`
    for retryable failures, and :class:`tilepipe.errors.FetchError` otherwise.
    """

    source_id = "base"
    extension = "bin"

    @abstractmethod
    def fetch(self, key: Hashable) -> bytes:
        """Return the source bytes for one work key."""

    @abstractmethod
    def url_for(self, key: Hashable) -> str:
        """Return the location the bytes for `key` are fetched from."""
