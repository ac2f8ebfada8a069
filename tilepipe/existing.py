"""Already-completed work lookup, loaded once per zoom level."""

import logging
from collections.abc import Hashable, Iterable


log = logging.getLogger(__name__)


class ExistingSet:
    """Immutable set of storage keys already persisted for one zoom level.

    Built from a single bulk query against the sink and shared read-only
    across worker threads for the lifetime of that zoom's processing.
    """

    __slots__ = ("zoom", "_keys")

    def __init__(self, keys: Iterable[Hashable] = (), zoom: int | None = None):
        self.zoom = zoom
        self._keys = frozenset(keys)

    @classmethod
    def load(cls, sink, zoom: int | None = None, logger=None) -> "ExistingSet":
        """Query the sink once for every key already present at `zoom`."""
        log = logger or logging.getLogger(__name__)
        existing = cls(sink.existing_keys(zoom), zoom=zoom)
        log.debug(f"loaded {len(existing)} existing key(s) for zoom={zoom}")
        return existing

    def contains(self, *key) -> bool:
        """Return True when the key (e.g. ``x, row``) is already persisted."""
        lookup = key[0] if len(key) == 1 else tuple(key)
        return lookup in self._keys

    def __contains__(self, key: Hashable) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self) -> str:
        return f"ExistingSet(zoom={self.zoom}, size={len(self._keys)})"
