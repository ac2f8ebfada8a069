"""Aggregator interface: the single writer between workers and persisted output."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Hashable

from tilepipe.worker import Outcome, Stored


log = logging.getLogger(__name__)


class Sink(ABC):
    """Consume worker outcomes on the coordinating thread and persist stored records.

    Subclasses buffer records and make them durable in :meth:`flush`. A sink
    used as a context manager aborts its buffer when the block raises and
    flushes it otherwise.
    """

    def __init__(self, logger=None):
        self.log = logger or logging.getLogger(__name__)
        self.stored_count = 0

    @abstractmethod
    def existing_keys(self, zoom: int | None = None) -> set[Hashable]:
        """Return the storage keys already durably completed (for one zoom level)."""

    def accept(self, outcome: Outcome) -> bool:
        """Buffer a stored record; other outcomes are ignored. Return True when buffered."""
        if not isinstance(outcome, Stored):
            return False
        self._buffer(outcome.record)
        self.stored_count += 1
        return True

    @abstractmethod
    def _buffer(self, record) -> None:
        """Hold one record until the next flush (may flush itself when full)."""

    @abstractmethod
    def flush(self) -> None:
        """Durably persist everything buffered so far."""

    @abstractmethod
    def abort(self) -> None:
        """Discard buffered records without persisting them."""

    def end_zoom(self, zoom: int | None = None) -> None:
        """Commit boundary at the end of each zoom level."""
        self.flush()

    def close(self) -> None:
        """Release resources held by the sink."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is None:
                self.flush()
            else:
                self.abort()
        finally:
            self.close()
        return False
