"""MBTiles tile store and the batching sink that commits into it."""

import logging
import sqlite3
from collections.abc import Iterable, Mapping
from pathlib import Path

from tilepipe.sinks.base import Sink
from tilepipe.tile_math import BoundingBox
from tilepipe.worker import TileRecord


DEFAULT_BATCH_SIZE = 100

# Default rollback journal: a rerun that writes nothing leaves the file untouched.
MBTILES_SCHEMA = """
CREATE TABLE IF NOT EXISTS metadata (
    name  TEXT PRIMARY KEY,
    value TEXT
);
CREATE TABLE IF NOT EXISTS tiles (
    zoom_level  INTEGER,
    tile_column INTEGER,
    tile_row    INTEGER,
    tile_data   BLOB,
    PRIMARY KEY (zoom_level, tile_column, tile_row)
);
"""

log = logging.getLogger(__name__)


def widen_metadata(current: Mapping[str, str], incoming: Mapping[str, object]) -> dict[str, str]:
    """Merge `incoming` over `current`, keeping the zoom range and bounds wide enough for both.

    A store resumed with a narrower job still holds the tiles of earlier
    runs, so `minzoom`/`maxzoom`/`bounds` never shrink.
    """
    merged = {str(name): str(value) for name, value in incoming.items()}
    if "minzoom" in current and "minzoom" in merged:
        merged["minzoom"] = str(min(int(current["minzoom"]), int(merged["minzoom"])))
    if "maxzoom" in current and "maxzoom" in merged:
        merged["maxzoom"] = str(max(int(current["maxzoom"]), int(merged["maxzoom"])))
    if "bounds" in current and "bounds" in merged:
        old, new = BoundingBox.parse(current["bounds"]), BoundingBox.parse(merged["bounds"])
        merged["bounds"] = BoundingBox(
            west=min(old.west, new.west),
            south=min(old.south, new.south),
            east=max(old.east, new.east),
            north=max(old.north, new.north),
        ).as_bounds_string()
    return merged


class MBTilesStore:
    """Thin wrapper over one MBTiles sqlite file.

    Use from a single thread; the pipeline's coordinating thread is the only
    writer.
    """

    def __init__(self, path: str | Path, logger=None):
        self.path = Path(path)
        self.log = logger or logging.getLogger(__name__)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; transactions are opened explicitly below.
        self._conn = sqlite3.connect(str(self.path), isolation_level=None)
        self._conn.executescript(MBTILES_SCHEMA)
        self.log.debug(f"opened MBTiles store\n    {self.path}")

    #===========================================================================
    # metadata------------
    #===========================================================================
    def read_metadata(self) -> dict[str, str]:
        rows = self._conn.execute("SELECT name, value FROM metadata").fetchall()
        return {name: value for name, value in rows}

    def write_metadata(self, metadata: Mapping[str, object]) -> int:
        """Upsert metadata entries whose value differs from what is stored; return the count written."""
        current = self.read_metadata()
        changes = [(str(name), str(value)) for name, value in metadata.items() if current.get(str(name)) != str(value)]
        if not changes:
            return 0
        with self._transaction():
            self._conn.executemany("INSERT OR REPLACE INTO metadata (name, value) VALUES (?, ?)", changes)
        self.log.debug(f"wrote {len(changes)} metadata entr{'y' if len(changes) == 1 else 'ies'}")
        return len(changes)

    def update_metadata(self, metadata: Mapping[str, object]) -> int:
        """Like :meth:`write_metadata`, but never narrows the stored zoom range or bounds."""
        return self.write_metadata(widen_metadata(self.read_metadata(), metadata))

    #===========================================================================
    # tiles------------
    #===========================================================================
    def existing_keys(self, zoom: int | None = None) -> set[tuple]:
        """Return `(tile_column, tile_row)` keys for one zoom, or `(zoom, column, row)` for all."""
        if zoom is None:
            rows = self._conn.execute("SELECT zoom_level, tile_column, tile_row FROM tiles")
        else:
            rows = self._conn.execute("SELECT tile_column, tile_row FROM tiles WHERE zoom_level = ?", (zoom,))
        return {tuple(row) for row in rows}

    def insert_batch(self, records: Iterable[TileRecord]) -> int:
        """Insert-or-ignore a batch in one transaction; return the number of new rows."""
        rows = [(r.zoom, r.x, r.row, sqlite3.Binary(r.data)) for r in records]
        if not rows:
            return 0
        before = self._conn.total_changes
        with self._transaction():
            self._conn.executemany(
                "INSERT OR IGNORE INTO tiles (zoom_level, tile_column, tile_row, tile_data) VALUES (?, ?, ?, ?)",
                rows,
            )
        inserted = self._conn.total_changes - before
        self.log.debug(f"committed batch of {len(rows)} tile(s), {inserted} new")
        return inserted

    def get_tile(self, zoom: int, x: int, row: int) -> bytes | None:
        result = self._conn.execute(
            "SELECT tile_data FROM tiles WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
            (zoom, x, row),
        ).fetchone()
        return None if result is None else bytes(result[0])

    def count(self, zoom: int | None = None) -> int:
        if zoom is None:
            (total,) = self._conn.execute("SELECT COUNT(*) FROM tiles").fetchone()
        else:
            (total,) = self._conn.execute("SELECT COUNT(*) FROM tiles WHERE zoom_level = ?", (zoom,)).fetchone()
        return int(total)

    #===========================================================================
    # lifecycle------------
    #===========================================================================
    def _transaction(self):
        return _Transaction(self._conn)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self.log.debug(f"closed MBTiles store\n    {self.path}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class _Transaction:
    """BEGIN IMMEDIATE ... COMMIT, rolled back when the block raises."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def __enter__(self):
        self.conn.execute("BEGIN IMMEDIATE")
        return self.conn

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.conn.execute("COMMIT")
        else:
            self.conn.execute("ROLLBACK")
        return False


class TileStoreSink(Sink):
    """Buffer stored tiles and commit them to an MBTiles store in batches."""

    def __init__(self, store: MBTilesStore, *, batch_size: int = DEFAULT_BATCH_SIZE, logger=None):
        super().__init__(logger=logger)
        assert batch_size >= 1, f"batch_size must be >= 1; got {batch_size}"
        self.store = store
        self.batch_size = batch_size
        self.inserted_count = 0
        self._pending: list[TileRecord] = []

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def existing_keys(self, zoom: int | None = None) -> set[tuple]:
        return self.store.existing_keys(zoom)

    def _buffer(self, record: TileRecord) -> None:
        self._pending.append(record)
        if len(self._pending) >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        if not self._pending:
            return
        batch, self._pending = self._pending, []
        self.inserted_count += self.store.insert_batch(batch)

    def abort(self) -> None:
        if self._pending:
            self.log.warning(f"discarding {len(self._pending)} uncommitted tile(s)")
        self._pending = []

    def close(self) -> None:
        self.store.close()
