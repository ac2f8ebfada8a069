"""Run counters, throughput/ETA estimation and low-frequency progress rendering."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from pathlib import Path

from tqdm import tqdm


DEFAULT_INTERVAL_S = 1.0

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatsSnapshot:
    stored: int
    empty: int
    skipped: int
    failed: int
    total: int
    elapsed_s: float

    @property
    def active(self) -> int:
        """Items that actually ran a worker (everything but skips)."""
        return self.stored + self.empty + self.failed

    @property
    def done(self) -> int:
        return self.active + self.skipped

    @property
    def remaining(self) -> int:
        return max(self.total - self.done, 0)


class RunStats:
    """Counters shared between the coordinating thread and the progress sampler.

    Only the coordinating thread increments; the lock keeps sampled
    snapshots consistent.
    """

    def __init__(self, total: int = 0, clock: Callable[[], float] = time.monotonic):
        assert total >= 0, f"total must be >= 0; got {total}"
        self._lock = threading.Lock()
        self._clock = clock
        self.total = total
        self.stored = 0
        self.empty = 0
        self.skipped = 0
        self.failed = 0
        self.started_at = clock()

    def increment(self, kind: str, count: int = 1) -> None:
        assert kind in ("stored", "empty", "skipped", "failed"), f"unknown counter '{kind}'"
        with self._lock:
            setattr(self, kind, getattr(self, kind) + count)

    def elapsed(self) -> float:
        return self._clock() - self.started_at

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                stored=self.stored,
                empty=self.empty,
                skipped=self.skipped,
                failed=self.failed,
                total=self.total,
                elapsed_s=self.elapsed(),
            )


def percent_complete(snapshot: StatsSnapshot) -> float:
    if snapshot.total <= 0:
        return 100.0
    return min(100.0, 100.0 * snapshot.done / snapshot.total)


def eta_seconds(snapshot: StatsSnapshot) -> float | None:
    """Estimate seconds left from the rate of non-skipped completions.

    Returns None while no rate is measurable: nothing has elapsed yet, or
    every completion so far was a skip.
    """
    if snapshot.elapsed_s <= 0 or snapshot.active <= 0:
        return None
    rate = snapshot.active / snapshot.elapsed_s
    return snapshot.remaining / rate


def format_duration(seconds: float) -> str:
    seconds = int(round(seconds))
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{secs:02d}s"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"


class ProgressReporter:
    """Observe a run and render its progress from a background sampler.

    :meth:`record` and :meth:`add_skipped` only bump counters; a daemon thread
    wakes every `interval_s` to draw a tqdm bar (or emit a log line when the
    bar is disabled).
    """

    def __init__(
        self,
        total: int,
        *,
        desc: str = "tiles",
        show_bar: bool = True,
        interval_s: float = DEFAULT_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
        logger=None,
    ):
        assert interval_s > 0, f"interval_s must be > 0; got {interval_s}"
        self.stats = RunStats(total=total, clock=clock)
        self.desc = desc
        self.show_bar = show_bar
        self.interval_s = interval_s
        self.log = logger or logging.getLogger(__name__)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._bar: tqdm | None = None

    #===========================================================================
    # hot path------------
    #===========================================================================
    def record(self, outcome) -> None:
        self.stats.increment(outcome.kind)

    def add_skipped(self, count: int) -> None:
        if count:
            self.stats.increment("skipped", count)

    #===========================================================================
    # estimates------------
    #===========================================================================
    def percent(self) -> float:
        return percent_complete(self.stats.snapshot())

    def eta_seconds(self) -> float | None:
        return eta_seconds(self.stats.snapshot())

    def status_line(self) -> str:
        snap = self.stats.snapshot()
        eta = eta_seconds(snap)
        eta_text = format_duration(eta) if eta is not None else "--"
        return (
            f"{self.desc}: {snap.done}/{snap.total} ({percent_complete(snap):.1f}%) "
            f"stored={snap.stored} empty={snap.empty} skipped={snap.skipped} failed={snap.failed} "
            f"eta={eta_text}"
        )

    #===========================================================================
    # sampling thread------------
    #===========================================================================
    def render(self) -> None:
        if self._bar is not None:
            snap = self.stats.snapshot()
            self._bar.n = snap.done
            self._bar.set_postfix(stored=snap.stored, empty=snap.empty, failed=snap.failed, refresh=False)
            self._bar.refresh()
        else:
            self.log.info(self.status_line())

    def _sample(self) -> None:
        while not self._stop_event.wait(self.interval_s):
            self.render()

    def start(self) -> "ProgressReporter":
        if self._thread is not None:
            return self
        if self.show_bar:
            self._bar = tqdm(total=self.stats.total, desc=self.desc, unit="tile", dynamic_ncols=True)
        self._thread = threading.Thread(target=self._sample, name="tilepipe-progress", daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join()
        self._thread = None
        self.render()
        if self._bar is not None:
            self._bar.close()
            self._bar = None

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def summary(
        self,
        *,
        output_fp: str | Path | None = None,
        output_sha256: str | None = None,
        sha256_fp: str | Path | None = None,
    ) -> "RunSummary":
        snap = self.stats.snapshot()
        return RunSummary(
            stored=snap.stored,
            empty=snap.empty,
            skipped=snap.skipped,
            failed=snap.failed,
            total=snap.total,
            elapsed_s=snap.elapsed_s,
            output_fp=Path(output_fp) if output_fp is not None else None,
            output_sha256=output_sha256,
            sha256_fp=Path(sha256_fp) if sha256_fp is not None else None,
        )


@dataclass(frozen=True)
class RunSummary:
    """End-of-run report shown to the user."""

    stored: int
    empty: int
    skipped: int
    failed: int
    total: int
    elapsed_s: float
    output_fp: Path | None = None
    output_sha256: str | None = None
    sha256_fp: Path | None = None

    @property
    def has_output(self) -> bool:
        """True when the output holds data from this or an earlier run."""
        return self.stored > 0 or self.skipped > 0

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["output_fp"] = str(self.output_fp) if self.output_fp is not None else None
        payload["sha256_fp"] = str(self.sha256_fp) if self.sha256_fp is not None else None
        return payload

    def format_lines(self) -> list[str]:
        lines = [
            f"stored:   {self.stored}",
            f"empty:    {self.empty}",
            f"skipped:  {self.skipped}",
            f"failed:   {self.failed}",
            f"elapsed:  {format_duration(self.elapsed_s)}",
        ]
        if self.output_fp is not None:
            lines.append(f"output:   {self.output_fp}")
        if self.output_sha256 is not None:
            digest_of = self.sha256_fp or self.output_fp
            lines.append(f"sha256:   {self.output_sha256}" + (f"  ({digest_of.name})" if digest_of else ""))
        return lines
