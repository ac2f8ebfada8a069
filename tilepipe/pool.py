"""Bounded-concurrency worker pool with cooperative cancellation."""

import logging
import os
import threading
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from tilepipe.worker import Failed, Outcome


NETWORK_CONCURRENCY = 30

log = logging.getLogger(__name__)


def default_concurrency(kind: str) -> int:
    """Return the default worker count: wide for downloads, CPU count for transforms."""
    if kind == "network":
        return NETWORK_CONCURRENCY
    if kind == "cpu":
        return os.cpu_count() or 1
    raise KeyError(f"unknown concurrency kind '{kind}'")


class WorkerPool:
    """Run `process(item)` over a work stream on a thread pool.

    At most `max_in_flight` items are submitted at once so the work stream is
    consumed lazily. Outcomes are yielded in completion order; every submitted
    item yields exactly one outcome, and an exception escaping `process`
    becomes a :class:`Failed` outcome. After :meth:`cancel` no new items are
    submitted but everything already in flight is drained and yielded.
    """

    def __init__(self, concurrency: int, *, max_in_flight: int | None = None, logger=None):
        assert concurrency >= 1, f"concurrency must be >= 1; got {concurrency}"
        self.concurrency = int(concurrency)
        self.max_in_flight = int(max_in_flight or self.concurrency * 2)
        assert self.max_in_flight >= self.concurrency, "max_in_flight must be >= concurrency"
        self.log = logger or logging.getLogger(__name__)
        self._cancel_event = threading.Event()
        self.dispatched = 0

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop dispatching; in-flight items still complete."""
        if not self._cancel_event.is_set():
            self.log.info("cancellation requested; draining in-flight work")
        self._cancel_event.set()

    def _outcome(self, future: Future, item) -> Outcome:
        try:
            return future.result()
        except Exception as err:
            self.log.warning(f"worker raised on {item}: {type(err).__name__}: {err}")
            self.log.debug("worker traceback", exc_info=err)
            return Failed(item, err)

    def run(self, items: Iterable, process: Callable[[object], Outcome]) -> Iterator[Outcome]:
        """Yield one outcome per dispatched item, then return once all work has drained."""
        pending_items = iter(items)
        in_flight: dict[Future, object] = {}
        exhausted = False

        executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="tilepipe-worker")
        try:
            while True:
                # Top up the in-flight window.
                while not exhausted and not self.cancelled and len(in_flight) < self.max_in_flight:
                    try:
                        item = next(pending_items)
                    except StopIteration:
                        exhausted = True
                        break
                    in_flight[executor.submit(process, item)] = item
                    self.dispatched += 1

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    item = in_flight.pop(future)
                    yield self._outcome(future, item)
        except BaseException:
            # Interrupt or early close by the consumer: stop dispatch, drop
            # queued tasks, then wait for the running ones below.
            self.cancel()
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        self.log.debug(f"pool drained after {self.dispatched} dispatched item(s)")
