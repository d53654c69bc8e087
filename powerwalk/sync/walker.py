"""Thread-based concurrent walker.

One discoverer thread feeds a bounded queue, ``limit`` worker threads take
entries from it and call the visitor, and a monitor thread turns the first
visitor failure into a cancellation that every other thread observes
between steps. Visitor calls already in progress are never interrupted.
"""

import dataclasses
import functools
import logging
import os
import queue
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Set, Union

from .._common import (
    DeliveryMode,
    VisitorTimeoutError,
    WalkConfig,
    WalkItem,
    WalkStats,
)
from .discovery import scan_tree

logger = logging.getLogger(__name__)

Visitor = Callable[[str, Optional[os.stat_result], Optional[OSError]], Any]
Discover = Callable[[Union[str, Path]], Iterable[WalkItem]]

# Tells the monitor the walk ended without a failure
_STOP = object()


class ConcurrentWalker:
    """Runs one concurrent walk.

    A walker is single-use: all queues, events and threads belong to one
    call of run(), which keeps separate walks from interfering.

    Example:
        >>> walker = ConcurrentWalker(visit, WalkConfig(limit=8))
        >>> walker.run("/data")
        >>> print(walker.stats.visited)
    """

    def __init__(
        self,
        visitor: Visitor,
        config: Optional[WalkConfig] = None,
        discover: Optional[Discover] = None
    ):
        """Initialize the walker.

        Args:
            visitor: Called as visitor(path, metadata, error) for each entry.
                Raising an exception fails the walk.
            config: Walk configuration (defaults to WalkConfig())
            discover: Tree discovery primitive (defaults to scan_tree)

        Raises:
            InvalidLimitError: If config.limit is below one
        """
        self.config = config or WalkConfig()
        self.config.check()
        self.visitor = visitor
        self.discover = discover or scan_tree
        self.stats = WalkStats()
        self.stalled_workers: List[threading.Thread] = []

        self._items: queue.Queue = queue.Queue(maxsize=self.config.limit)
        self._errors: queue.Queue = queue.Queue()
        self._closed = threading.Event()
        self._cancelled = threading.Event()
        self._first_error: Optional[BaseException] = None
        self._started = False

        # Worker threads currently inside the visitor
        self._busy: Set[threading.Thread] = set()
        self._busy_lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        """True once a failure has cancelled the walk."""
        return self._cancelled.is_set()

    def run(self, root: Union[str, Path]) -> None:
        """Walk the tree under root, blocking until the walk is over.

        Args:
            root: Root path

        Raises:
            Exception: The first exception raised by the visitor
        """
        if self._started:
            raise RuntimeError("a ConcurrentWalker can only be run once")
        self._started = True

        logger.debug("Walking %s with %d workers", root, self.config.limit)

        workers = [
            threading.Thread(target=self._work, name=f"powerwalk worker {i}", daemon=True)
            for i in range(self.config.limit)
        ]
        monitor = threading.Thread(target=self._monitor, name="powerwalk monitor", daemon=True)
        discoverer = threading.Thread(
            target=self._discover, args=(root,), name="powerwalk discoverer", daemon=True
        )

        for worker in workers:
            worker.start()
        monitor.start()
        discoverer.start()

        try:
            discoverer.join()
            self._drain(workers)
        except BaseException as e:
            # Interrupted while waiting: cancel the threads before propagating
            self._errors.put(e)
            raise

        self._errors.put(_STOP)
        monitor.join()

        if self._first_error is not None:
            raise self._first_error

    def _discover(self, root: Union[str, Path]) -> None:
        try:
            for item in self.discover(root):
                if self._cancelled.is_set():
                    logger.debug("Discovery stopped at %s", item.path)
                    break
                self.stats.incr('discovered')
                self._deliver(item)
        except Exception as e:
            self._errors.put(e)
        finally:
            self._closed.set()

    def _deliver(self, item: WalkItem) -> None:
        if self.config.delivery is DeliveryMode.DROP:
            try:
                self._items.put_nowait(item)
            except queue.Full:
                self.stats.incr('dropped')
                logger.debug("Dropped %s, no free worker", item.path)
                return
            self.stats.incr('delivered')
            return

        # Wait in slices so cancellation is noticed while the queue is full
        while not self._cancelled.is_set():
            try:
                self._items.put(item, timeout=self.config.poll_interval)
            except queue.Full:
                continue
            self.stats.incr('delivered')
            return

    def _work(self) -> None:
        while not self._cancelled.is_set():
            # Read before get(): once closed, an empty queue stays empty
            closed = self._closed.is_set()
            try:
                item = self._items.get(timeout=self.config.poll_interval)
            except queue.Empty:
                if closed:
                    return
                continue

            if self._cancelled.is_set():
                return
            self._visit(item)

    def _visit(self, item: WalkItem) -> None:
        worker = threading.current_thread()
        with self._busy_lock:
            self._busy.add(worker)

        self.stats.incr('visited')
        try:
            self.visitor(item.path, item.metadata, item.error)
        except Exception as e:
            self.stats.incr('failed')
            self._errors.put(e)
        finally:
            with self._busy_lock:
                self._busy.discard(worker)

    def _is_busy(self, worker: threading.Thread) -> bool:
        with self._busy_lock:
            return worker in self._busy

    def _monitor(self) -> None:
        report = self._errors.get()
        if report is _STOP:
            return
        self._first_error = report
        self._cancelled.set()
        logger.debug("Walk cancelled after %s: %r", type(report).__name__, report)

    def _drain(self, workers: List[threading.Thread]) -> None:
        """Wait for workers to exit.

        Without a failure every worker is waited for, up to drain_timeout.
        Once the walk is cancelled, workers still inside the visitor are
        not waited for: the first error is raised without them.
        """
        timeout = self.config.drain_timeout
        deadline = None if timeout is None else time.monotonic() + timeout

        for worker in workers:
            while worker.is_alive():
                if self._cancelled.is_set() and self._is_busy(worker):
                    break
                wait = self.config.poll_interval
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    wait = min(wait, remaining)
                worker.join(wait)

        self.stalled_workers = [w for w in workers if w.is_alive()]
        if self.stalled_workers:
            logger.warning(
                "%d worker(s) still inside the visitor, leaving them running",
                len(self.stalled_workers)
            )


def walk(
    root: Union[str, Path],
    visitor: Visitor,
    *,
    config: Optional[WalkConfig] = None,
    discover: Optional[Discover] = None
) -> None:
    """Walk the tree under root, calling visitor for every entry concurrently.

    The root itself is visited too. At most DEFAULT_LIMIT (or config.limit)
    visitor calls run at the same time and their order is not deterministic.
    Symbolic links are reported but not followed. Errors met while
    discovering an entry are passed to the visitor, which decides whether
    they matter.

    Args:
        root: Root path
        visitor: Called as visitor(path, metadata, error)
        config: Optional walk configuration
        discover: Optional replacement for scan_tree

    Raises:
        Exception: The first exception raised by the visitor; the walk is
            cancelled as soon as it is seen

    Example:
        >>> def visit(path, metadata, error):
        ...     if error is not None:
        ...         raise error
        ...     print(path)
        >>> walk("/home/user/project", visit)
    """
    ConcurrentWalker(visitor, config, discover).run(root)


def walk_limit(
    root: Union[str, Path],
    visitor: Visitor,
    limit: int,
    *,
    config: Optional[WalkConfig] = None,
    discover: Optional[Discover] = None
) -> None:
    """Like walk(), with at most ``limit`` visitor calls in flight.

    Raises:
        InvalidLimitError: If limit is below one. Nothing is visited.
    """
    config = dataclasses.replace(config or WalkConfig(), limit=limit)
    ConcurrentWalker(visitor, config, discover).run(root)


def with_timeout(visitor: Visitor, seconds: float) -> Visitor:
    """Wrap a visitor so calls running longer than ``seconds`` fail.

    The slow call is moved to a helper thread and abandoned when the time is
    up, so the worker that made it is freed and the walk fails with
    VisitorTimeoutError. The abandoned call keeps running in the background.

    Args:
        visitor: Visitor to wrap
        seconds: Time allowed per call

    Returns:
        Wrapped visitor
    """
    @functools.wraps(visitor)
    def wrapper(path, metadata, error):
        outcome = {}

        def call():
            try:
                outcome['result'] = visitor(path, metadata, error)
            except Exception as e:
                outcome['error'] = e

        helper = threading.Thread(target=call, name=f"powerwalk visitor {path}", daemon=True)
        helper.start()
        helper.join(seconds)

        if helper.is_alive():
            raise VisitorTimeoutError(path, seconds)
        if 'error' in outcome:
            raise outcome['error']
        return outcome.get('result')

    return wrapper
