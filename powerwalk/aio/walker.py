"""Asyncio-based concurrent walker.

Same roles as the thread-based walker, as tasks on one event loop: a
discoverer task, ``limit`` worker tasks and a monitor task. Waiting is done
by racing the queue operation against the cancellation event, so no
polling is needed here.
"""

import asyncio
import dataclasses
import functools
import logging
import os
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Set, Union

from .._common import DeliveryMode, VisitorTimeoutError, WalkConfig, WalkItem, WalkStats
from .discovery import scan_tree_async

logger = logging.getLogger(__name__)

AsyncVisitor = Callable[[str, Optional[os.stat_result], Optional[OSError]], Awaitable[Any]]
AsyncDiscover = Callable[[Union[str, Path]], AsyncIterator[WalkItem]]

# Last item on the dispatch queue; each worker passes it on before exiting
_CLOSED = object()

# Tells the monitor the walk ended without a failure
_STOP = object()


class AsyncConcurrentWalker:
    """Runs one concurrent walk on the running event loop.

    Single-use, like ConcurrentWalker. The visitor is a coroutine function
    called as ``await visitor(path, metadata, error)``.
    """

    def __init__(
        self,
        visitor: AsyncVisitor,
        config: Optional[WalkConfig] = None,
        discover: Optional[AsyncDiscover] = None
    ):
        """Initialize the walker.

        Args:
            visitor: Coroutine function awaited for each entry
            config: Walk configuration (poll_interval is not used here)
            discover: Async tree discovery primitive (defaults to scan_tree_async)

        Raises:
            InvalidLimitError: If config.limit is below one
        """
        self.config = config or WalkConfig()
        self.config.check()
        self.visitor = visitor
        self.discover = discover or scan_tree_async
        self.stats = WalkStats()
        self.stalled_workers: List[asyncio.Task] = []

        self._first_error: Optional[BaseException] = None
        self._started = False

        # Worker tasks currently awaiting the visitor
        self._busy: Set[asyncio.Task] = set()

    @property
    def cancelled(self) -> bool:
        """True once a failure has cancelled the walk."""
        return self._started and self._cancelled.is_set()

    async def run(self, root: Union[str, Path]) -> None:
        """Walk the tree under root.

        Args:
            root: Root path

        Raises:
            Exception: The first exception raised by the visitor
        """
        if self._started:
            raise RuntimeError("an AsyncConcurrentWalker can only be run once")
        self._started = True

        # Created here so they belong to the running loop
        self._items: asyncio.Queue = asyncio.Queue(maxsize=self.config.limit)
        self._errors: asyncio.Queue = asyncio.Queue()
        self._cancelled = asyncio.Event()

        logger.debug("Walking %s with %d worker tasks", root, self.config.limit)

        workers = [asyncio.ensure_future(self._work()) for _ in range(self.config.limit)]
        monitor = asyncio.ensure_future(self._monitor())
        discoverer = asyncio.ensure_future(self._discover(root))

        try:
            await discoverer
            await self._drain(workers)
        except BaseException as e:
            # Cancelled or interrupted from outside: stop the other tasks too
            self._errors.put_nowait(e)
            raise

        self._errors.put_nowait(_STOP)
        await monitor

        if self._first_error is not None:
            raise self._first_error

    async def _discover(self, root: Union[str, Path]) -> None:
        try:
            async for item in self.discover(root):
                if self._cancelled.is_set():
                    logger.debug("Discovery stopped at %s", item.path)
                    break
                self.stats.incr('discovered')
                await self._deliver(item)
        except Exception as e:
            self._errors.put_nowait(e)
        finally:
            # Workers leave on their own once cancelled
            if not self._cancelled.is_set():
                await self._put(_CLOSED)

    async def _deliver(self, item: WalkItem) -> None:
        if self.config.delivery is DeliveryMode.DROP:
            try:
                self._items.put_nowait(item)
            except asyncio.QueueFull:
                self.stats.incr('dropped')
                logger.debug("Dropped %s, no free worker", item.path)
                return
            self.stats.incr('delivered')
            return

        if await self._put(item):
            self.stats.incr('delivered')

    async def _put(self, item: Any) -> bool:
        """Queue an item, giving up if the walk is cancelled first."""
        try:
            self._items.put_nowait(item)
            return True
        except asyncio.QueueFull:
            pass

        put = asyncio.ensure_future(self._items.put(item))
        return await self._race(put) is put

    async def _get(self) -> Any:
        """Take the next item, or None if the walk is cancelled first."""
        if not self._items.empty():
            return self._items.get_nowait()

        get = asyncio.ensure_future(self._items.get())
        if await self._race(get) is get:
            return get.result()
        return None

    async def _race(self, operation: asyncio.Future) -> Optional[asyncio.Future]:
        cancelled = asyncio.ensure_future(self._cancelled.wait())
        try:
            done, _ = await asyncio.wait(
                {operation, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            operation.cancel()
            cancelled.cancel()
        # A completed operation wins even if cancellation arrived with it
        return operation if operation in done else None

    async def _work(self) -> None:
        while not self._cancelled.is_set():
            item = await self._get()
            if item is None:
                return
            if item is _CLOSED:
                # Room is guaranteed: this worker just took an item
                self._items.put_nowait(_CLOSED)
                return
            if self._cancelled.is_set():
                return
            await self._visit(item)

    async def _visit(self, item: WalkItem) -> None:
        task = asyncio.current_task()
        self._busy.add(task)
        self.stats.incr('visited')
        try:
            await self.visitor(item.path, item.metadata, item.error)
        except Exception as e:
            self.stats.incr('failed')
            self._errors.put_nowait(e)
        finally:
            self._busy.discard(task)

    async def _monitor(self) -> None:
        report = await self._errors.get()
        if report is _STOP:
            return
        self._first_error = report
        self._cancelled.set()
        logger.debug("Walk cancelled after %s: %r", type(report).__name__, report)

    async def _drain(self, workers: List[asyncio.Task]) -> None:
        """Wait for worker tasks to finish.

        Without a failure every worker is waited for, up to drain_timeout.
        Once the walk is cancelled, workers still awaiting the visitor are
        not waited for: the first error is raised without them.
        """
        loop = asyncio.get_running_loop()
        timeout = self.config.drain_timeout
        deadline = None if timeout is None else loop.time() + timeout

        def remaining() -> Optional[float]:
            return None if deadline is None else max(0.0, deadline - loop.time())

        pending = set(workers)
        stop = asyncio.ensure_future(self._cancelled.wait())
        try:
            while pending and not stop.done():
                if remaining() == 0.0:
                    break
                _, pending = await asyncio.wait(
                    pending | {stop}, timeout=remaining(), return_when=asyncio.FIRST_COMPLETED
                )
                pending.discard(stop)

            if stop.done():
                # Idle workers see the cancellation at their next step
                idle = {task for task in pending if task not in self._busy}
                if idle:
                    await asyncio.wait(idle, timeout=remaining())
        finally:
            stop.cancel()

        self.stalled_workers = [task for task in workers if not task.done()]
        if self.stalled_workers:
            logger.warning(
                "%d worker task(s) still inside the visitor, leaving them running",
                len(self.stalled_workers)
            )


async def walk_async(
    root: Union[str, Path],
    visitor: AsyncVisitor,
    *,
    config: Optional[WalkConfig] = None,
    discover: Optional[AsyncDiscover] = None
) -> None:
    """Walk the tree under root, awaiting visitor for every entry concurrently.

    Async counterpart of powerwalk.sync.walk().

    Args:
        root: Root path
        visitor: Coroutine function called as visitor(path, metadata, error)
        config: Optional walk configuration
        discover: Optional replacement for scan_tree_async

    Raises:
        Exception: The first exception raised by the visitor

    Example:
        >>> async def visit(path, metadata, error):
        ...     async with session.get(url_for(path)) as response:
        ...         response.raise_for_status()
        >>> await walk_async("/srv/static", visit)
    """
    await AsyncConcurrentWalker(visitor, config, discover).run(root)


async def walk_limit_async(
    root: Union[str, Path],
    visitor: AsyncVisitor,
    limit: int,
    *,
    config: Optional[WalkConfig] = None,
    discover: Optional[AsyncDiscover] = None
) -> None:
    """Like walk_async(), with at most ``limit`` visitor calls in flight.

    Raises:
        InvalidLimitError: If limit is below one. Nothing is visited.
    """
    config = dataclasses.replace(config or WalkConfig(), limit=limit)
    await AsyncConcurrentWalker(visitor, config, discover).run(root)


def with_timeout_async(visitor: AsyncVisitor, seconds: float) -> AsyncVisitor:
    """Wrap an async visitor so calls running longer than ``seconds`` fail.

    Unlike the thread-based with_timeout(), the slow call is cancelled.

    Args:
        visitor: Coroutine function to wrap
        seconds: Time allowed per call

    Returns:
        Wrapped coroutine function raising VisitorTimeoutError on timeout
    """
    @functools.wraps(visitor)
    async def wrapper(path, metadata, error):
        try:
            return await asyncio.wait_for(visitor(path, metadata, error), seconds)
        except asyncio.TimeoutError:
            raise VisitorTimeoutError(path, seconds) from None

    return wrapper
