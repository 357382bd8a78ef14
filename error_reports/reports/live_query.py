import asyncio
import logging
import queue
import threading
from functools import lru_cache
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from error_reports.reports.schemas import Report

logger = logging.getLogger("error_reports.live_query")

Snapshot = Tuple[Report, ...]
SnapshotLoader = Callable[[], Snapshot]

_CLOSED = object()


class Subscription:
    """One viewer of a live query.

    ``initial`` is the full ordered list at subscription time; ``get`` and
    iteration yield every later full list until ``cancel`` is called.
    """

    def __init__(self, feed: "LiveQueryFeed", path: str, initial: Snapshot) -> None:
        self.path = path
        self.initial = initial
        self._feed = feed
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._cancelled = threading.Event()
        self._handoff = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._async_queue: Optional["asyncio.Queue[object]"] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _push(self, snapshot: Snapshot) -> None:
        with self._handoff:
            if self._cancelled.is_set():
                return
            if self._loop is None:
                self._queue.put(snapshot)
                return
            try:
                self._loop.call_soon_threadsafe(self._async_queue.put_nowait, snapshot)
                return
            except RuntimeError:
                logger.debug("event loop closed, dropping subscription path=%s", self.path)
        self.cancel()

    def _bind(self, loop: asyncio.AbstractEventLoop) -> None:
        with self._handoff:
            if self._loop is not None:
                return
            self._async_queue = asyncio.Queue()
            while True:
                try:
                    self._async_queue.put_nowait(self._queue.get_nowait())
                except queue.Empty:
                    break
            self._loop = loop

    async def wait(self, timeout: Optional[float] = None) -> Optional[Snapshot]:
        """Awaitable ``get`` for event-loop consumers; holds no worker thread while idle.

        The first call ties the subscription to the running loop, after which
        snapshots only arrive through ``wait``.
        """
        self._bind(asyncio.get_running_loop())
        if self._cancelled.is_set():
            return None
        try:
            item = await asyncio.wait_for(self._async_queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if item is _CLOSED:
            return None
        return item  # type: ignore[return-value]

    def get(self, timeout: Optional[float] = None) -> Optional[Snapshot]:
        """Next snapshot, or None when ``timeout`` elapses or the subscription is cancelled."""
        if self._cancelled.is_set():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            return None
        return item  # type: ignore[return-value]

    def pending(self) -> int:
        if self._async_queue is not None:
            return self._async_queue.qsize()
        return self._queue.qsize()

    def cancel(self) -> None:
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        self._feed._remove(self)
        self._queue.put(_CLOSED)
        if self._loop is not None:
            try:
                self._loop.call_soon_threadsafe(self._async_queue.put_nowait, _CLOSED)
            except RuntimeError:
                logger.debug("event loop already closed path=%s", self.path)

    def __iter__(self) -> Iterator[Snapshot]:
        while not self._cancelled.is_set():
            snapshot = self.get()
            if snapshot is None:
                break
            yield snapshot


class LiveQueryFeed:
    """Fans committed collection states out to every subscription of that collection."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._lock = threading.RLock()

    def subscribe(self, path: str, loader: SnapshotLoader) -> Subscription:
        with self._lock:
            subscription = Subscription(self, path, loader())
            self._subscribers.setdefault(path, []).append(subscription)
        logger.debug("subscribed path=%s total=%s", path, self.subscriber_count(path))
        return subscription

    def publish(self, path: str, loader: SnapshotLoader) -> int:
        # The loader runs under the lock so the last snapshot delivered is the latest state.
        with self._lock:
            subscribers = list(self._subscribers.get(path, []))
            if not subscribers:
                return 0
            snapshot = loader()
            for subscription in subscribers:
                subscription._push(snapshot)
        logger.debug("published path=%s subscribers=%s size=%s", path, len(subscribers), len(snapshot))
        return len(subscribers)

    def subscriber_count(self, path: str) -> int:
        with self._lock:
            return len(self._subscribers.get(path, []))

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.path, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.path, None)


@lru_cache(maxsize=1)
def get_live_query_feed() -> LiveQueryFeed:
    return LiveQueryFeed()
