"""Cancellation contexts, error groups and pooled batch buffers.

Every blocking operation in the load and copy pipelines polls a shared
:class:`Context` so that the first failure (or an interrupt, or a deadline)
unblocks the producer and all sibling workers.
"""

from __future__ import annotations

import logging
import queue
import signal
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, TypeVar

from dbcsv.errors import Cancelled, DeadlineExceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Granularity of cancellation checks while blocked on a queue.
POLL_INTERVAL = 0.05


class Context:
    """Cancellation token with an optional deadline.

    Child contexts observe their parent's cancellation and can only narrow
    the parent's deadline, never extend it.
    """

    def __init__(self, timeout: float | None = None, parent: Context | None = None) -> None:
        self._event = threading.Event()
        self._parent = parent
        deadline = time.monotonic() + timeout if timeout else None
        if parent is not None and parent.deadline is not None:
            if deadline is None or parent.deadline < deadline:
                deadline = parent.deadline
        self.deadline = deadline

    def child(self, timeout: float | None = None) -> Context:
        """Derive a context cancelled with this one, optionally with a shorter deadline."""
        return Context(timeout=timeout, parent=self)

    def cancel(self) -> None:
        self._event.set()

    def error(self) -> Cancelled | None:
        """Return the reason this context is done, or None while it is live."""
        if self._event.is_set():
            return Cancelled("context canceled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return DeadlineExceeded("context deadline exceeded")
        if self._parent is not None:
            return self._parent.error()
        return None

    def done(self) -> bool:
        return self.error() is not None

    def check(self) -> None:
        """Raise :class:`Cancelled` if the context is done."""
        err = self.error()
        if err is not None:
            raise err

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


def put(ctx: Context, q: queue.Queue[Any], item: Any) -> None:
    """Put ``item`` on a bounded queue, giving up when ``ctx`` is done."""
    while True:
        ctx.check()
        try:
            q.put(item, timeout=POLL_INTERVAL)
            return
        except queue.Full:
            continue


def get(ctx: Context, q: queue.Queue[T]) -> T:
    """Take the next item from a queue, giving up when ``ctx`` is done."""
    while True:
        ctx.check()
        try:
            return q.get(timeout=POLL_INTERVAL)
        except queue.Empty:
            continue


class ErrorGroup:
    """Run callables on a thread pool; the first failure cancels the rest.

    A member stopped because a sibling already failed is not a failure of
    its own. Any other cancellation (the parent cancelled, a deadline passed)
    is the result of the group and is raised by :meth:`wait`.
    """

    def __init__(self, ctx: Context, max_workers: int | None = None) -> None:
        self.ctx = ctx.child()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dbcsv")
        self._futures: list[Future[Any]] = []
        self._lock = threading.Lock()
        self._error: BaseException | None = None

    def go(self, fn: Callable[..., Any], *args: Any) -> None:
        self._futures.append(self._pool.submit(self._run, fn, *args))

    def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            self.ctx.check()
            return fn(*args)
        except Cancelled as err:
            with self._lock:
                if self._error is not None:
                    return None
                self._error = err
            self.ctx.cancel()
            raise
        except BaseException as err:
            with self._lock:
                if self._error is None or isinstance(self._error, Cancelled):
                    self._error = err
            self.ctx.cancel()
            raise

    @property
    def error(self) -> BaseException | None:
        with self._lock:
            return self._error

    def wait(self) -> None:
        """Wait for every member; re-raise the first failure, if any."""
        try:
            for fut in self._futures:
                exc = fut.exception()
                if exc is not None and not isinstance(exc, Cancelled):
                    logger.debug("group member failed: %s", exc)
        finally:
            self._pool.shutdown(wait=True)
        if self._error is not None:
            raise self._error


class BatchPool:
    """Reusable batch buffers of a fixed capacity."""

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        self._free: list[list[Any]] = []
        self._lock = threading.Lock()

    def acquire(self) -> list[Any]:
        with self._lock:
            if self._free:
                return self._free.pop()
        return []

    def release(self, batch: list[Any]) -> None:
        batch.clear()
        with self._lock:
            self._free.append(batch)


class AtomicCounter:
    """Thread-safe integer counter."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def add(self, n: int) -> int:
        with self._lock:
            self._value += n
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


def wrap_signals(ctx: Context) -> Callable[[], None]:
    """Cancel ``ctx`` on SIGINT/SIGTERM; a second signal gets the default action.

    Returns a function restoring the previous handlers.
    """
    if threading.current_thread() is not threading.main_thread():
        return lambda: None

    signals = [signal.SIGINT, signal.SIGTERM]
    previous = {sig: signal.getsignal(sig) or signal.SIG_DFL for sig in signals}

    def handler(signum: int, _frame: Any) -> None:
        logger.warning("received signal %d, cancelling", signum)
        ctx.cancel()
        signal.signal(signum, previous[signum])

    for sig in signals:
        signal.signal(sig, handler)

    def restore() -> None:
        for sig, prev in previous.items():
            signal.signal(sig, prev)

    return restore
