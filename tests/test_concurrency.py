"""Tests for cancellation contexts and error groups."""

import queue
import threading
import time

import pytest

from dbcsv.concurrency import AtomicCounter, BatchPool, Context, ErrorGroup, get, put
from dbcsv.errors import Cancelled, DeadlineExceeded


class TestContext:
    """Test suite for cancellation contexts."""

    def test_cancel(self) -> None:
        """Test that cancelling makes check raise."""
        ctx = Context()
        assert not ctx.done()
        ctx.cancel()
        with pytest.raises(Cancelled):
            ctx.check()

    def test_child_sees_parent(self) -> None:
        """Test that children are cancelled with their parent, not the reverse."""
        parent = Context()
        child = parent.child()
        other = parent.child()
        other.cancel()
        assert not parent.done() and not child.done()
        parent.cancel()
        assert child.done()

    def test_deadline(self) -> None:
        """Test that a passed deadline is reported as such."""
        ctx = Context(timeout=0.01)
        time.sleep(0.03)
        assert isinstance(ctx.error(), DeadlineExceeded)
        assert ctx.remaining() == 0.0

    def test_child_cannot_extend_deadline(self) -> None:
        """Test that a child deadline is capped by the parent's."""
        parent = Context(timeout=1)
        child = parent.child(timeout=100)
        assert child.deadline == parent.deadline
        assert Context().remaining() is None


class TestQueues:
    """Test suite for cancellable queue operations."""

    def test_put_and_get(self) -> None:
        """Test the plain path."""
        ctx = Context()
        q: queue.Queue[int] = queue.Queue(maxsize=1)
        put(ctx, q, 1)
        assert get(ctx, q) == 1

    def test_get_unblocks_on_cancel(self) -> None:
        """Test that a blocked get gives up when the context is cancelled."""
        ctx = Context()
        threading.Timer(0.1, ctx.cancel).start()
        with pytest.raises(Cancelled):
            get(ctx, queue.Queue())

    def test_put_unblocks_on_deadline(self) -> None:
        """Test that a blocked put gives up at the deadline."""
        q: queue.Queue[int] = queue.Queue(maxsize=1)
        q.put(0)
        with pytest.raises(DeadlineExceeded):
            put(Context(timeout=0.1), q, 1)


class TestErrorGroup:
    """Test suite for error groups."""

    def test_all_succeed(self) -> None:
        """Test that wait returns when every member is done."""
        counter = AtomicCounter()
        group = ErrorGroup(Context(), max_workers=4)
        for _ in range(10):
            group.go(counter.add, 1)
        group.wait()
        assert counter.value == 10

    def test_first_error_cancels_siblings(self) -> None:
        """Test that a failure is re-raised and the blocked siblings stop."""
        group = ErrorGroup(Context(), max_workers=3)
        blocked: queue.Queue[int] = queue.Queue()

        def fail() -> None:
            time.sleep(0.05)
            raise ValueError("boom")

        group.go(get, group.ctx, blocked)
        group.go(get, group.ctx, blocked)
        group.go(fail)
        with pytest.raises(ValueError, match="boom"):
            group.wait()
        assert group.ctx.done()

    def test_parent_cancellation_fails_the_group(self) -> None:
        """Test that members stopped by a cancelled parent make wait raise."""
        parent = Context()
        group = ErrorGroup(parent, max_workers=1)
        parent.cancel()
        group.go(get, group.ctx, queue.Queue())
        with pytest.raises(Cancelled):
            group.wait()
        assert isinstance(group.error, Cancelled)

    def test_member_deadline_fails_the_group(self) -> None:
        """Test that a member's own deadline is not mistaken for a sibling's failure."""
        group = ErrorGroup(Context(), max_workers=1)
        group.go(get, group.ctx.child(0.05), queue.Queue())
        with pytest.raises(DeadlineExceeded):
            group.wait()

    def test_sibling_failure_wins_over_cancellation(self) -> None:
        """Test that siblings cancelled by a failure report the failure, not the cancellation."""
        group = ErrorGroup(Context(), max_workers=3)
        blocked: queue.Queue[int] = queue.Queue()

        def fail() -> None:
            raise ValueError("boom")

        group.go(fail)
        group.go(get, group.ctx, blocked)
        group.go(get, group.ctx, blocked)
        with pytest.raises(ValueError, match="boom"):
            group.wait()
        assert isinstance(group.error, ValueError)


class TestBatchPool:
    """Test suite for reusable batch buffers."""

    def test_reuse(self) -> None:
        """Test that released buffers come back empty."""
        pool = BatchPool(2)
        batch = pool.acquire()
        batch.extend([1, 2])
        pool.release(batch)
        again = pool.acquire()
        assert again is batch and again == []
        assert pool.acquire() is not batch
