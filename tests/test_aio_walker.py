"""Tests for the asyncio-based concurrent walker."""

import asyncio
import logging
import os
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from powerwalk import InvalidLimitError, VisitorTimeoutError, WalkConfig, WalkItem
from powerwalk.aio import (
    AsyncConcurrentWalker,
    walk_async,
    walk_limit_async,
    with_timeout_async,
)


def create_small_tree(base_dir: Path) -> None:
    """base_dir/{a.txt, b.txt, c/d.txt}"""
    (base_dir / "c").mkdir()
    (base_dir / "a.txt").write_text("a")
    (base_dir / "b.txt").write_text("b")
    (base_dir / "c" / "d.txt").write_text("d")


def create_wide_tree(base_dir: Path, dirs: int = 5, files: int = 20) -> None:
    for i in range(dirs):
        sub = base_dir / f"dir{i}"
        sub.mkdir()
        for j in range(files):
            (sub / f"f{j:03d}.txt").write_text(f"{i}-{j}")


def recording_visitor():
    seen = []

    async def visit(path, metadata, error):
        await asyncio.sleep(0)
        seen.append(path)

    return visit, seen


class TestAsyncWalkScenarios:

    @pytest.mark.asyncio
    async def test_visits_every_entry_once(self, tmp_path):
        create_small_tree(tmp_path)
        visit, seen = recording_visitor()

        assert await walk_async(tmp_path, visit) is None

        relative = sorted(os.path.relpath(p, tmp_path) for p in seen)
        assert relative == sorted([
            ".", "a.txt", "b.txt", "c", os.path.join("c", "d.txt")
        ])

    @pytest.mark.asyncio
    async def test_first_error_is_raised(self, tmp_path):
        create_small_tree(tmp_path)

        async def visit(path, metadata, error):
            if os.path.basename(path) == "b.txt":
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="^boom$"):
            await walk_async(tmp_path, visit)

    @pytest.mark.asyncio
    async def test_discovery_error_reaches_visitor(self, tmp_path):
        visitor = AsyncMock(return_value=None)

        await walk_async(tmp_path / "missing", visitor)

        visitor.assert_awaited_once()
        path, metadata, error = visitor.await_args[0]
        assert metadata is None
        assert isinstance(error, FileNotFoundError)

    @pytest.mark.asyncio
    async def test_every_entry_visited_exactly_once(self, tmp_path):
        create_wide_tree(tmp_path, dirs=4, files=25)
        visit, seen = recording_visitor()

        walker = AsyncConcurrentWalker(visit, WalkConfig(limit=6))
        await walker.run(tmp_path)

        assert len(seen) == len(set(seen)) == 105
        assert walker.stats.delivered == 105
        assert walker.stats.dropped == 0


class TestAsyncLimits:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, -1])
    async def test_invalid_limit_raises_before_any_work(self, tmp_path, limit):
        visitor = AsyncMock()
        discover = Mock()

        with pytest.raises(InvalidLimitError):
            await walk_limit_async(tmp_path, visitor, limit, discover=discover)

        visitor.assert_not_called()
        discover.assert_not_called()

    @pytest.mark.asyncio
    async def test_limit_one_serializes_visitor_calls(self, tmp_path):
        create_wide_tree(tmp_path, dirs=2, files=10)
        state = {'in_flight': 0, 'max_in_flight': 0, 'calls': 0}

        async def visit(path, metadata, error):
            state['in_flight'] += 1
            state['calls'] += 1
            state['max_in_flight'] = max(state['max_in_flight'], state['in_flight'])
            await asyncio.sleep(0.001)
            state['in_flight'] -= 1

        await walk_limit_async(tmp_path, visit, 1)

        assert state['max_in_flight'] == 1
        assert state['calls'] == 23

    @pytest.mark.asyncio
    async def test_limit_bounds_concurrency(self, tmp_path):
        create_wide_tree(tmp_path, dirs=2, files=20)
        state = {'in_flight': 0, 'max_in_flight': 0}

        async def visit(path, metadata, error):
            state['in_flight'] += 1
            state['max_in_flight'] = max(state['max_in_flight'], state['in_flight'])
            await asyncio.sleep(0.005)
            state['in_flight'] -= 1

        await walk_limit_async(tmp_path, visit, 4)

        assert 1 < state['max_in_flight'] <= 4


class TestAsyncCancellation:

    @pytest.mark.asyncio
    async def test_few_calls_start_after_failure(self, tmp_path):
        create_wide_tree(tmp_path, dirs=4, files=50)
        limit = 4
        state = {'failed': False}
        late_calls = []

        async def visit(path, metadata, error):
            if state['failed']:
                late_calls.append(path)
            await asyncio.sleep(0.005)
            if path.endswith("f000.txt") and not state['failed']:
                state['failed'] = True
                raise RuntimeError("first failure")

        walker = AsyncConcurrentWalker(visit, WalkConfig(limit=limit))
        with pytest.raises(RuntimeError, match="first failure"):
            await walker.run(tmp_path)

        assert walker.cancelled
        assert len(late_calls) <= 2 * limit
        assert walker.stats.visited < 205

    @pytest.mark.asyncio
    async def test_discover_failure_fails_the_walk(self, tmp_path):
        async def discover(root):
            yield WalkItem(str(root))
            raise ValueError("listing backend unavailable")

        with pytest.raises(ValueError, match="listing backend unavailable"):
            await walk_async(tmp_path, AsyncMock(), discover=discover)

    @pytest.mark.asyncio
    async def test_hung_visitor_with_drain_timeout(self, tmp_path, caplog):
        create_small_tree(tmp_path)
        release = asyncio.Event()
        visit, seen = recording_visitor()

        async def hang_on_b(path, metadata, error):
            if path.endswith("b.txt"):
                await release.wait()
                return
            await visit(path, metadata, error)

        caplog.set_level(logging.WARNING, logger="powerwalk")
        walker = AsyncConcurrentWalker(hang_on_b, WalkConfig(limit=2, drain_timeout=0.2))
        await walker.run(tmp_path)

        assert len(walker.stalled_workers) == 1
        assert not walker.stalled_workers[0].done()
        assert len(seen) == 4
        assert "still inside the visitor" in caplog.text

        release.set()
        await asyncio.wait(walker.stalled_workers, timeout=5)

    @pytest.mark.asyncio
    async def test_failure_is_raised_without_waiting_for_hung_visitor(self, tmp_path):
        """With no drain_timeout, a cancelled walk still returns promptly."""
        hanging = asyncio.Event()
        release = asyncio.Event()

        async def discover(root):
            yield WalkItem(os.path.join(str(root), "hang"))
            yield WalkItem(os.path.join(str(root), "fail"))

        async def visit(path, metadata, error):
            if path.endswith("hang"):
                hanging.set()
                await release.wait()
                return
            await hanging.wait()
            raise RuntimeError("boom")

        walker = AsyncConcurrentWalker(visit, WalkConfig(limit=2), discover)
        with pytest.raises(RuntimeError, match="boom"):
            await asyncio.wait_for(walker.run(tmp_path), timeout=2)

        assert walker.cancelled
        assert len(walker.stalled_workers) == 1
        assert not walker.stalled_workers[0].done()

        release.set()
        await asyncio.wait(walker.stalled_workers, timeout=5)

    @pytest.mark.asyncio
    async def test_with_timeout_async(self, tmp_path):
        create_small_tree(tmp_path)

        async def visit(path, metadata, error):
            if path.endswith("a.txt"):
                await asyncio.sleep(10)

        with pytest.raises(VisitorTimeoutError) as exc_info:
            await walk_limit_async(tmp_path, with_timeout_async(visit, 0.05), 2)

        assert exc_info.value.path.endswith("a.txt")


class TestAsyncDropDelivery:

    @pytest.mark.asyncio
    async def test_entries_dropped_while_workers_busy(self, tmp_path):
        started = asyncio.Event()
        release = asyncio.Event()
        visit, seen = recording_visitor()

        async def discover(root):
            yield WalkItem("item-0")
            await started.wait()
            for i in range(1, 10):
                yield WalkItem(f"item-{i}")
            release.set()

        async def blocking(path, metadata, error):
            if path == "item-0":
                started.set()
                await release.wait()
            await visit(path, metadata, error)

        walker = AsyncConcurrentWalker(blocking, WalkConfig.dropping(limit=1), discover)
        await walker.run(tmp_path)

        assert sorted(seen) == ["item-0", "item-1"]
        assert walker.stats.delivered == 2
        assert walker.stats.dropped == 8
