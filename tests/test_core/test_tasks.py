"""Tests for best-effort background tasks."""

from __future__ import annotations

import asyncio

import pytest

from src.core import BackgroundTasks


class TestBackgroundTasks:

    @pytest.mark.asyncio
    async def test_runs_and_forgets_tasks(self) -> None:
        tasks = BackgroundTasks(owner="call-1")
        done: list[str] = []

        async def _work() -> None:
            done.append("written")

        tasks.spawn(_work(), description="event")
        await tasks.drain()

        assert done == ["written"]
        assert tasks.pending == 0

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self) -> None:
        tasks = BackgroundTasks(owner="call-1")

        async def _fail() -> None:
            raise RuntimeError("store down")

        task = tasks.spawn(_fail(), description="event")
        await tasks.drain()

        assert task.done()
        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_drain_cancels_stragglers(self) -> None:
        tasks = BackgroundTasks(owner="call-1")
        task = tasks.spawn(asyncio.sleep(10), description="slow")

        await tasks.drain(timeout=0.01)

        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_drain_without_tasks(self) -> None:
        await BackgroundTasks().drain()
