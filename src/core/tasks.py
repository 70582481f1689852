"""Best-effort background work for a call.

Telemetry writes (speech-boundary events, running cost totals) must not
hold up the turn loop. Each one runs at most once, is never retried, and
logs its failure instead of raising.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

from src.logging_config import get_logger

logger: Any = get_logger(__name__)


class BackgroundTasks:
    """Tracks fire-and-forget tasks so they can be drained at teardown."""

    def __init__(self, owner: str = "") -> None:
        self._owner = owner
        self._tasks: set[asyncio.Task[None]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, description: str) -> asyncio.Task[None]:
        task = asyncio.create_task(
            self._run(coro, description), name=f"{self._owner}:{description}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine[Any, Any, Any], description: str) -> None:
        try:
            await coro
        except Exception as e:
            logger.warning(f"Background {description} failed for {self._owner}: {e}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for outstanding tasks; cancel whatever is left after timeout."""
        if not self._tasks:
            return
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} background task(s) for {self._owner}")
            await asyncio.gather(*still_running, return_exceptions=True)
