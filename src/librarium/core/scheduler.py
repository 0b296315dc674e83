# ABOUTME: Size-based policy for synchronous versus deferred processing, plus the background task runner.
# ABOUTME: Deferred work runs as asyncio tasks that yield between heavy steps.

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from librarium.config import PipelineSettings

logger = logging.getLogger(__name__)


async def yield_now() -> None:
    """Suspend once so other tasks on the loop can run."""
    await asyncio.sleep(0)


@dataclass(frozen=True)
class ProcessingPolicy:
    """Upload-size thresholds that route work between the two ingest paths."""

    background_threshold: int
    content_index_limit: int

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "ProcessingPolicy":
        return cls(
            background_threshold=settings.background_threshold,
            content_index_limit=settings.content_index_limit,
        )

    def should_defer(self, size: int) -> bool:
        return size >= self.background_threshold

    def should_index_content(self, size: int) -> bool:
        return size <= self.content_index_limit


class BackgroundScheduler:
    """Owns fire-and-forget tasks so they are not garbage collected mid-flight.

    A task that raises is logged here and dropped; it never propagates to
    whoever scheduled it.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Background task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed", task.get_name(), exc_info=exc)

    async def drain(self) -> None:
        """Wait until every scheduled task, including ones spawned meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
