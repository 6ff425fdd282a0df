"""
BackgroundTaskRunner — detached work decoupled from the request that
spawned it (chat titles, startup cache preload).

Tasks are tracked so they are not garbage-collected mid-flight and can be
drained on shutdown.  A failing task never propagates: its exception is
logged and recorded on the runner's error channel.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Deque, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackgroundFailure:
    name: str
    error: BaseException
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BackgroundTaskRunner:
    def __init__(
        self,
        *,
        on_error: Optional[Callable[[BackgroundFailure], None]] = None,
        max_failures: int = 100,
    ):
        self._tasks: Set[asyncio.Task] = set()
        self._failures: Deque[BackgroundFailure] = deque(maxlen=max_failures)
        self._on_error = on_error

    def submit(self, name: str, work: Awaitable) -> asyncio.Task:
        """Schedule ``work`` on the running loop and return its task."""
        task = asyncio.ensure_future(work)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        logger.debug("Background task submitted: %s", name)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("Background task cancelled: %s", task.get_name())
            return
        exc = task.exception()
        if exc is None:
            return
        failure = BackgroundFailure(name=task.get_name(), error=exc)
        self._failures.append(failure)
        logger.error("Background task %s failed: %s", failure.name, exc, exc_info=exc)
        if self._on_error is not None:
            self._on_error(failure)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def failures(self) -> List[BackgroundFailure]:
        return list(self._failures)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for every in-flight task to settle (or ``timeout`` to pass)."""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)

    async def shutdown(self, timeout: float = 5.0) -> None:
        await self.drain(timeout)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
