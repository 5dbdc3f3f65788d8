"""Worker pool draining queued execution runs."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from uuid import UUID

__all__ = ("WorkerPool",)

logger = structlog.get_logger(__name__)


class WorkerPool:
    """A fixed number of asyncio workers consuming execution IDs from a queue.

    Different executions run in parallel. Steps of one execution stay sequential
    because the handler takes the engine's per-execution lock.

    Attributes:
        handler: Coroutine function running one execution.
        size: Number of workers.
    """

    def __init__(self, handler: Callable[[UUID], Awaitable[Any]], size: int = 4) -> None:
        self.handler = handler
        self.size = size
        self._queue: asyncio.Queue[UUID] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._work(), name=f"litestar-flows-worker-{index}") for index in range(self.size)
        ]
        logger.info("worker_pool_started", size=self.size)

    async def submit(self, execution_id: UUID) -> None:
        await self._queue.put(execution_id)

    async def join(self) -> None:
        """Wait until every queued run has been processed."""
        await self._queue.join()

    async def stop(self) -> None:
        for worker in self._workers:
            worker.cancel()
        for worker in self._workers:
            with suppress(asyncio.CancelledError):
                await worker
        self._workers = []
        logger.info("worker_pool_stopped")

    async def _work(self) -> None:
        while True:
            execution_id = await self._queue.get()
            try:
                await self.handler(execution_id)
            except Exception:
                # A worker must outlive any single failing run.
                logger.exception("execution_run_crashed", execution_id=str(execution_id))
            finally:
                self._queue.task_done()
